"""PostgreSQL access: connection factory, query helper and schema check."""

import logging
from contextlib import contextmanager

import psycopg2
import psycopg2.errors
from psycopg2.extras import DictCursor

# Latest Alembic revision under migrations/versions.
HEAD_REVISION = '002_student_profile'


class StoreError(Exception):
    """A database operation failed and did not complete."""


class DuplicateError(StoreError):
    """A write hit a unique constraint."""


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


class Database:
    """Connection factory for one PostgreSQL database."""

    def __init__(self, url, connect_timeout=10):
        self.url = url
        self.connect_timeout = connect_timeout

    @classmethod
    def from_config(cls, config):
        return cls(config.database_url, connect_timeout=config.db_connect_timeout)

    def connect(self):
        """Create a PostgreSQL DB connection."""
        return psycopg2.connect(self.url, cursor_factory=DictCursor, connect_timeout=self.connect_timeout)

    @contextmanager
    def connection(self, commit=False):
        """
        Yield a connection; commit on success when asked, roll back on error.

        Driver errors leave the block as StoreError (DuplicateError for
        unique-constraint violations) so callers never see psycopg2 types.
        """
        try:
            conn = self.connect()
        except psycopg2.Error as exc:
            raise StoreError(f"Could not connect to the database: {exc}") from exc
        try:
            yield conn
            if commit:
                conn.commit()
        except psycopg2.errors.UniqueViolation as exc:
            conn.rollback()
            raise DuplicateError(str(exc).strip()) from exc
        except psycopg2.Error as exc:
            conn.rollback()
            raise StoreError(str(exc).strip()) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def get_schema_revision(database):
    """Return the applied Alembic revision, or None on an unmigrated database."""
    with database.connection() as conn:
        c = conn.cursor()
        db_execute(c, "SELECT to_regclass('public.alembic_version')")
        row = c.fetchone()
        if not row or row[0] is None:
            return None
        db_execute(c, 'SELECT version_num FROM alembic_version LIMIT 1')
        row = c.fetchone()
        return row[0] if row else None


def verify_schema_version(database, strict=False):
    """Check the database is migrated to HEAD_REVISION before serving requests."""
    revision = get_schema_revision(database)
    if revision == HEAD_REVISION:
        return True
    message = (
        f"Database schema revision is {revision or 'missing'}, expected {HEAD_REVISION}. "
        "Run `python migrate.py` to apply pending migrations."
    )
    if strict:
        raise RuntimeError(message)
    logging.warning(message)
    return False
