"""
Apply database migrations without starting the web server.

Usage:
  python migrate.py

This script uses Flask-Migrate (Alembic) to apply schema migrations.
"""

import logging
import os
import sys


def main():
    # The schema check would only warn about the revision being upgraded here.
    os.environ['VERIFY_SCHEMA_ON_STARTUP'] = '0'

    from flask_migrate import upgrade

    from result_portal import create_app

    app = create_app()
    try:
        print("Applying database migrations...")
        with app.app_context():
            upgrade(directory='migrations')
        print("✓ Migrations completed successfully.")
    except Exception as e:
        logging.exception("Migration failed")
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
