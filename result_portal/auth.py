"""Admin sign-in: credential check, session gate and failed-login throttling."""

import logging
from datetime import datetime, timedelta

from flask import request, session
from werkzeug.security import check_password_hash

from result_portal.db import db_execute

ADMIN_ROLE = 'admin'


def check_admin_credentials(config, email, password):
    """True when email/password match the configured admin identity."""
    email = (email or '').strip().lower()
    if not email or email != config.admin_email:
        return False
    return check_password_hash(config.admin_password_hash, password or '')


def login_admin(config):
    session.clear()
    session['user_id'] = config.admin_email
    session['role'] = ADMIN_ROLE


def is_admin_session(config):
    """The session belongs to the currently configured admin."""
    return session.get('role') == ADMIN_ROLE and session.get('user_id') == config.admin_email


def get_client_ip(trust_proxy=False):
    """Best-effort client IP extraction."""
    xff = (request.headers.get('X-Forwarded-For') or '').strip()
    if trust_proxy and xff:
        # Left-most entry is the client when behind a trusted reverse proxy.
        for part in xff.split(','):
            ip = (part or '').strip()
            if ip:
                return ip
    return (request.remote_addr or '').strip() or 'unknown'


class LoginThrottle:
    """Lock an email/IP pair out after repeated failed logins."""

    def __init__(self, database, max_attempts=4, lock_minutes=15):
        self.database = database
        self.max_attempts = max_attempts
        self.lock_minutes = lock_minutes

    def is_blocked(self, username, ip_address, now=None):
        """Return (blocked, wait_minutes)."""
        self.purge_old()
        username = (username or '').strip().lower()
        ip_address = (ip_address or '').strip()
        now = now or datetime.now()
        with self.database.connection() as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT failures, locked_until
                   FROM login_attempts
                   WHERE username = ? AND ip_address = ?
                   LIMIT 1''',
                (username, ip_address),
            )
            row = c.fetchone()
        if not row:
            return False, 0
        locked_until = row[1]
        if locked_until and locked_until > now:
            remaining = (locked_until - now).total_seconds()
            wait_minutes = max(1, int(remaining // 60) + (1 if remaining % 60 else 0))
            return True, wait_minutes
        return False, 0

    def register_failure(self, username, ip_address, now=None):
        """Track a failed login and lock after max attempts."""
        self.purge_old()
        username = (username or '').strip().lower()
        ip_address = (ip_address or '').strip()
        now = now or datetime.now()
        window_start = now - timedelta(minutes=self.lock_minutes)
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''SELECT failures, last_failed_at, locked_until
                   FROM login_attempts
                   WHERE username = ? AND ip_address = ?
                   LIMIT 1''',
                (username, ip_address),
            )
            row = c.fetchone()
            if not row:
                db_execute(
                    c,
                    '''INSERT INTO login_attempts
                       (username, ip_address, failures, last_failed_at, locked_until)
                       VALUES (?, ?, ?, ?, ?)''',
                    (username, ip_address, 1, now, None),
                )
                return
            failures = int(row[0] or 0)
            last_failed_at = row[1]
            current_locked_until = row[2]
            if current_locked_until and current_locked_until > now:
                return
            if not last_failed_at or last_failed_at < window_start:
                failures = 1
            else:
                failures += 1
            locked_until = None
            if failures >= self.max_attempts:
                locked_until = now + timedelta(minutes=self.lock_minutes)
                logging.warning("Admin login locked for %s from %s until %s", username, ip_address, locked_until)
            db_execute(
                c,
                '''UPDATE login_attempts
                   SET failures = ?, last_failed_at = ?, locked_until = ?
                   WHERE username = ? AND ip_address = ?''',
                (failures, now, locked_until, username, ip_address),
            )

    def clear(self, username, ip_address):
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                'DELETE FROM login_attempts WHERE username = ? AND ip_address = ?',
                ((username or '').strip().lower(), (ip_address or '').strip()),
            )

    def purge_old(self):
        """Delete stale rows to keep the table small."""
        cutoff = datetime.now() - timedelta(days=7)
        with self.database.connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''DELETE FROM login_attempts
                   WHERE (locked_until IS NOT NULL AND locked_until < ?)
                      OR (locked_until IS NULL AND last_failed_at < ?)''',
                (cutoff, cutoff),
            )
