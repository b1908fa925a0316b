"""Initial schema for the school results portal.

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create classes, subjects, students, marks and result summaries."""

    op.execute('''CREATE TABLE IF NOT EXISTS classes (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_classes_name UNIQUE (name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS subjects (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    max_marks INTEGER NOT NULL DEFAULT 100 CHECK (max_marks > 0),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_subjects_class_name UNIQUE (class_id, name)
                )''')

    # Register numbers are stored upper-cased, so a plain unique constraint is enough.
    op.execute('''CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    register_number TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_students_register_number UNIQUE (register_number)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS marks (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    marks_obtained INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_marks_student_subject UNIQUE (student_id, subject_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS result_summary (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    total INTEGER NOT NULL DEFAULT 0,
                    max_total INTEGER NOT NULL DEFAULT 0,
                    percentage NUMERIC(5, 2) NOT NULL DEFAULT 0,
                    grade TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_result_summary_student UNIQUE (student_id)
                )''')

    # Login attempt tracking for brute-force protection
    op.execute('''CREATE TABLE IF NOT EXISTS login_attempts (
                    id SERIAL PRIMARY KEY,
                    username TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    failures INTEGER NOT NULL DEFAULT 0,
                    last_failed_at TIMESTAMP,
                    locked_until TIMESTAMP,
                    UNIQUE(username, ip_address)
                )''')

    op.execute('CREATE INDEX IF NOT EXISTS idx_subjects_class ON subjects(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_marks_subject ON marks(subject_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_login_attempts_locked_until ON login_attempts(locked_until)')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS login_attempts CASCADE')
    op.execute('DROP TABLE IF EXISTS result_summary CASCADE')
    op.execute('DROP TABLE IF EXISTS marks CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
