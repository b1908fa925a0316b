"""Optional student profile columns: father's name and photo reference.

Revision ID: 002_student_profile
Revises: 001_initial
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '002_student_profile'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('ALTER TABLE students ADD COLUMN IF NOT EXISTS father_name TEXT')
    op.execute('ALTER TABLE students ADD COLUMN IF NOT EXISTS photo_url TEXT')


def downgrade() -> None:
    op.execute('ALTER TABLE students DROP COLUMN IF EXISTS photo_url')
    op.execute('ALTER TABLE students DROP COLUMN IF EXISTS father_name')
