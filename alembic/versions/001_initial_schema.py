"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create call_records table
    op.create_table(
        'call_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_id', sa.String(), nullable=False),
        sa.Column('caller_number', sa.String(), nullable=True),
        sa.Column('disposition', sa.String(), nullable=False),
        sa.Column('final_phase', sa.String(), nullable=False),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_call_records_id'), 'call_records', ['id'], unique=False)
    op.create_index(op.f('ix_call_records_call_id'), 'call_records', ['call_id'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_call_records_call_id'), table_name='call_records')
    op.drop_index(op.f('ix_call_records_id'), table_name='call_records')
    op.drop_table('call_records')
