"""Create users, medicine reminders, occurrences and adherence records

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-19 17:05:12.418230

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1e7a9d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('timezone', sa.String(length=50), nullable=False, server_default='UTC'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('push_token', sa.String(length=255), nullable=True),
        sa.Column('notify_push', sa.Boolean(), nullable=True),
        sa.Column('notify_email', sa.Boolean(), nullable=True),
        sa.Column('notify_sms', sa.Boolean(), nullable=True),
        sa.Column('adherence_reports', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])

    op.create_table(
        'medicine_reminders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('medicine_name', sa.String(length=255), nullable=False),
        sa.Column('dosage_amount', sa.String(length=50), nullable=False),
        sa.Column('dosage_unit', sa.String(length=20), nullable=False),
        sa.Column('with_food', sa.String(length=10), nullable=False, server_default='any'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recurrence_rule', sa.JSON(), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_medicine_reminders_id', 'medicine_reminders', ['id'])
    op.create_index('idx_medicine_reminders_user_active', 'medicine_reminders', ['user_id', 'active'])

    op.create_table(
        'reminder_occurrences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'reminder_id',
            sa.Integer(),
            sa.ForeignKey('medicine_reminders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('scheduled_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('reminder_id', 'scheduled_time', name='uq_occurrence_reminder_time'),
    )
    op.create_index('ix_reminder_occurrences_id', 'reminder_occurrences', ['id'])
    op.create_index('idx_occurrences_due', 'reminder_occurrences', ['notified', 'scheduled_time'])

    op.create_table(
        'adherence_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'reminder_id',
            sa.Integer(),
            sa.ForeignKey('medicine_reminders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('scheduled_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('actual_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.UniqueConstraint('reminder_id', 'scheduled_time', name='uq_adherence_reminder_time'),
    )
    op.create_index('ix_adherence_records_id', 'adherence_records', ['id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_adherence_records_id', table_name='adherence_records')
    op.drop_table('adherence_records')
    op.drop_index('idx_occurrences_due', table_name='reminder_occurrences')
    op.drop_index('ix_reminder_occurrences_id', table_name='reminder_occurrences')
    op.drop_table('reminder_occurrences')
    op.drop_index('idx_medicine_reminders_user_active', table_name='medicine_reminders')
    op.drop_index('ix_medicine_reminders_id', table_name='medicine_reminders')
    op.drop_table('medicine_reminders')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
