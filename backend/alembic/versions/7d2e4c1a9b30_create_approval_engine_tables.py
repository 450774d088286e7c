"""create_approval_engine_tables

Revision ID: 7d2e4c1a9b30
Revises:
Create Date: 2026-10-19 09:12:41.302115

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '7d2e4c1a9b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'approval_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('department', sa.String(100), server_default='All Departments', nullable=False),
        sa.Column('min_amount', sa.Numeric(18, 2), server_default='0', nullable=False),
        sa.Column('max_amount', sa.Numeric(18, 2), server_default='999999999', nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('min_amount >= 0 AND min_amount <= max_amount', name='ck_approval_rules_amount_range'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_rules_transaction_type', 'approval_rules', ['transaction_type'])

    op.create_table(
        'approver_levels',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('required', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('can_delegate', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.ForeignKeyConstraint(['rule_id'], ['approval_rules.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rule_id', 'level', name='uq_approver_levels_rule_level'),
    )
    op.create_index('ix_approver_levels_rule_id', 'approver_levels', ['rule_id'])

    op.create_table(
        'approval_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('transaction_id', sa.String(100), nullable=False),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('department', sa.String(100), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('matched_rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('approver_chain', sa.JSON(), nullable=False),
        sa.Column('state', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('submitted_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_sessions_transaction_id', 'approval_sessions', ['transaction_id'])
    op.create_index('ix_approval_sessions_transaction_type', 'approval_sessions', ['transaction_type'])
    op.create_index('ix_approval_sessions_matched_rule_id', 'approval_sessions', ['matched_rule_id'])
    op.create_index('ix_approval_sessions_state', 'approval_sessions', ['state'])
    # At most one PENDING session per transaction.
    op.create_index(
        'uq_approval_sessions_pending_transaction',
        'approval_sessions',
        ['transaction_type', 'transaction_id'],
        unique=True,
        postgresql_where=sa.text("state = 'PENDING'"),
    )

    op.create_table(
        'approval_decisions',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('decided_by', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('delegate_to', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['session_id'], ['approval_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'level', name='uq_approval_decisions_session_level'),
    )
    op.create_index('ix_approval_decisions_session_id', 'approval_decisions', ['session_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])

    # Audit rows are append-only for the application role.
    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")


def downgrade() -> None:
    op.execute("GRANT UPDATE, DELETE ON audit_logs TO PUBLIC;")
    op.drop_index('ix_audit_logs_entity_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_type', table_name='audit_logs')
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_approval_decisions_session_id', table_name='approval_decisions')
    op.drop_table('approval_decisions')
    op.drop_index('uq_approval_sessions_pending_transaction', table_name='approval_sessions')
    op.drop_index('ix_approval_sessions_state', table_name='approval_sessions')
    op.drop_index('ix_approval_sessions_matched_rule_id', table_name='approval_sessions')
    op.drop_index('ix_approval_sessions_transaction_type', table_name='approval_sessions')
    op.drop_index('ix_approval_sessions_transaction_id', table_name='approval_sessions')
    op.drop_table('approval_sessions')
    op.drop_index('ix_approver_levels_rule_id', table_name='approver_levels')
    op.drop_table('approver_levels')
    op.drop_index('ix_approval_rules_transaction_type', table_name='approval_rules')
    op.drop_table('approval_rules')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
