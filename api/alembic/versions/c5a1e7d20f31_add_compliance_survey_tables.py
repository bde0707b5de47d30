"""add_compliance_survey_tables

Revision ID: c5a1e7d20f31
Revises:
Create Date: 2025-12-02 09:14:37.402118

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c5a1e7d20f31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Directory tables
    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('email')
    )
    op.create_table(
        'departments',
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('head_user_id', sa.Integer(), nullable=True,
                  comment='Head of department; survey recipient'),
        sa.ForeignKeyConstraint(['head_user_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('department_id'),
        sa.UniqueConstraint('name')
    )
    op.create_index(op.f('ix_departments_head_user_id'), 'departments', ['head_user_id'], unique=False)

    # Audit trail
    op.create_table(
        'audit_logs',
        sa.Column('log_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('log_id')
    )
    op.create_index(op.f('ix_audit_logs_log_id'), 'audit_logs', ['log_id'], unique=False)
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)

    # Compliance runs
    op.create_table(
        'compliance_runs',
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('frequency', sa.String(length=20), nullable=False, server_default='once'),
        sa.Column('recurring_day', sa.Integer(), nullable=True,
                  comment='Day of period (1-31) for monthly/bimonthly/quarterly runs'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('next_due_date', sa.Date(), nullable=True,
                  comment='Due date of the next instance; set at activation for recurring runs'),
        sa.Column('parent_run_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('activated_by', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('closed_by', sa.Integer(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['parent_run_id'], ['compliance_runs.run_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('run_id'),
        sa.UniqueConstraint('parent_run_id'),
        sa.CheckConstraint('due_date >= start_date', name='ck_compliance_runs_dates'),
        sa.CheckConstraint(
            'recurring_day IS NULL OR (recurring_day BETWEEN 1 AND 31)',
            name='ck_compliance_runs_recurring_day'
        )
    )
    op.create_index('ix_compliance_runs_status', 'compliance_runs', ['status'], unique=False)
    op.create_index('ix_compliance_runs_due_date', 'compliance_runs', ['due_date'], unique=False)

    op.create_table(
        'compliance_questions',
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(length=20), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('max_score', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['run_id'], ['compliance_runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('question_id'),
        sa.UniqueConstraint('run_id', 'order_index', name='uq_question_run_order')
    )
    op.create_index(op.f('ix_compliance_questions_run_id'), 'compliance_questions', ['run_id'], unique=False)

    op.create_table(
        'compliance_run_departments',
        sa.Column('target_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['run_id'], ['compliance_runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('target_id'),
        sa.UniqueConstraint('run_id', 'department_id', name='uq_run_department')
    )
    op.create_index(op.f('ix_compliance_run_departments_run_id'), 'compliance_run_departments', ['run_id'], unique=False)

    op.create_table(
        'compliance_recipients',
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('access_token', sa.String(length=128), nullable=False),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_sent_at', sa.DateTime(), nullable=True),
        sa.Column('email_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_email_error', sa.String(length=500), nullable=True),
        sa.Column('survey_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('survey_completed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['run_id'], ['compliance_runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('recipient_id'),
        sa.UniqueConstraint('access_token'),
        sa.UniqueConstraint('run_id', 'department_id', name='uq_recipient_run_department')
    )
    op.create_index(op.f('ix_compliance_recipients_run_id'), 'compliance_recipients', ['run_id'], unique=False)
    op.create_index(op.f('ix_compliance_recipients_user_id'), 'compliance_recipients', ['user_id'], unique=False)
    op.create_index('ix_compliance_recipients_completed', 'compliance_recipients', ['survey_completed'], unique=False)

    op.create_table(
        'compliance_responses',
        sa.Column('response_id', sa.Integer(), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['recipient_id'], ['compliance_recipients.recipient_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['question_id'], ['compliance_questions.question_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('response_id'),
        sa.UniqueConstraint('recipient_id', 'question_id', name='uq_response_recipient_question')
    )
    op.create_index(op.f('ix_compliance_responses_recipient_id'), 'compliance_responses', ['recipient_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_compliance_responses_recipient_id'), table_name='compliance_responses')
    op.drop_table('compliance_responses')
    op.drop_index('ix_compliance_recipients_completed', table_name='compliance_recipients')
    op.drop_index(op.f('ix_compliance_recipients_user_id'), table_name='compliance_recipients')
    op.drop_index(op.f('ix_compliance_recipients_run_id'), table_name='compliance_recipients')
    op.drop_table('compliance_recipients')
    op.drop_index(op.f('ix_compliance_run_departments_run_id'), table_name='compliance_run_departments')
    op.drop_table('compliance_run_departments')
    op.drop_index(op.f('ix_compliance_questions_run_id'), table_name='compliance_questions')
    op.drop_table('compliance_questions')
    op.drop_index('ix_compliance_runs_due_date', table_name='compliance_runs')
    op.drop_index('ix_compliance_runs_status', table_name='compliance_runs')
    op.drop_table('compliance_runs')
    op.drop_index('ix_audit_logs_entity', table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_log_id'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_departments_head_user_id'), table_name='departments')
    op.drop_table('departments')
    op.drop_table('users')
