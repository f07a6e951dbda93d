"""lending engine tables

Revision ID: 20261019_1200_lending_engine
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_1200_lending_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Member credit profiles (replica)
    op.create_table(
        'member_credit_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.String(length=50), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=True),
        sa.Column('total_savings', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('free_equity', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('monthly_contribution', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('membership_date', sa.Date(), nullable=False),
        sa.Column('active_loan_exposure', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('has_active_delinquency', sa.Boolean(), nullable=False),
        sa.Column('repayment_score', sa.Integer(), nullable=True),
        sa.Column('credit_score', sa.Integer(), nullable=True),
        sa.Column('risk_rating', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('synced_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_member_credit_profiles_id'), 'member_credit_profiles', ['id'], unique=False)
    op.create_index(op.f('ix_member_credit_profiles_member_id'), 'member_credit_profiles', ['member_id'], unique=True)

    # Outbound events
    op.create_table(
        'outbound_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='eventpriority'), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=50), nullable=False),
        sa.Column('recipient', sa.String(length=100), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'DISPATCHED', name='outboundeventstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('dispatched_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_outbound_events_id'), 'outbound_events', ['id'], unique=False)
    op.create_index(op.f('ix_outbound_events_event_type'), 'outbound_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_outbound_events_status'), 'outbound_events', ['status'], unique=False)

    # Applications
    op.create_table(
        'loan_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_number', sa.String(length=20), nullable=False),
        sa.Column('member_id', sa.String(length=50), nullable=False),
        sa.Column('loan_type', sa.Enum('NORMAL', 'COMMODITY', 'CAR', name='loantype'), nullable=False),
        sa.Column('requested_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('tenor_months', sa.Integer(), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(
            'DRAFT', 'AWAITING_GUARANTORS', 'COMMITTEE_REVIEW', 'APPROVED', 'REJECTED',
            'ADMITTED', 'QUEUED', 'REGISTERED', 'CANCELLED', name='applicationstatus'
        ), nullable=False),
        sa.Column('required_guarantors', sa.Integer(), nullable=False),
        sa.Column('nomination_round', sa.Integer(), nullable=False),
        sa.Column('committee_decision', sa.Enum(
            'PENDING', 'APPROVED', 'REJECTED', 'MORE_INFORMATION', name='committeedecision'
        ), nullable=False),
        sa.Column('approved_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('approved_tenor_months', sa.Integer(), nullable=True),
        sa.Column('target_year', sa.Integer(), nullable=True),
        sa.Column('target_month', sa.Integer(), nullable=True),
        sa.Column('eligibility_snapshot', sa.JSON(), nullable=True),
        sa.Column('status_reason', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_applications_id'), 'loan_applications', ['id'], unique=False)
    op.create_index(op.f('ix_loan_applications_application_number'), 'loan_applications', ['application_number'], unique=True)
    op.create_index(op.f('ix_loan_applications_member_id'), 'loan_applications', ['member_id'], unique=False)
    op.create_index(op.f('ix_loan_applications_status'), 'loan_applications', ['status'], unique=False)

    # Guarantor consents
    op.create_table(
        'guarantor_consents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('guarantor_member_id', sa.String(length=50), nullable=False),
        sa.Column('nomination_round', sa.Integer(), nullable=False),
        sa.Column('guaranteed_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'APPROVED', 'DECLINED', 'EXPIRED', 'REVOKED', name='consentstatus'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id', 'guarantor_member_id', 'nomination_round', name='uq_consent_round')
    )
    op.create_index(op.f('ix_guarantor_consents_id'), 'guarantor_consents', ['id'], unique=False)
    op.create_index(op.f('ix_guarantor_consents_application_id'), 'guarantor_consents', ['application_id'], unique=False)
    op.create_index(op.f('ix_guarantor_consents_guarantor_member_id'), 'guarantor_consents', ['guarantor_member_id'], unique=False)
    op.create_index(op.f('ix_guarantor_consents_token_hash'), 'guarantor_consents', ['token_hash'], unique=True)
    op.create_index(op.f('ix_guarantor_consents_status'), 'guarantor_consents', ['status'], unique=False)

    # Committee reviews
    op.create_table(
        'committee_reviews',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('reviewer_id', sa.String(length=50), nullable=False),
        sa.Column('decision', sa.Enum(
            'PENDING', 'APPROVED', 'REJECTED', 'APPROVED_WITH_CONDITIONS', 'REQUIRES_MORE_INFORMATION',
            name='reviewdecision'
        ), nullable=False),
        sa.Column('credit_score', sa.Integer(), nullable=True),
        sa.Column('risk_rating', sa.String(length=20), nullable=True),
        sa.Column('repayment_score', sa.Integer(), nullable=True),
        sa.Column('recommended_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('recommended_tenor_months', sa.Integer(), nullable=True),
        sa.Column('conditions', sa.Text(), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id', 'reviewer_id', name='uq_review_reviewer')
    )
    op.create_index(op.f('ix_committee_reviews_id'), 'committee_reviews', ['id'], unique=False)
    op.create_index(op.f('ix_committee_reviews_application_id'), 'committee_reviews', ['application_id'], unique=False)
    op.create_index(op.f('ix_committee_reviews_reviewer_id'), 'committee_reviews', ['reviewer_id'], unique=False)

    # Monthly thresholds and allocation queue
    op.create_table(
        'monthly_thresholds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('maximum_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('allocated_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('remaining_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('carried_forward_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('carry_forward_applied', sa.Boolean(), nullable=False),
        sa.Column('total_applications_approved', sa.Integer(), nullable=False),
        sa.Column('total_applications_registered', sa.Integer(), nullable=False),
        sa.Column('total_applications_queued', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('OPEN', 'EXHAUSTED', 'CLOSED', name='thresholdstatus'), nullable=False),
        sa.Column('alert_level', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('closed_by', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('remaining_amount >= 0', name='ck_threshold_remaining_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('year', 'month', name='uq_threshold_period')
    )
    op.create_index(op.f('ix_monthly_thresholds_id'), 'monthly_thresholds', ['id'], unique=False)
    op.create_index(op.f('ix_monthly_thresholds_status'), 'monthly_thresholds', ['status'], unique=False)

    op.create_table(
        'allocation_queue_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('threshold_id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('carried_over', sa.Boolean(), nullable=False),
        sa.Column('original_threshold_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.Enum('QUEUED', 'ADMITTED', 'WITHDRAWN', 'RELEASED', name='queueentrystatus'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['threshold_id'], ['monthly_thresholds.id'], ),
        sa.ForeignKeyConstraint(['original_threshold_id'], ['monthly_thresholds.id'], ),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_allocation_queue_entries_id'), 'allocation_queue_entries', ['id'], unique=False)
    op.create_index(op.f('ix_allocation_queue_entries_threshold_id'), 'allocation_queue_entries', ['threshold_id'], unique=False)
    op.create_index(op.f('ix_allocation_queue_entries_application_id'), 'allocation_queue_entries', ['application_id'], unique=False)
    op.create_index(op.f('ix_allocation_queue_entries_status'), 'allocation_queue_entries', ['status'], unique=False)

    # Loan register
    op.create_table(
        'loan_serial_counters',
        sa.Column('year', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('year')
    )

    op.create_table(
        'loan_register',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial_year', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=30), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.String(length=50), nullable=False),
        sa.Column('loan_type', postgresql.ENUM('NORMAL', 'COMMODITY', 'CAR', name='loantype', create_type=False), nullable=False),
        sa.Column('principal', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('tenor_months', sa.Integer(), nullable=False),
        sa.Column('monthly_emi', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('registration_date', sa.Date(), nullable=False),
        sa.Column('disbursement_date', sa.Date(), nullable=True),
        sa.Column('maturity_date', sa.Date(), nullable=False),
        sa.Column('status', sa.Enum('REGISTERED', 'ACTIVE', 'CANCELLED', 'CLOSED', name='loanstatus'), nullable=False),
        sa.Column('delinquency_status', sa.Enum(
            'CURRENT', 'WATCH', 'DELINQUENT', 'DEFAULT_CANDIDATE', name='delinquencystatus'
        ), nullable=False),
        sa.Column('threshold_year', sa.Integer(), nullable=False),
        sa.Column('threshold_month', sa.Integer(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id'),
        sa.UniqueConstraint('serial_year', 'serial_number', name='uq_loan_serial')
    )
    op.create_index(op.f('ix_loan_register_id'), 'loan_register', ['id'], unique=False)
    op.create_index(op.f('ix_loan_register_reference'), 'loan_register', ['reference'], unique=True)
    op.create_index(op.f('ix_loan_register_member_id'), 'loan_register', ['member_id'], unique=False)
    op.create_index(op.f('ix_loan_register_status'), 'loan_register', ['status'], unique=False)
    op.create_index(op.f('ix_loan_register_delinquency_status'), 'loan_register', ['delinquency_status'], unique=False)

    # Deductions
    op.create_table(
        'deduction_schedule_rows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('period_year', sa.Integer(), nullable=False),
        sa.Column('period_month', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('principal_component', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('interest_component', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('opening_balance', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('closing_balance', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('superseded', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loan_register.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'installment_number', 'version', name='uq_schedule_installment')
    )
    op.create_index(op.f('ix_deduction_schedule_rows_id'), 'deduction_schedule_rows', ['id'], unique=False)
    op.create_index(op.f('ix_deduction_schedule_rows_loan_id'), 'deduction_schedule_rows', ['loan_id'], unique=False)
    op.create_index(op.f('ix_deduction_schedule_rows_superseded'), 'deduction_schedule_rows', ['superseded'], unique=False)

    op.create_table(
        'deduction_upload_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period_year', sa.Integer(), nullable=False),
        sa.Column('period_month', sa.Integer(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=True),
        sa.Column('total_rows', sa.Integer(), nullable=False),
        sa.Column('last_committed_row', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('PROCESSING', 'PARTIAL', 'COMPLETED', name='uploadbatchstatus'), nullable=False),
        sa.Column('error_rows', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period_year', 'period_month', 'checksum', name='uq_upload_batch_checksum')
    )
    op.create_index(op.f('ix_deduction_upload_batches_id'), 'deduction_upload_batches', ['id'], unique=False)

    op.create_table(
        'actual_deductions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('row_number', sa.Integer(), nullable=False),
        sa.Column('loan_reference', sa.String(length=30), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=True),
        sa.Column('period_year', sa.Integer(), nullable=False),
        sa.Column('period_month', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('source_reference', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['deduction_upload_batches.id'], ),
        sa.ForeignKeyConstraint(['loan_id'], ['loan_register.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'row_number', name='uq_actual_batch_row')
    )
    op.create_index(op.f('ix_actual_deductions_id'), 'actual_deductions', ['id'], unique=False)
    op.create_index(op.f('ix_actual_deductions_batch_id'), 'actual_deductions', ['batch_id'], unique=False)
    op.create_index(op.f('ix_actual_deductions_loan_id'), 'actual_deductions', ['loan_id'], unique=False)

    op.create_table(
        'deduction_reconciliations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_row_id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('period_year', sa.Integer(), nullable=False),
        sa.Column('period_month', sa.Integer(), nullable=False),
        sa.Column('expected_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('actual_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('variance', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('status', sa.Enum('MATCHED', 'PARTIALLY_PAID', 'OVERPAID', 'UNMATCHED', name='reconciliationstatus'), nullable=False),
        sa.Column('reconciled_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['schedule_row_id'], ['deduction_schedule_rows.id'], ),
        sa.ForeignKeyConstraint(['loan_id'], ['loan_register.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_row_id')
    )
    op.create_index(op.f('ix_deduction_reconciliations_id'), 'deduction_reconciliations', ['id'], unique=False)
    op.create_index(op.f('ix_deduction_reconciliations_loan_id'), 'deduction_reconciliations', ['loan_id'], unique=False)
    op.create_index(op.f('ix_deduction_reconciliations_status'), 'deduction_reconciliations', ['status'], unique=False)

    # Delinquency history
    op.create_table(
        'loan_delinquency_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('check_date', sa.Date(), nullable=False),
        sa.Column('consecutive_missed', sa.Integer(), nullable=False),
        sa.Column('days_overdue', sa.Integer(), nullable=False),
        sa.Column('overdue_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('previous_status', postgresql.ENUM(
            'CURRENT', 'WATCH', 'DELINQUENT', 'DEFAULT_CANDIDATE', name='delinquencystatus', create_type=False
        ), nullable=False),
        sa.Column('new_status', postgresql.ENUM(
            'CURRENT', 'WATCH', 'DELINQUENT', 'DEFAULT_CANDIDATE', name='delinquencystatus', create_type=False
        ), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loan_register.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_delinquency_records_id'), 'loan_delinquency_records', ['id'], unique=False)
    op.create_index(op.f('ix_loan_delinquency_records_loan_id'), 'loan_delinquency_records', ['loan_id'], unique=False)

    # Scheduler bookkeeping
    op.create_table(
        'scheduled_task_runs',
        sa.Column('task_name', sa.String(length=100), nullable=False),
        sa.Column('last_started_at', sa.DateTime(), nullable=True),
        sa.Column('last_success_at', sa.DateTime(), nullable=True),
        sa.Column('last_status', sa.String(length=20), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('task_name')
    )


def downgrade() -> None:
    op.drop_table('scheduled_task_runs')
    op.drop_index(op.f('ix_loan_delinquency_records_loan_id'), table_name='loan_delinquency_records')
    op.drop_index(op.f('ix_loan_delinquency_records_id'), table_name='loan_delinquency_records')
    op.drop_table('loan_delinquency_records')
    op.drop_table('deduction_reconciliations')
    op.drop_table('actual_deductions')
    op.drop_table('deduction_upload_batches')
    op.drop_table('deduction_schedule_rows')
    op.drop_table('loan_register')
    op.drop_table('loan_serial_counters')
    op.drop_table('allocation_queue_entries')
    op.drop_table('monthly_thresholds')
    op.drop_table('committee_reviews')
    op.drop_table('guarantor_consents')
    op.drop_table('loan_applications')
    op.drop_table('outbound_events')
    op.drop_table('member_credit_profiles')

    # Drop enums
    for name in (
        'delinquencystatus', 'reconciliationstatus', 'uploadbatchstatus', 'loanstatus', 'queueentrystatus',
        'thresholdstatus', 'reviewdecision', 'consentstatus', 'committeedecision', 'applicationstatus',
        'loantype', 'outboundeventstatus', 'eventpriority',
    ):
        op.execute(f'DROP TYPE IF EXISTS {name}')
