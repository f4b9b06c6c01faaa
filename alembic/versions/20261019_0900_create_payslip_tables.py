"""Create payslip tables

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration creates the payroll core tables:
- payslips: one committed payslip per employee and pay period
- payslip_deductions: itemized deduction lines
- payslip_audit_events: append-only trail of calculations and lifecycle actions
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_0900'
down_revision = None
branch_labels = None
depends_on = None


PAYROLL_STATUSES = ('DRAFT', 'PENDING_APPROVAL', 'PROCESSED', 'PAID', 'CANCELLED')
PAYROLL_ACTIONS = (
    'CALCULATE', 'RECALCULATE', 'APPROVE', 'COMPLETE', 'CANCEL', 'EDIT', 'DELETE', 'SEND_EMAIL',
)
COMPONENT_TYPES = ('FIXED', 'PERCENTAGE', 'VARIABLE')


def table_exists(table_name: str) -> bool:
    """Check if a table exists."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    payroll_status = sa.Enum(*PAYROLL_STATUSES, name='payroll_status')
    payroll_action = sa.Enum(*PAYROLL_ACTIONS, name='payroll_action')
    component_type = sa.Enum(*COMPONENT_TYPES, name='component_type')

    # ===========================================
    # PAYSLIPS TABLE
    # ===========================================
    if not table_exists('payslips'):
        op.create_table('payslips',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('employee_id', sa.Integer, nullable=False),
            sa.Column('employee_code', sa.String(50), nullable=True),
            sa.Column('employee_name', sa.String(200), nullable=True),

            # Period
            sa.Column('pay_period_month', sa.Integer, nullable=False),
            sa.Column('pay_period_year', sa.Integer, nullable=False),
            sa.Column('currency', sa.String(3), nullable=False),

            # Earnings
            sa.Column('base_salary', sa.Numeric(15, 2), nullable=False, server_default='0'),
            sa.Column('total_allowances', sa.Numeric(15, 2), nullable=False, server_default='0'),
            sa.Column('overtime_pay', sa.Numeric(15, 2), nullable=False, server_default='0'),
            sa.Column('gross_pay', sa.Numeric(15, 2), nullable=False, server_default='0'),

            # Deductions & net
            sa.Column('total_deductions', sa.Numeric(15, 2), nullable=False, server_default='0'),
            sa.Column('net_pay', sa.Numeric(15, 2), nullable=False, server_default='0'),

            sa.Column('allowance_breakdown', sa.JSON, nullable=True),
            sa.Column('status', payroll_status, nullable=False, server_default='DRAFT'),

            # Lifecycle stamps
            sa.Column('approved_by_id', sa.Integer, nullable=True),
            sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('pay_date', sa.Date, nullable=True, comment='Set only when the payslip is completed (PAID)'),
            sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cancelled_by_id', sa.Integer, nullable=True),
            sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('notes', sa.Text, nullable=True),

            # Audit
            sa.Column('created_by_id', sa.Integer, nullable=True),
            sa.Column('updated_by_id', sa.Integer, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),

            sa.UniqueConstraint(
                'employee_id', 'pay_period_month', 'pay_period_year',
                name='uq_payslip_employee_period',
            ),
            sa.CheckConstraint(
                'pay_period_month BETWEEN 1 AND 12',
                name='ck_payslips_pay_period_month_range',
            ),
        )
        op.create_index('ix_payslips_employee_id', 'payslips', ['employee_id'])
        op.create_index('ix_payslips_status', 'payslips', ['status'])

    # ===========================================
    # PAYSLIP DEDUCTIONS TABLE
    # ===========================================
    if not table_exists('payslip_deductions'):
        op.create_table('payslip_deductions',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('payslip_id', sa.Integer, sa.ForeignKey('payslips.id', ondelete='CASCADE'), nullable=False),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('amount', sa.Numeric(15, 2), nullable=False),
            sa.Column('deduction_type', component_type, nullable=False),
            sa.Column('mandatory', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index('ix_payslip_deductions_payslip_id', 'payslip_deductions', ['payslip_id'])

    # ===========================================
    # PAYSLIP AUDIT EVENTS TABLE
    # ===========================================
    if not table_exists('payslip_audit_events'):
        op.create_table('payslip_audit_events',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('payslip_id', sa.Integer, sa.ForeignKey('payslips.id', ondelete='SET NULL'), nullable=True),
            sa.Column('employee_id', sa.Integer, nullable=False),
            sa.Column('pay_period_month', sa.Integer, nullable=False),
            sa.Column('pay_period_year', sa.Integer, nullable=False),
            sa.Column('action', payroll_action, nullable=False),
            sa.Column('from_status', postgresql.ENUM(*PAYROLL_STATUSES, name='payroll_status', create_type=False), nullable=True),
            sa.Column('to_status', postgresql.ENUM(*PAYROLL_STATUSES, name='payroll_status', create_type=False), nullable=True),
            sa.Column('actor_id', sa.Integer, nullable=True),
            sa.Column('details', sa.JSON, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index('ix_payslip_audit_events_payslip_id', 'payslip_audit_events', ['payslip_id'])
        op.create_index(
            'ix_payslip_audit_events_employee_period',
            'payslip_audit_events',
            ['employee_id', 'pay_period_year', 'pay_period_month'],
        )


def downgrade() -> None:
    op.drop_table('payslip_audit_events')
    op.drop_table('payslip_deductions')
    op.drop_table('payslips')
    sa.Enum(name='payroll_action').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='component_type').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='payroll_status').drop(op.get_bind(), checkfirst=True)
