"""initial payroll schema

Revision ID: 3f1a9c0d2e71
Revises:
Create Date: 2025-11-20 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c0d2e71'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name, nullable=False):
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, server_default=None if nullable else '0')


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('grouping_type', sa.Enum('department', 'outlet', name='company_grouping_enum'),
                  nullable=False, server_default='department'),
        sa.Column('registration_no', sa.String(length=50)),
        sa.Column('epf_employer_no', sa.String(length=50)),
        sa.Column('income_tax_employer_no', sa.String(length=50)),
        sa.Column('address', sa.Text()),
        sa.Column('payroll_config', sa.JSON()),
        sa.Column('automation_config', sa.JSON()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='SET NULL')),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active'),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
    )
    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=120), nullable=False, unique=True),
        sa.Column('name', sa.String(length=150)),
    )
    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table(
        'role_permissions',
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'payroll_structures',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('company_id', 'code', name='uq_payroll_structure_company_code'),
    )
    op.create_index('ix_payroll_structures_company_id', 'payroll_structures', ['company_id'])

    op.create_table(
        'payroll_structure_components',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('structure_id', sa.Integer(), sa.ForeignKey('payroll_structures.id', ondelete='CASCADE'), nullable=False),
        sa.Column('component', sa.Enum(
            'basic_salary', 'allowance', 'commission', 'bonus', 'incentive',
            'trip_commission', 'outstation', 'ot_amount', 'ph_pay',
            'attendance_bonus', 'other_earnings', name='earning_component_enum'), nullable=False),
        sa.Column('mode', sa.Enum('fixed', 'percentage', 'hourly', 'per_trip', 'higher_of',
                                  name='component_mode_enum'), nullable=False, server_default='fixed'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('amount', sa.Numeric(14, 2)),
        sa.Column('rate', sa.Numeric(10, 4)),
        sa.Column('floor', sa.Numeric(14, 2)),
        sa.UniqueConstraint('structure_id', 'component', name='uq_structure_component'),
    )
    op.create_index('ix_payroll_structure_components_structure_id', 'payroll_structure_components', ['structure_id'])

    for table, uq in (('departments', 'uq_department_company_name'), ('outlets', 'uq_outlet_company_name')):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('payroll_structure_id', sa.Integer(),
                      sa.ForeignKey('payroll_structures.id', ondelete='SET NULL')),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint('company_id', 'name', name=uq),
        )

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT')),
        sa.Column('outlet_id', sa.Integer(), sa.ForeignKey('outlets.id', ondelete='RESTRICT')),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), unique=True),
        sa.Column('employee_code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('email', sa.String(length=255)),
        sa.Column('designation', sa.String(length=120)),
        sa.Column('ic_number', sa.String(length=30)),
        sa.Column('normalized_ic', sa.String(length=30), unique=True),
        sa.Column('passport_no', sa.String(length=30)),
        sa.Column('tax_no', sa.String(length=30)),
        sa.Column('date_of_birth', sa.Date()),
        sa.Column('gender', sa.Enum('male', 'female', name='employee_gender_enum')),
        sa.Column('employment_type', sa.Enum('probation', 'confirmed', name='employment_type_enum'),
                  nullable=False, server_default='probation'),
        sa.Column('work_type', sa.Enum('full_time', 'part_time', name='work_type_enum'),
                  nullable=False, server_default='full_time'),
        sa.Column('residency_status', sa.Enum('citizen', 'permanent_resident', 'foreign', name='residency_status_enum'),
                  nullable=False, server_default='citizen'),
        sa.Column('epf_contribution_type', sa.Enum('normal', 'senior_voluntary', 'foreign', name='epf_contribution_enum'),
                  nullable=False, server_default='normal'),
        sa.Column('marital_status', sa.Enum('single', 'married', name='marital_status_enum'),
                  nullable=False, server_default='single'),
        sa.Column('spouse_working', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('children_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('join_date', sa.Date(), nullable=False),
        sa.Column('last_working_day', sa.Date()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('basic_salary_default', sa.Numeric(14, 2)),
        sa.Column('allowance_default', sa.Numeric(14, 2)),
        sa.Column('ot_rate', sa.Numeric(10, 2)),
        sa.Column('commission_rate', sa.Numeric(7, 4)),
        sa.Column('fixed_ot_amount', sa.Numeric(14, 2)),
        sa.Column('per_trip_rate', sa.Numeric(10, 2)),
        sa.Column('outstation_rate', sa.Numeric(10, 2)),
        sa.Column('outstation_meal_allowance', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'employee_code', name='uq_employee_company_code'),
    )
    op.create_index('ix_emp_company_id', 'employees', ['company_id'])
    op.create_index('ix_emp_dept_id', 'employees', ['department_id'])
    op.create_index('ix_emp_outlet_id', 'employees', ['outlet_id'])

    # ---- attendance ----
    op.create_table(
        'public_holidays',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE')),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'date', name='uq_public_holiday_company_date'),
    )
    op.create_index('ix_public_holidays_company_id', 'public_holidays', ['company_id'])
    op.create_index('ix_public_holidays_date', 'public_holidays', ['date'])

    op.create_table(
        'schedules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('shift_start', sa.Time(), nullable=False),
        sa.Column('shift_end', sa.Time(), nullable=False),
        sa.Column('break_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('is_rest_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'work_date', name='uq_schedule_employee_date'),
    )
    op.create_index('ix_schedules_employee_id', 'schedules', ['employee_id'])

    op.create_table(
        'clock_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('clock_in_1', sa.Time()),
        sa.Column('clock_out_1', sa.Time()),
        sa.Column('clock_in_2', sa.Time()),
        sa.Column('clock_out_2', sa.Time()),
        sa.Column('total_work_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_work_hours', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('ot_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ot_hours', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('ot_flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ot_approved', sa.Boolean()),
        sa.Column('attendance_status', sa.Enum(
            'present', 'late', 'left_early', 'wrong_shift', 'no_schedule', 'absent', 'in_progress',
            name='attendance_status_enum'), nullable=False, server_default='in_progress'),
        sa.Column('late_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('early_minutes', sa.Integer(), nullable=False, server_default='0'),
        _money('deduction_amount'),
        sa.Column('notes', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('employee_id', 'work_date', name='uq_clock_employee_date'),
    )
    op.create_index('ix_clock_records_company_id', 'clock_records', ['company_id'])
    op.create_index('ix_clock_records_employee_id', 'clock_records', ['employee_id'])

    # ---- leave ----
    op.create_table(
        'leave_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('default_days_per_year', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('gender_restriction', sa.Enum('male', 'female', name='leave_gender_enum')),
        sa.Column('carry_forward_max', sa.Numeric(5, 2)),
        sa.Column('entitlement_rules', sa.JSON()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('company_id', 'code', name='uq_leave_type_company_code'),
    )
    op.create_index('ix_leave_types_company_id', 'leave_types', ['company_id'])

    op.create_table(
        'leave_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leave_type_id', sa.Integer(), sa.ForeignKey('leave_types.id', ondelete='CASCADE'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('entitled_days', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('used_days', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('carried_forward', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('employee_id', 'leave_type_id', 'year', name='uq_leave_balance_year'),
    )
    op.create_index('ix_leave_balances_employee_id', 'leave_balances', ['employee_id'])
    op.create_index('ix_leave_balances_leave_type_id', 'leave_balances', ['leave_type_id'])

    op.create_table(
        'leave_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leave_type_id', sa.Integer(), sa.ForeignKey('leave_types.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Numeric(6, 2), nullable=False),
        sa.Column('reason', sa.Text()),
        sa.Column('status', sa.Enum('pending', 'approved', 'rejected', 'cancelled', name='leave_status_enum'),
                  nullable=False, server_default='pending'),
        sa.Column('applied_by_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_by_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_leave_requests_company_id', 'leave_requests', ['company_id'])
    op.create_index('ix_leave_requests_employee_id', 'leave_requests', ['employee_id'])

    op.create_table(
        'leave_approval_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('leave_request_id', sa.Integer(), sa.ForeignKey('leave_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('comment', sa.Text()),
        sa.Column('acted_by_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('acted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_leave_approval_actions_leave_request_id', 'leave_approval_actions', ['leave_request_id'])

    # ---- claims ----
    op.create_table(
        'claim_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('auto_approve_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        _money('auto_approve_max_amount', nullable=True),
        _money('max_per_month', nullable=True),
        _money('max_per_year', nullable=True),
        sa.Column('require_receipt', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'code', name='uq_claim_type_company_code'),
    )
    op.create_index('ix_claim_types_company_id', 'claim_types', ['company_id'])

    op.create_table(
        'department_claim_restrictions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('allowed_categories', sa.JSON(), nullable=False),
    )

    # FK to payroll_items is added once that table exists
    op.create_table(
        'claims',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.String(length=30), nullable=False),
        _money('amount'),
        sa.Column('claim_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('receipt_ref', sa.String(length=255)),
        sa.Column('receipt_fingerprint', sa.String(length=128)),
        sa.Column('status', sa.Enum('pending', 'approved', 'rejected', 'paid', name='claim_status_enum'),
                  nullable=False, server_default='pending'),
        sa.Column('auto_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('linked_payroll_item_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_claims_company_id', 'claims', ['company_id'])
    op.create_index('ix_claims_employee_id', 'claims', ['employee_id'])
    op.create_index('ix_claims_receipt_fingerprint', 'claims', ['receipt_fingerprint'])
    op.create_index('ix_claims_linked_payroll_item_id', 'claims', ['linked_payroll_item_id'])

    # ---- payroll ----
    op.create_table(
        'payroll_adjustments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('type', sa.Enum(
            'bonus', 'commission', 'incentive', 'sales', 'trips', 'trip_commission', 'outstation',
            'other_earnings', 'attendance_bonus', 'other_deduction', 'monthly_rebate',
            name='payroll_adjustment_type_enum'), nullable=False),
        _money('amount'),
        sa.Column('quantity', sa.Numeric(10, 2)),
        sa.Column('reason', sa.String(length=255)),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_payroll_adjustments_company_id', 'payroll_adjustments', ['company_id'])
    op.create_index('ix_payroll_adjustments_employee_id', 'payroll_adjustments', ['employee_id'])
    op.create_index('ix_payroll_adj_emp_period', 'payroll_adjustments', ['employee_id', 'period'])

    op.create_table(
        'rate_tables',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.Enum('EPF', 'SOCSO', 'EIS', 'PCB', name='rate_table_kind_enum'), nullable=False),
        sa.Column('key', sa.String(length=80), nullable=False),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date()),
        sa.Column('scope_company_id', sa.Integer(), sa.ForeignKey('companies.id')),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('created_by', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('closed_by', sa.Integer()),
        sa.Column('closed_at', sa.DateTime()),
    )
    op.create_index('ix_rate_table_resolve', 'rate_tables',
                    ['kind', 'scope_company_id', 'effective_from', 'effective_to', 'priority'])

    op.create_table(
        'payroll_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.Enum('draft', 'approved', 'locked', 'paid', name='payroll_run_status_enum'),
                  nullable=False, server_default='draft'),
        sa.Column('totals', sa.JSON()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('generated_at', sa.DateTime()),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('locked_at', sa.DateTime()),
        sa.Column('paid_at', sa.DateTime()),
        sa.Column('payment_ref', sa.String(length=120)),
        sa.Column('payment_meta', sa.JSON()),
        sa.UniqueConstraint('company_id', 'year', 'month', name='uq_payroll_run_company_period'),
    )

    money_cols = [_money(n) for n in (
        'basic_salary', 'allowance', 'commission', 'bonus', 'incentive', 'trip_commission',
        'outstation_amount', 'ot_amount', 'ph_pay', 'attendance_bonus', 'other_earnings', 'claims_amount',
        'statutory_base', 'epf_wage', 'epf_employee', 'epf_employer', 'socso_employee', 'socso_employer',
        'eis_employee', 'eis_employer', 'pcb',
        'attendance_deduction', 'unpaid_leave_deduction', 'other_deductions',
        'gross_salary', 'total_deductions', 'net_pay',
    )]
    op.create_table(
        'payroll_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.Integer(), sa.ForeignKey('payroll_runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('status', sa.Enum('pending', 'computed', 'locked', 'failed', name='payroll_item_status_enum'),
                  nullable=False, server_default='pending'),
        *money_cols,
        sa.Column('worked_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ot_hours', sa.Numeric(8, 2), nullable=False, server_default='0'),
        sa.Column('unpaid_leave_days', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('late_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('early_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variance_pct', sa.Numeric(8, 4)),
        sa.Column('variance_flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('warnings', sa.JSON()),
        sa.Column('calc_meta', sa.JSON()),
        sa.Column('computed_at', sa.DateTime()),
        sa.Column('locked_at', sa.DateTime()),
        sa.UniqueConstraint('run_id', 'employee_id', name='uq_payroll_item_run_employee'),
    )
    op.create_index('ix_payroll_items_run_id', 'payroll_items', ['run_id'])
    op.create_index('ix_payroll_items_employee_id', 'payroll_items', ['employee_id'])

    op.create_table(
        'payroll_item_claims',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('payroll_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('claim_id', sa.Integer(), sa.ForeignKey('claims.id'), nullable=False, unique=True),
        _money('amount'),
        sa.Column('linked_at', sa.DateTime()),
    )
    op.create_index('ix_payroll_item_claims_item_id', 'payroll_item_claims', ['item_id'])

    with op.batch_alter_table('claims') as batch:
        batch.create_foreign_key('fk_claims_linked_payroll_item', 'payroll_items',
                                 ['linked_payroll_item_id'], ['id'], ondelete='SET NULL')

    op.create_table(
        'ea_forms',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('form_data', sa.JSON(), nullable=False),
        _money('total_employment_income'),
        _money('total_epf'),
        _money('total_pcb'),
        sa.Column('source_hash', sa.String(length=64), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'year', name='uq_ea_form_employee_year'),
    )
    op.create_index('ix_ea_forms_company_id', 'ea_forms', ['company_id'])
    op.create_index('ix_ea_forms_employee_id', 'ea_forms', ['employee_id'])

    op.create_table(
        'benefits_in_kind',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        _money('value'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_benefits_in_kind_employee_id', 'benefits_in_kind', ['employee_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id')),
        sa.Column('entity', sa.String(length=40), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=40), nullable=False),
        sa.Column('old_values', sa.JSON()),
        sa.Column('new_values', sa.JSON()),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_company_id', 'audit_logs', ['company_id'])
    op.create_index('ix_audit_entity', 'audit_logs', ['entity', 'entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('benefits_in_kind')
    op.drop_table('ea_forms')
    with op.batch_alter_table('claims') as batch:
        batch.drop_constraint('fk_claims_linked_payroll_item', type_='foreignkey')
    op.drop_table('payroll_item_claims')
    op.drop_table('payroll_items')
    op.drop_table('payroll_runs')
    op.drop_table('rate_tables')
    op.drop_table('payroll_adjustments')
    op.drop_table('claims')
    op.drop_table('department_claim_restrictions')
    op.drop_table('claim_types')
    op.drop_table('leave_approval_actions')
    op.drop_table('leave_requests')
    op.drop_table('leave_balances')
    op.drop_table('leave_types')
    op.drop_table('clock_records')
    op.drop_table('schedules')
    op.drop_table('public_holidays')
    op.drop_table('employees')
    op.drop_table('outlets')
    op.drop_table('departments')
    op.drop_table('payroll_structure_components')
    op.drop_table('payroll_structures')
    op.drop_table('role_permissions')
    op.drop_table('user_roles')
    op.drop_table('permissions')
    op.drop_table('roles')
    op.drop_table('users')
    op.drop_table('companies')

    bind = op.get_bind()
    for name in (
        'payroll_item_status_enum', 'payroll_run_status_enum', 'rate_table_kind_enum',
        'payroll_adjustment_type_enum', 'claim_status_enum', 'leave_status_enum', 'leave_gender_enum',
        'attendance_status_enum', 'marital_status_enum', 'epf_contribution_enum', 'residency_status_enum',
        'work_type_enum', 'employment_type_enum', 'employee_gender_enum', 'component_mode_enum',
        'earning_component_enum', 'company_grouping_enum',
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
