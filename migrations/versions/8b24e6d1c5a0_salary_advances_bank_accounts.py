"""salary advances, bank accounts, absent-day deduction

Revision ID: 8b24e6d1c5a0
Revises: 3f1a9c0d2e71
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b24e6d1c5a0'
down_revision: Union[str, Sequence[str], None] = '3f1a9c0d2e71'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name, nullable=False):
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, server_default=None if nullable else '0')


def upgrade() -> None:
    op.create_table(
        'employee_bank_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bank_name', sa.String(length=80), nullable=False),
        sa.Column('account_number', sa.String(length=40), nullable=False),
        sa.Column('account_holder', sa.String(length=160)),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_employee_bank_accounts_employee_id', 'employee_bank_accounts', ['employee_id'])
    op.create_index('ix_empbank_primary', 'employee_bank_accounts', ['employee_id', 'is_primary'])

    op.create_table(
        'salary_advances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        _money('amount'),
        sa.Column('advance_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(length=255)),
        sa.Column('reference_no', sa.String(length=50)),
        sa.Column('deduction_method', sa.Enum('full', 'installment', name='advance_deduction_method_enum'),
                  nullable=False, server_default='full'),
        _money('installment_amount', nullable=True),
        _money('total_deducted'),
        _money('remaining_balance'),
        sa.Column('deduct_from_year', sa.Integer(), nullable=False),
        sa.Column('deduct_from_month', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('pending', 'active', 'completed', 'cancelled',
                                    name='salary_advance_status_enum'),
                  nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_salary_advances_company_id', 'salary_advances', ['company_id'])
    op.create_index('ix_salary_advances_employee_id', 'salary_advances', ['employee_id'])
    op.create_index('ix_salary_advance_due', 'salary_advances', ['status', 'deduct_from_year', 'deduct_from_month'])

    op.create_table(
        'salary_advance_deductions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('advance_id', sa.Integer(), sa.ForeignKey('salary_advances.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('payroll_item_id', sa.Integer(), sa.ForeignKey('payroll_items.id'), nullable=False),
        _money('amount'),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('advance_id', 'payroll_item_id', name='uq_advance_deduction_item'),
    )
    op.create_index('ix_salary_advance_deductions_advance_id', 'salary_advance_deductions', ['advance_id'])
    op.create_index('ix_salary_advance_deductions_payroll_item_id', 'salary_advance_deductions',
                    ['payroll_item_id'])

    with op.batch_alter_table('payroll_items') as batch:
        batch.add_column(_money('absent_deduction'))
        batch.add_column(_money('advance_deduction'))
        batch.add_column(sa.Column('absent_days', sa.Integer(), nullable=False, server_default='0'))


def downgrade() -> None:
    with op.batch_alter_table('payroll_items') as batch:
        batch.drop_column('absent_days')
        batch.drop_column('advance_deduction')
        batch.drop_column('absent_deduction')

    op.drop_table('salary_advance_deductions')
    op.drop_table('salary_advances')
    op.drop_table('employee_bank_accounts')

    bind = op.get_bind()
    for name in ('salary_advance_status_enum', 'advance_deduction_method_enum'):
        sa.Enum(name=name).drop(bind, checkfirst=True)
