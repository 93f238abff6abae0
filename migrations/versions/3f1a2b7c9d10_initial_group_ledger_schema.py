"""initial group ledger schema

Revision ID: 3f1a2b7c9d10
Revises:
Create Date: 2026-10-17 10:12:41.503112

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a2b7c9d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

HELPER_TYPES = "type IN ('OTHERS_FIXED', 'GROUP_LENDING')"


def _ledger_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('group_type', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='SET NULL'), nullable=True),
    )
    op.create_index(f'ix_{name}_id', name, ['id'])
    op.create_index(f'ix_{name}_user_id', name, ['user_id'])


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])

    op.create_table(
        'groups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_groups_id', 'groups', ['id'])

    op.create_table(
        'group_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'MEMBER', name='member_role'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.ForeignKeyConstraint(['group_id'], ['groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),

        sa.UniqueConstraint('group_id', 'user_id', name='uq_group_member_user'),
    )
    op.create_index('ix_group_members_id', 'group_members', ['id'])

    op.create_table(
        'user_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_user_accounts_id', 'user_accounts', ['id'])
    op.create_index('ix_user_accounts_user_id', 'user_accounts', ['user_id'])
    op.create_index(
        'uq_user_helper_account',
        'user_accounts',
        ['user_id', 'type'],
        unique=True,
        postgresql_where=sa.text(HELPER_TYPES),
        sqlite_where=sa.text(HELPER_TYPES),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=True),
        sa.UniqueConstraint('group_id', 'name', 'type', name='uq_group_category'),
    )
    op.create_index('ix_categories_id', 'categories', ['id'])

    for name in ('expenses', 'incomes', 'lendings', 'borrowings'):
        _ledger_table(name)

    op.create_table(
        'group_expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('split_type', sa.String(), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_group_expenses_id', 'group_expenses', ['id'])
    op.create_index('ix_group_expenses_group_id', 'group_expenses', ['group_id'])

    op.create_table(
        'group_lenders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('expense_id', sa.Integer(), sa.ForeignKey('group_expenses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_group_lenders_expense_id', 'group_lenders', ['expense_id'])

    op.create_table(
        'settlements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('allocated_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('borrower_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('lender_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('borrower_account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=True),
        sa.Column('lender_account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=True),
        sa.Column('settled_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('borrower_expense_id', sa.Integer(), sa.ForeignKey('expenses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('borrower_lending_id', sa.Integer(), sa.ForeignKey('lendings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('lender_income_id', sa.Integer(), sa.ForeignKey('incomes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('lender_borrowing_id', sa.Integer(), sa.ForeignKey('borrowings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_settlements_group_id', 'settlements', ['group_id'])

    op.create_table(
        'expense_splits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('expense_id', sa.Integer(), sa.ForeignKey('group_expenses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('settled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settlement_account_id', sa.Integer(), sa.ForeignKey('user_accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('settlement_id', sa.Integer(), sa.ForeignKey('settlements.id', ondelete='SET NULL'), nullable=True),
    )
    op.create_index('ix_expense_splits_expense_id', 'expense_splits', ['expense_id'])
    op.create_index('ix_expense_splits_user_id', 'expense_splits', ['user_id'])
    op.create_index('ix_expense_splits_settlement_id', 'expense_splits', ['settlement_id'])

    op.create_table(
        'split_coverages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('split_id', sa.Integer(), sa.ForeignKey('expense_splits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('lender_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('settlement_id', sa.Integer(), sa.ForeignKey('settlements.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('split_id', 'lender_user_id', name='uq_split_coverage_lender'),
    )
    op.create_index('ix_split_coverages_split_id', 'split_coverages', ['split_id'])
    op.create_index('ix_split_coverages_settlement_id', 'split_coverages', ['settlement_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('related_id', sa.Integer(), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=True),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_activity_logs_group_id', 'activity_logs', ['group_id'])


def downgrade() -> None:
    for name in (
        'activity_logs', 'notifications', 'split_coverages', 'expense_splits', 'settlements',
        'group_lenders', 'group_expenses', 'borrowings', 'lendings', 'incomes',
        'expenses', 'categories', 'user_accounts', 'group_members', 'groups', 'users',
    ):
        op.drop_table(name)
    sa.Enum(name='member_role').drop(op.get_bind(), checkfirst=True)
