"""Initial schema: users, projects, orders, leaderboard bands

Revision ID: 3c1d9a7e2b40
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1d9a7e2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

provider_enum = sa.Enum('STRIPE', 'PAYPAL', 'DODO', name='paymentprovidername')
status_enum = sa.Enum('PENDING', 'COMPLETED', 'FAILED', name='orderstatus')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('live_url', sa.String(length=1024), nullable=True),
        sa.Column('github_url', sa.String(length=1024), nullable=True),
        sa.Column('featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_projects_id'), 'projects', ['id'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', provider_enum, nullable=False),
        sa.Column('provider_session_id', sa.String(length=255), nullable=True),
        sa.Column('provider_payment_id', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', status_enum, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('payer_email', sa.String(length=255), nullable=True),
        sa.Column('hall_of_fame_position', sa.Integer(), nullable=True),
        sa.Column('idea_description', sa.Text(), nullable=True),
        sa.Column('project_name', sa.String(length=255), nullable=True),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hall_of_fame_position'),
        sa.UniqueConstraint('provider', 'provider_session_id', name='uq_orders_provider_session'),
        sa.UniqueConstraint('provider', 'provider_payment_id', name='uq_orders_provider_payment'),
    )
    op.create_index(op.f('ix_orders_id'), 'orders', ['id'], unique=False)
    op.create_index(op.f('ix_orders_provider_session_id'), 'orders', ['provider_session_id'], unique=False)
    op.create_index(op.f('ix_orders_provider_payment_id'), 'orders', ['provider_payment_id'], unique=False)
    op.create_index(op.f('ix_orders_user_id'), 'orders', ['user_id'], unique=False)
    op.create_index(op.f('ix_orders_payer_email'), 'orders', ['payer_email'], unique=False)
    op.create_index('ix_orders_lower_payer_email', 'orders', [sa.text('lower(payer_email)')], unique=False)

    bands = op.create_table(
        'leaderboard_bands',
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('first_position', sa.Integer(), nullable=False),
        sa.Column('last_position', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('name'),
    )
    op.bulk_insert(bands, [
        {'name': 'premium', 'first_position': 1, 'last_position': 1},
        {'name': 'standard', 'first_position': 2, 'last_position': 11},
        {'name': 'hall_of_fame', 'first_position': 12, 'last_position': 100},
    ])


def downgrade() -> None:
    op.drop_table('leaderboard_bands')
    op.drop_index('ix_orders_lower_payer_email', table_name='orders')
    op.drop_index(op.f('ix_orders_payer_email'), table_name='orders')
    op.drop_index(op.f('ix_orders_user_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_provider_payment_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_provider_session_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_id'), table_name='orders')
    op.drop_table('orders')
    op.drop_index(op.f('ix_projects_id'), table_name='projects')
    op.drop_table('projects')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_id'), table_name='users')
    op.drop_table('users')
    status_enum.drop(op.get_bind(), checkfirst=True)
    provider_enum.drop(op.get_bind(), checkfirst=True)
