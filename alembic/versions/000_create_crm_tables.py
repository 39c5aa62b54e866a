"""Create CRM tables (users, customers, orders, segments, campaigns, delivery records)

Revision ID: 000_create_crm_tables
Revises:
Create Date: 2026-10-18

Note: Tables are only created when missing, so the revision can be
applied to a database bootstrapped by init_db().
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '000_create_crm_tables'
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade():
    """Create CRM tables."""
    if not _table_exists('users'):
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
            sa.Column('name', sa.String(255)),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if not _table_exists('customers'):
        op.create_table(
            'customers',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('email', sa.String(255), nullable=False, index=True),
            sa.Column('phone', sa.String(50)),
            sa.Column('spend', sa.Float(), nullable=False, server_default='0'),
            sa.Column('visits', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_active', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists('orders'):
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False, index=True),
            sa.Column('amount', sa.Float(), nullable=False),
            sa.Column('items', sa.JSON(), nullable=False),
            sa.Column('date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists('segments'):
        op.create_table(
            'segments',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('rules_json', sa.JSON(), nullable=False),
            sa.Column('created_by', sa.String(255)),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('customer_ids', sa.JSON(), nullable=False),
            sa.Column('customer_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_populated_at', sa.DateTime(timezone=True)),
        )

    if not _table_exists('campaigns'):
        op.create_table(
            'campaigns',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('segment_id', sa.Integer(), nullable=False, index=True),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('subject', sa.String(500), nullable=False),
            sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )

    if not _table_exists('communication_logs'):
        op.create_table(
            'communication_logs',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('campaign_id', sa.Integer(), index=True),
            sa.Column('customer_id', sa.Integer(), index=True),
            sa.Column('status', sa.String(20), nullable=False, index=True),
            sa.Column('message', sa.Text()),
            sa.Column('vendor_message_id', sa.String(255), index=True),
            sa.Column('error_message', sa.Text()),
            sa.Column('sent_at', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )

    if not _table_exists('sent_messages'):
        op.create_table(
            'sent_messages',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
            sa.Column('recipient_email', sa.String(255), nullable=False),
            sa.Column('recipient_name', sa.String(255)),
            sa.Column('subject', sa.String(500), nullable=False),
            sa.Column('text_content', sa.Text(), nullable=False),
            sa.Column('html_content', sa.Text()),
            sa.Column('status', sa.String(20), nullable=False, index=True),
            sa.Column('message_id', sa.String(255), nullable=False, unique=True, index=True),
            sa.Column('error_message', sa.Text()),
            sa.Column('campaign_id', sa.Integer(), index=True),
            sa.Column('discount_info', sa.JSON()),
            sa.Column('personalization_data', sa.JSON()),
            sa.Column('sent_at', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )


def downgrade():
    """Drop CRM tables."""
    for table in ('sent_messages', 'communication_logs', 'campaigns', 'segments', 'orders', 'customers', 'users'):
        op.drop_table(table)
