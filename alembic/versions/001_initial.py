"""001 Initial schema - tenants, conversations, messages, devices, notification queue

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

- One conversation per (host, Lodgify booking)
- One message per (conversation, Lodgify message id)
- One push subscription per (host, device)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'lodgify_configs',
        sa.Column('host_id', sa.String(64), primary_key=True),
        sa.Column('api_key', sa.Text(), nullable=False),
        sa.Column('booking_webhook_secret', sa.Text(), nullable=True),
        sa.Column('message_webhook_secret', sa.Text(), nullable=True),
        sa.Column('booking_webhook_id', sa.String(255), nullable=True),
        sa.Column('message_webhook_id', sa.String(255), nullable=True),
        sa.Column('webhook_configured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'conversations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('host_id', sa.String(64), nullable=False),
        sa.Column('guest_name', sa.String(255), nullable=True),
        sa.Column('guest_phone', sa.String(50), nullable=True),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('guest_count', sa.Integer(), nullable=True),
        sa.Column('check_in_date', sa.Date(), nullable=True),
        sa.Column('check_out_date', sa.Date(), nullable=True),
        sa.Column('nights', sa.Integer(), nullable=True),
        sa.Column('lodgify_booking_id', sa.String(64), nullable=True),
        sa.Column('lodgify_thread_uid', sa.String(255), nullable=True),
        sa.Column('lodgify_property_id', sa.String(64), nullable=True),
        sa.Column('property_name', sa.String(255), nullable=True),
        sa.Column('booking_source', sa.String(100), nullable=True),
        sa.Column('booking_status', sa.String(50), nullable=True),
        sa.Column('total_amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(10), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('resolution_method', sa.String(20), nullable=True),
        sa.Column('unread_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_message', sa.Text(), nullable=True),
        sa.Column('last_message_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('host_id', 'lodgify_booking_id', name='uq_conversation_host_booking'),
    )
    op.create_index('ix_conversations_host_id', 'conversations', ['host_id'])
    op.create_index('ix_conversation_host_thread', 'conversations', ['host_id', 'lodgify_thread_uid'])
    op.create_index('ix_conversation_host_guest', 'conversations', ['host_id', 'guest_name', 'created_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36),
                  sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='text'),
        sa.Column('direction', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='delivered'),
        sa.Column('lodgify_message_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('conversation_id', 'lodgify_message_id', name='uq_message_conversation_lodgify'),
    )
    op.create_index('ix_message_conversation_created', 'messages', ['conversation_id', 'created_at'])

    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('device_id', sa.String(255), nullable=False),
        sa.Column('device_name', sa.String(255), nullable=True),
        sa.Column('platform', sa.String(20), nullable=False, server_default='web'),
        sa.Column('token', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_active', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'device_id', name='uq_push_subscription_user_device'),
    )
    op.create_index('ix_push_subscription_last_active', 'push_subscriptions', ['last_active'])

    op.create_table(
        'notification_queue',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('recipient_id', sa.String(64), nullable=False),
        sa.Column('conversation_id', sa.String(36), nullable=True),
        sa.Column('message_id', sa.String(36), nullable=True),
        sa.Column('type', sa.String(30), nullable=False, server_default='new_message'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_notification_queue_status', 'notification_queue', ['status', 'scheduled_at', 'created_at'])
    op.create_index('ix_notification_queue_recipient', 'notification_queue', ['recipient_id'])

    op.create_table(
        'conversation_analyses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36),
                  sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('message_id', sa.String(36), nullable=True),
        sa.Column('message_content', sa.Text(), nullable=True),
        sa.Column('is_emergency', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('emergency_type', sa.String(30), nullable=True),
        sa.Column('confidence_score', sa.Float(), server_default='0'),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        'ix_conversation_analysis_conversation',
        'conversation_analyses',
        ['conversation_id', 'created_at']
    )


def downgrade():
    op.drop_index('ix_conversation_analysis_conversation', 'conversation_analyses')
    op.drop_table('conversation_analyses')

    op.drop_index('ix_notification_queue_recipient', 'notification_queue')
    op.drop_index('ix_notification_queue_status', 'notification_queue')
    op.drop_table('notification_queue')

    op.drop_index('ix_push_subscription_last_active', 'push_subscriptions')
    op.drop_table('push_subscriptions')

    op.drop_index('ix_message_conversation_created', 'messages')
    op.drop_table('messages')

    op.drop_index('ix_conversation_host_guest', 'conversations')
    op.drop_index('ix_conversation_host_thread', 'conversations')
    op.drop_index('ix_conversations_host_id', 'conversations')
    op.drop_table('conversations')

    op.drop_table('lodgify_configs')
