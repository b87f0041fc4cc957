"""Baseline migration - users, posts, token ledger, notifications, chat

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table of the social network in one step.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('avatar_url', sa.String(500)),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('token_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('token_version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('token_balance >= 0', name='ck_users_token_balance_non_negative'),
    )

    # ==========================================================================
    # Posts + engagement
    # ==========================================================================
    op.create_table(
        'posts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('image_url', sa.String(500)),
        sa.Column('image_size_bytes', sa.Integer()),
        sa.Column('author_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_cost', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('reviewed_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('idx_posts_status_created', 'posts', ['status', 'created_at'])
    op.create_index('idx_posts_author', 'posts', ['author_id', 'created_at'])

    op.create_table(
        'post_likes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('post_id', sa.Uuid(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'post_id', name='uq_post_likes_user_post'),
    )
    op.create_index('ix_post_likes_post_id', 'post_likes', ['post_id'])

    op.create_table(
        'post_comments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('post_id', sa.Uuid(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_post_comments_post_id', 'post_comments', ['post_id'])

    # ==========================================================================
    # Token ledger (append-only) + purchase requests
    # ==========================================================================
    op.create_table(
        'token_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('post_id', sa.Uuid(), sa.ForeignKey('posts.id', ondelete='SET NULL')),
        sa.Column('idempotency_key', sa.String(128)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_token_tx_user_idempotency'),
    )
    op.create_index('idx_token_tx_user_created', 'token_transactions', ['user_id', 'created_at'])

    op.create_table(
        'token_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('reviewed_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        sa.Column('rejection_reason', sa.Text()),
        *_timestamps(),
    )
    op.create_index('ix_token_requests_user_id', 'token_requests', ['user_id'])
    op.create_index('idx_token_requests_status_created', 'token_requests', ['status', 'created_at'])

    # ==========================================================================
    # Notifications
    # ==========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_notif_user_unread', 'notifications', ['user_id', 'read', 'created_at'])

    # ==========================================================================
    # Chat
    # ==========================================================================
    op.create_table(
        'chats',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('is_group', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pair_key', sa.String(80), unique=True),
        sa.Column('last_seq', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'chat_participants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('chat_id', sa.Uuid(), sa.ForeignKey('chats.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('chat_id', 'user_id', name='uq_chat_participants_chat_user'),
    )
    op.create_index('ix_chat_participants_user_id', 'chat_participants', ['user_id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('chat_id', sa.Uuid(), sa.ForeignKey('chats.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('receiver_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('attachment_size_bytes', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('chat_id', 'seq', name='uq_messages_chat_seq'),
    )


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        'messages',
        'chat_participants',
        'chats',
        'notifications',
        'token_requests',
        'token_transactions',
        'post_comments',
        'post_likes',
        'posts',
        'users',
    ):
        op.drop_table(table)
