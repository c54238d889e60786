"""create_swipe_match_tables

Revision ID: a1f0c3e5b7d9
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a1f0c3e5b7d9'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


decision_kind = postgresql.ENUM('pass', 'like', 'super_like', name='decisionkind', create_type=False)
notification_type = postgresql.ENUM(
    'MATCH_FORMED', 'MESSAGE_RECEIVED', 'LIKE_RECEIVED', name='notificationtype', create_type=False
)


def upgrade() -> None:
    """Upgrade schema - users, decisions, matches, messages, presence and notifications."""

    decision_kind.create(op.get_bind(), checkfirst=True)
    notification_type.create(op.get_bind(), checkfirst=True)

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create decisions table
    op.create_table(
        'decisions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', decision_kind, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subject_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('actor_id', 'subject_id', name='uq_decisions_actor_subject'),
        sa.CheckConstraint('actor_id <> subject_id', name='ck_decisions_no_self')
    )
    op.create_index('ix_decisions_id', 'decisions', ['id'])
    op.create_index('ix_decisions_actor_id', 'decisions', ['actor_id'])
    op.create_index('ix_decisions_subject_id', 'decisions', ['subject_id'])
    op.create_index('ix_decisions_created_at', 'decisions', ['created_at'])

    # Create matches table
    op.create_table(
        'matches',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_a', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_b', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deactivation_reason', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_a'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_b'], ['users.id'], ondelete='CASCADE'),
        sa.CheckConstraint('user_a < user_b', name='ck_matches_canonical_pair')
    )
    op.create_index('ix_matches_id', 'matches', ['id'])
    op.create_index('ix_matches_user_a', 'matches', ['user_a'])
    op.create_index('ix_matches_user_b', 'matches', ['user_b'])
    op.create_index('ix_matches_is_active', 'matches', ['is_active'])
    op.create_index('ix_matches_created_at', 'matches', ['created_at'])
    # At most one active match per pair
    op.create_index(
        'uq_matches_active_pair',
        'matches',
        ['user_a', 'user_b'],
        unique=True,
        postgresql_where=sa.text('is_active = true')
    )

    # Create messages table
    op.create_table(
        'messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('match_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sender_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['match_id'], ['matches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('match_id', 'created_at', name='uq_messages_match_created_at')
    )
    op.create_index('ix_messages_id', 'messages', ['id'])
    op.create_index('ix_messages_match_id', 'messages', ['match_id'])
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_match_unread', 'messages', ['match_id', 'sender_id', 'read_at'])

    # Create presence_samples table
    op.create_table(
        'presence_samples',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE')
    )

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('recipient_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', notification_type, nullable=False),
        sa.Column('payload_ref', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='CASCADE')
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])
    op.create_index('ix_notifications_kind', 'notifications', ['kind'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    """Downgrade schema - drop every swipe / match / conversation table."""

    op.drop_table('notifications')
    op.drop_table('presence_samples')
    op.drop_table('messages')
    op.drop_index('uq_matches_active_pair', 'matches')
    op.drop_table('matches')
    op.drop_table('decisions')
    op.drop_table('users')

    notification_type.drop(op.get_bind(), checkfirst=True)
    decision_kind.drop(op.get_bind(), checkfirst=True)
