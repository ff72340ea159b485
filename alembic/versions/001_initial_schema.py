"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


# tier, rpm, rph, rpd, max tokens/request, tokens/day, documents, storage MB,
# concurrent requests, agents, agent memory
TIER_SEED = [
    ('community', 5, 50, 100, 2000, 10000, 0, 0, 1, 0, False),
    ('subscriber', 20, 200, 500, 4000, 50000, 10, 100, 2, 1, False),
    ('premium', 60, 600, 2000, 8000, 200000, 100, 1000, 5, 6, True),
    ('lifetime', 60, 600, 2000, 8000, 200000, 100, 1000, 5, 6, True),
    ('byok', 120, 1200, 10000, 16000, None, 500, 5000, 10, 6, True),
    ('admin', None, None, None, None, None, None, None, 20, 6, True),
    ('demo', 2, 10, 20, 1000, 5000, 0, 0, 1, 0, False),
]

DEMO_LIMIT_SEED = [
    ('chat_messages', 5, 'Maximum AI chat messages per session'),
    ('projects', 1, 'Maximum projects demo user can create'),
    ('todos', 5, 'Maximum todos per project'),
    ('milestones', 2, 'Maximum milestones per project'),
    ('ai_suggestions', 3, 'Maximum AI suggestion requests'),
    ('marketing_plans', 0, 'Marketing plans locked in demo'),
    ('ai_agents', 0, 'AI agents locked in demo'),
]


def upgrade() -> None:
    # Create rate_limits table
    rate_limits = op.create_table(
        'rate_limits',
        sa.Column('tier', sa.String(length=50), nullable=False),
        sa.Column('requests_per_minute', sa.Integer(), nullable=True),
        sa.Column('requests_per_hour', sa.Integer(), nullable=True),
        sa.Column('requests_per_day', sa.Integer(), nullable=True),
        sa.Column('max_tokens_per_request', sa.Integer(), nullable=True),
        sa.Column('tokens_per_day', sa.Integer(), nullable=True),
        sa.Column('max_documents', sa.Integer(), nullable=True),
        sa.Column('max_storage_mb', sa.Integer(), nullable=True),
        sa.Column('max_concurrent_requests', sa.Integer(), nullable=True),
        sa.Column('max_agents', sa.Integer(), nullable=True),
        sa.Column('agent_memory_enabled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('tier')
    )

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('subscription_tier', sa.String(length=50), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_subscription_tier'), 'users', ['subscription_tier'], unique=False)

    # Create user_api_keys table
    op.create_table(
        'user_api_keys',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('key_hint', sa.String(length=16), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_api_keys_id'), 'user_api_keys', ['id'], unique=False)
    op.create_index(op.f('ix_user_api_keys_user_id'), 'user_api_keys', ['user_id'], unique=False)

    # Create demo_sessions table
    op.create_table(
        'demo_sessions',
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('referral_code', sa.String(length=20), nullable=True),
        sa.Column('referral_credits_earned', sa.Integer(), nullable=False),
        sa.Column('referred_by', sa.String(length=20), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('fingerprint', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_activity', sa.DateTime(), nullable=False),
        sa.Column('last_request_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_demo_sessions_credits_non_negative'),
        sa.PrimaryKeyConstraint('session_id')
    )
    op.create_index(op.f('ix_demo_sessions_referral_code'), 'demo_sessions', ['referral_code'], unique=True)
    op.create_index(op.f('ix_demo_sessions_referred_by'), 'demo_sessions', ['referred_by'], unique=False)
    op.create_index(op.f('ix_demo_sessions_ip_address'), 'demo_sessions', ['ip_address'], unique=False)
    op.create_index(op.f('ix_demo_sessions_created_at'), 'demo_sessions', ['created_at'], unique=False)
    op.create_index(op.f('ix_demo_sessions_expires_at'), 'demo_sessions', ['expires_at'], unique=False)

    # Create demo_referrals table
    op.create_table(
        'demo_referrals',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('referrer_session_id', sa.String(length=64), nullable=False),
        sa.Column('referral_code', sa.String(length=20), nullable=False),
        sa.Column('clicked_ip', sa.String(length=45), nullable=True),
        sa.Column('clicked_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('converted_to_signup', sa.Boolean(), nullable=False),
        sa.Column('converted_user_id', sa.String(length=36), nullable=True),
        sa.Column('credits_awarded', sa.Integer(), nullable=False),
        sa.Column('clicked_at', sa.DateTime(), nullable=False),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['referrer_session_id'], ['demo_sessions.session_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_demo_referrals_referrer_session_id'), 'demo_referrals', ['referrer_session_id'], unique=False)
    op.create_index(op.f('ix_demo_referrals_referral_code'), 'demo_referrals', ['referral_code'], unique=False)
    op.create_index(op.f('ix_demo_referrals_clicked_at'), 'demo_referrals', ['clicked_at'], unique=False)

    # Create demo_limits table
    demo_limits = op.create_table(
        'demo_limits',
        sa.Column('feature', sa.String(length=50), nullable=False),
        sa.Column('max_count', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('feature')
    )

    # Create window counter tables
    op.create_table(
        'user_rate_tracking',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_type', sa.String(length=20), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False),
        sa.Column('token_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'window_start', 'window_type', name='uq_user_rate_window')
    )
    op.create_index(op.f('ix_user_rate_tracking_user_id'), 'user_rate_tracking', ['user_id'], unique=False)
    op.create_index(op.f('ix_user_rate_tracking_window_start'), 'user_rate_tracking', ['window_start'], unique=False)
    op.create_index('ix_user_rate_tracking_window', 'user_rate_tracking', ['window_start', 'window_type'], unique=False)

    op.create_table(
        'demo_rate_tracking',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_type', sa.String(length=20), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False),
        sa.Column('token_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['demo_sessions.session_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'window_start', 'window_type', name='uq_demo_rate_window')
    )
    op.create_index(op.f('ix_demo_rate_tracking_session_id'), 'demo_rate_tracking', ['session_id'], unique=False)
    op.create_index(op.f('ix_demo_rate_tracking_window_start'), 'demo_rate_tracking', ['window_start'], unique=False)
    op.create_index('ix_demo_rate_tracking_window', 'demo_rate_tracking', ['window_start', 'window_type'], unique=False)

    # Create rate_limit_events table
    op.create_table(
        'rate_limit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('principal_type', sa.String(length=10), nullable=False),
        sa.Column('principal_id', sa.String(length=64), nullable=False),
        sa.Column('limit_type', sa.String(length=50), nullable=False),
        sa.Column('limit_value', sa.Integer(), nullable=True),
        sa.Column('current_value', sa.Integer(), nullable=True),
        sa.Column('tier', sa.String(length=50), nullable=True),
        sa.Column('endpoint', sa.String(length=200), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rate_limit_events_created_at'), 'rate_limit_events', ['created_at'], unique=False)
    op.create_index('ix_rate_limit_events_principal', 'rate_limit_events', ['principal_type', 'principal_id'], unique=False)

    # Seed tier catalog and demo feature limits
    now = sa.func.now()
    op.bulk_insert(rate_limits, [
        {
            'tier': tier,
            'requests_per_minute': rpm,
            'requests_per_hour': rph,
            'requests_per_day': rpd,
            'max_tokens_per_request': max_tokens,
            'tokens_per_day': tokens_per_day,
            'max_documents': documents,
            'max_storage_mb': storage_mb,
            'max_concurrent_requests': concurrent,
            'max_agents': agents,
            'agent_memory_enabled': memory,
            'created_at': now,
            'updated_at': now,
        }
        for tier, rpm, rph, rpd, max_tokens, tokens_per_day, documents, storage_mb, concurrent, agents, memory in TIER_SEED
    ])
    op.bulk_insert(demo_limits, [
        {'feature': feature, 'max_count': max_count, 'description': description, 'created_at': now}
        for feature, max_count, description in DEMO_LIMIT_SEED
    ])


def downgrade() -> None:
    # Drop tables
    op.drop_index('ix_rate_limit_events_principal', table_name='rate_limit_events')
    op.drop_index(op.f('ix_rate_limit_events_created_at'), table_name='rate_limit_events')
    op.drop_table('rate_limit_events')

    op.drop_index('ix_demo_rate_tracking_window', table_name='demo_rate_tracking')
    op.drop_index(op.f('ix_demo_rate_tracking_window_start'), table_name='demo_rate_tracking')
    op.drop_index(op.f('ix_demo_rate_tracking_session_id'), table_name='demo_rate_tracking')
    op.drop_table('demo_rate_tracking')

    op.drop_index('ix_user_rate_tracking_window', table_name='user_rate_tracking')
    op.drop_index(op.f('ix_user_rate_tracking_window_start'), table_name='user_rate_tracking')
    op.drop_index(op.f('ix_user_rate_tracking_user_id'), table_name='user_rate_tracking')
    op.drop_table('user_rate_tracking')

    op.drop_table('demo_limits')

    op.drop_index(op.f('ix_demo_referrals_clicked_at'), table_name='demo_referrals')
    op.drop_index(op.f('ix_demo_referrals_referral_code'), table_name='demo_referrals')
    op.drop_index(op.f('ix_demo_referrals_referrer_session_id'), table_name='demo_referrals')
    op.drop_table('demo_referrals')

    op.drop_index(op.f('ix_demo_sessions_expires_at'), table_name='demo_sessions')
    op.drop_index(op.f('ix_demo_sessions_created_at'), table_name='demo_sessions')
    op.drop_index(op.f('ix_demo_sessions_ip_address'), table_name='demo_sessions')
    op.drop_index(op.f('ix_demo_sessions_referred_by'), table_name='demo_sessions')
    op.drop_index(op.f('ix_demo_sessions_referral_code'), table_name='demo_sessions')
    op.drop_table('demo_sessions')

    op.drop_index(op.f('ix_user_api_keys_user_id'), table_name='user_api_keys')
    op.drop_index(op.f('ix_user_api_keys_id'), table_name='user_api_keys')
    op.drop_table('user_api_keys')

    op.drop_index(op.f('ix_users_subscription_tier'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_id'), table_name='users')
    op.drop_table('users')

    op.drop_table('rate_limits')
