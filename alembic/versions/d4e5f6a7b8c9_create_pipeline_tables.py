"""Create scan pipeline tables

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

revision = 'd4e5f6a7b8c9'
down_revision = None
branch_labels = None
depends_on = None

scan_status = sa.Enum('PENDING', 'FETCHING', 'CLASSIFYING', 'EXTRACTING', 'COMPLETED', 'FAILED', name='scanstatus')
scan_type = sa.Enum('INITIAL', 'RESCAN', name='scantype')
batch_status = sa.Enum('RUNNING', 'COMPLETED', 'PARTIAL', 'FAILED', name='batchstatus')


def upgrade() -> None:
    op.create_table(
        'subreddits',
        sa.Column('id',              sa.Integer(), primary_key=True, index=True),
        sa.Column('name',            sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('last_scanned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at',      sa.DateTime(), nullable=True),
    )

    op.create_table(
        'scans',
        sa.Column('id',               sa.Integer(), primary_key=True, index=True),
        sa.Column('subreddit_id',     sa.Integer(), sa.ForeignKey('subreddits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('scan_type',        scan_type, nullable=False),
        sa.Column('status',           scan_status, nullable=False, index=True),
        sa.Column('error_message',    sa.Text(), nullable=True),
        sa.Column('date_from',        sa.DateTime(), nullable=True),
        sa.Column('date_to',          sa.DateTime(), nullable=True),
        sa.Column('posts_fetched',    sa.Integer(), nullable=False, server_default='0'),
        sa.Column('posts_classified', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('posts_extracted',  sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ideas_found',      sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fetch_jobs_total', sa.Integer(), nullable=True),
        sa.Column('fetch_jobs_done',  sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at',       sa.DateTime(), nullable=True),
        sa.Column('completed_at',     sa.DateTime(), nullable=True),
        sa.Column('created_at',       sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        'posts',
        sa.Column('id',                sa.Integer(), primary_key=True, index=True),
        sa.Column('subreddit_id',      sa.Integer(), sa.ForeignKey('subreddits.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('scan_id',           sa.Integer(), sa.ForeignKey('scans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('reddit_id',         sa.String(20), nullable=False, unique=True, index=True),
        sa.Column('title',             sa.String(500), nullable=False),
        sa.Column('body',              sa.Text(), nullable=True),
        sa.Column('author',            sa.String(100), nullable=True),
        sa.Column('permalink',         sa.String(500), nullable=True),
        sa.Column('upvotes',           sa.Integer(), nullable=False, server_default='0'),
        sa.Column('num_comments',      sa.Integer(), nullable=False, server_default='0'),
        sa.Column('upvote_ratio',      sa.Float(), nullable=True),
        sa.Column('reddit_created_at', sa.DateTime(), nullable=True),
        sa.Column('fetched_at',        sa.DateTime(), nullable=True),
        sa.Column('extracted_at',      sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        'comments',
        sa.Column('id',        sa.Integer(), primary_key=True, index=True),
        sa.Column('post_id',   sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('reddit_id', sa.String(20), nullable=True),
        sa.Column('author',    sa.String(100), nullable=True),
        sa.Column('body',      sa.Text(), nullable=False),
        sa.Column('upvotes',   sa.Integer(), nullable=False, server_default='0'),
    )

    provider_columns = []
    for prefix in ('haiku', 'gpt'):
        provider_columns += [
            sa.Column(f'{prefix}_verdict',    sa.String(10), nullable=True),
            sa.Column(f'{prefix}_confidence', sa.Float(), nullable=True),
            sa.Column(f'{prefix}_category',   sa.String(50), nullable=True),
            sa.Column(f'{prefix}_reasoning',  sa.Text(), nullable=True),
            sa.Column(f'{prefix}_completed',  sa.Boolean(), nullable=False, server_default=sa.false()),
        ]

    op.create_table(
        'classifications',
        sa.Column('id',             sa.Integer(), primary_key=True, index=True),
        sa.Column('post_id',        sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False, unique=True),
        *provider_columns,
        sa.Column('combined_score', sa.Float(), nullable=True),
        sa.Column('final_decision', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('classified_at',  sa.DateTime(), nullable=True),
        sa.Column('created_at',     sa.DateTime(), nullable=True),
        sa.Column('updated_at',     sa.DateTime(), nullable=True),
    )

    op.create_table(
        'ideas',
        sa.Column('id',                    sa.Integer(), primary_key=True, index=True),
        sa.Column('post_id',               sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('scan_id',               sa.Integer(), sa.ForeignKey('scans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('idea_title',            sa.String(255), nullable=False),
        sa.Column('problem_statement',     sa.Text(), nullable=False),
        sa.Column('proposed_solution',     sa.Text(), nullable=True),
        sa.Column('target_audience',       sa.Text(), nullable=True),
        sa.Column('why_small_team_viable', sa.Text(), nullable=True),
        sa.Column('demand_evidence',       sa.Text(), nullable=True),
        sa.Column('monetization_model',    sa.Text(), nullable=True),
        sa.Column('branding_suggestions',  sa.JSON(), nullable=True),
        sa.Column('marketing_channels',    sa.JSON(), nullable=True),
        sa.Column('existing_competitors',  sa.JSON(), nullable=True),
        sa.Column('scores',                sa.JSON(), nullable=True),
        sa.Column('score_monetization',    sa.Integer(), nullable=True),
        sa.Column('score_saturation',      sa.Integer(), nullable=True),
        sa.Column('score_complexity',      sa.Integer(), nullable=True),
        sa.Column('score_demand',          sa.Integer(), nullable=True),
        sa.Column('score_overall',         sa.Integer(), nullable=True, index=True),
        sa.Column('source_quote',          sa.Text(), nullable=True),
        sa.Column('classification_status', sa.String(20), nullable=True),
        sa.Column('created_at',            sa.DateTime(), nullable=True),
    )

    op.create_table(
        'job_batches',
        sa.Column('id',              sa.String(36), primary_key=True),
        sa.Column('name',            sa.String(100), nullable=False, index=True),
        sa.Column('scan_id',         sa.Integer(), sa.ForeignKey('scans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('stage',           sa.String(20), nullable=False),
        sa.Column('status',          batch_status, nullable=False),
        sa.Column('total_jobs',      sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_jobs',    sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_jobs',     sa.Integer(), nullable=False, server_default='0'),
        sa.Column('finished_chunks', sa.JSON(), nullable=True),
        sa.Column('created_at',      sa.DateTime(), nullable=True, index=True),
        sa.Column('finished_at',     sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('job_batches')
    op.drop_table('ideas')
    op.drop_table('classifications')
    op.drop_table('comments')
    op.drop_table('posts')
    op.drop_table('scans')
    op.drop_table('subreddits')
    batch_status.drop(op.get_bind(), checkfirst=True)
    scan_status.drop(op.get_bind(), checkfirst=True)
    scan_type.drop(op.get_bind(), checkfirst=True)
