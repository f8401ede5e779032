"""Board sync tables (boards, board cards, card references, integrations)

Revision ID: a1f4c7d2e9b3
Revises:
Create Date: 2026-10-17T09:12:44.310512
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f4c7d2e9b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- boards ---
    op.create_table(
        'boards',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('members', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('wip_limits', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_boards_owner_id', 'boards', ['owner_id'])

    # --- board_cards ---
    op.create_table(
        'board_cards',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('board_id', sa.String(), sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('card_id', sa.String(), nullable=False),
        sa.Column('list_name', sa.String(), nullable=False, server_default='todo'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('card_type', sa.String(), nullable=True),
        sa.Column('sha', sa.String(), nullable=True),
        sa.Column('branch', sa.String(), nullable=True),
        sa.Column('pr_number', sa.Integer(), nullable=True),
        sa.Column('pr_state', sa.String(), nullable=True),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('ci_status', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('board_id', 'card_id', name='uq_board_card'),
    )
    op.create_index('idx_card_board_list_pos', 'board_cards', ['board_id', 'list_name', 'position'])
    op.create_index('idx_card_board_sha', 'board_cards', ['board_id', 'sha'])

    # --- card_references ---
    op.create_table(
        'card_references',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('board_id', sa.String(), sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('card_id', sa.String(), nullable=False),
        sa.Column('source_type', sa.String(), nullable=False),
        sa.Column('source_key', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('message', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('context', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('board_id', 'card_id', 'source_type', 'source_key', name='uq_card_reference'),
    )
    op.create_index('idx_reference_board_card', 'card_references', ['board_id', 'card_id'])

    # --- integrations ---
    op.create_table(
        'integrations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('board_id', sa.String(), sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.Enum('github', 'gitlab', 'bitbucket', name='integrationprovider'), nullable=False, server_default='github'),
        sa.Column('repo_owner', sa.String(), nullable=False),
        sa.Column('repo_name', sa.String(), nullable=False),
        sa.Column('access_token', sa.String(), nullable=True),
        sa.Column('webhook_secret', sa.String(), nullable=True),
        sa.Column('webhook_url', sa.String(), nullable=True),
        sa.Column('webhook_id', sa.String(), nullable=True),
        sa.Column('branch_mapping', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('auto_create_cards', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('auto_close_cards', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'repo_owner', 'repo_name', name='uq_integration_repo'),
    )
    op.create_index('ix_integrations_board_id', 'integrations', ['board_id'])


def downgrade() -> None:
    op.drop_table('integrations')
    op.drop_table('card_references')
    op.drop_table('board_cards')
    op.drop_table('boards')
    op.execute("DROP TYPE IF EXISTS integrationprovider")
