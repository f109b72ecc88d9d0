"""design versioning, reviews and contribution ledger"""

from alembic import op
import sqlalchemy as sa
from typing import Sequence, Union

revision: str = '20261019_01'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'designs',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('hypothesis', sa.Text(), nullable=True),
        sa.Column('discipline_tags', sa.JSON(), nullable=True),
        sa.Column('difficulty_level', sa.String(), nullable=True),
        sa.Column('materials', sa.JSON(), nullable=True),
        sa.Column('steps', sa.JSON(), nullable=True),
        sa.Column('research_questions', sa.JSON(), nullable=True),
        sa.Column('independent_variables', sa.JSON(), nullable=True),
        sa.Column('dependent_variables', sa.JSON(), nullable=True),
        sa.Column('controlled_variables', sa.JSON(), nullable=True),
        sa.Column('safety_considerations', sa.Text(), nullable=True),
        sa.Column('ethical_considerations', sa.Text(), nullable=True),
        sa.Column('analysis_plan', sa.Text(), nullable=True),
        sa.Column('disclaimers', sa.Text(), nullable=True),
        sa.Column('collaboration_notes', sa.Text(), nullable=True),
        sa.Column('seeking_collaborators', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('statistical_methods', sa.JSON(), nullable=True),
        sa.Column('references', sa.JSON(), nullable=True),
        sa.Column('cover_image_url', sa.String(), nullable=True),
        sa.Column('design_files', sa.JSON(), nullable=True),
        sa.Column('reference_design_ids', sa.JSON(), nullable=True),
        sa.Column('custom_fields', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('published_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('has_draft_changes', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pending_changelog', sa.Text(), nullable=True),
        sa.Column('execution_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('derived_design_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fork_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'design_authors',
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), primary_key=True),
        sa.Column('user_id', sa.String(), primary_key=True),
        sa.Column('role', sa.String(), nullable=True, server_default='coauthor'),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'design_versions',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('published_by', sa.String(), nullable=False),
        sa.Column('changelog', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.UniqueConstraint('design_id', 'version_number', name='uq_design_version_number'),
    )
    op.create_table(
        'design_reviews',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('reviewer_id', sa.String(), nullable=False),
        sa.Column('general_comment', sa.Text(), nullable=True),
        sa.Column('readiness_signal', sa.String(), nullable=True),
        sa.Column('endorsement', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_design_reviews_design_reviewer', 'design_reviews', ['design_id', 'reviewer_id'])
    op.create_table(
        'field_suggestions',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('review_id', sa.UUID(), sa.ForeignKey('design_reviews.id'), nullable=False),
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('field_ref', sa.String(), nullable=True),
        sa.Column('new_field_name', sa.String(), nullable=True),
        sa.Column('proposed_text', sa.Text(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('suggestion_type', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='open'),
        sa.Column('owner_reply', sa.Text(), nullable=True),
        sa.Column('remove_material_ids', sa.JSON(), nullable=True),
        sa.Column('bound_value', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_field_suggestions_design_status', 'field_suggestions', ['design_id', 'status'])
    op.create_table(
        'design_contributors',
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), primary_key=True),
        sa.Column('user_id', sa.String(), primary_key=True),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('accepted_suggestion_ids', sa.JSON(), nullable=True),
        sa.Column('credited_suggestion_ids', sa.JSON(), nullable=True),
        sa.Column('endorsed_and_executed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'design_executions',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('design_id', sa.UUID(), sa.ForeignKey('designs.id'), nullable=False),
        sa.Column('design_version', sa.Integer(), nullable=False),
        sa.Column('experimenter_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True, server_default='in_progress'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'contribution_ledger',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('design_id', sa.UUID(), nullable=True),
        sa.Column('design_version', sa.Integer(), nullable=True),
        sa.Column('review_id', sa.UUID(), nullable=True),
        sa.Column('suggestion_id', sa.UUID(), nullable=True),
        sa.Column('referencing_design_id', sa.UUID(), nullable=True),
        sa.Column('fork_design_id', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_contribution_ledger_user_id', 'contribution_ledger', ['user_id'])
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=True),
        sa.Column('target_id', sa.UUID(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        'notifications',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_index('ix_contribution_ledger_user_id', table_name='contribution_ledger')
    op.drop_table('contribution_ledger')
    op.drop_table('design_executions')
    op.drop_table('design_contributors')
    op.drop_index('ix_field_suggestions_design_status', table_name='field_suggestions')
    op.drop_table('field_suggestions')
    op.drop_index('ix_design_reviews_design_reviewer', table_name='design_reviews')
    op.drop_table('design_reviews')
    op.drop_table('design_versions')
    op.drop_table('design_authors')
    op.drop_table('designs')
