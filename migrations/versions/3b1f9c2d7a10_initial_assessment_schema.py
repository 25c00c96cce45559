"""initial assessment schema

Revision ID: 3b1f9c2d7a10
Revises:
Create Date: 2026-10-19 09:12:41.517204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3b1f9c2d7a10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        'institutions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('contact_name', sa.String(length=200), nullable=False),
        sa.Column('contact_email', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('given_name', sa.String(length=120), nullable=False),
        sa.Column('family_name', sa.String(length=120), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('language_preference', sa.String(length=5), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('reset_token', sa.String(length=64), nullable=True),
        sa.Column('reset_token_expiry', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_institution_id', 'users', ['institution_id'], unique=False)
    op.create_index('ix_users_reset_token', 'users', ['reset_token'], unique=False)

    op.create_table(
        'groups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('institution_id', 'name', name='uq_group_institution_name')
    )
    op.create_index('ix_groups_institution_id', 'groups', ['institution_id'], unique=False)

    op.create_table(
        'user_groups',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['group_id'], ['groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'group_id')
    )

    op.create_table(
        'domains',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_domains_institution_id', 'domains', ['institution_id'], unique=False)

    op.create_table(
        'skills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('domain_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id']),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'domain_id', name='uq_skill_name_domain')
    )
    op.create_index('ix_skills_domain_id', 'skills', ['domain_id'], unique=False)
    op.create_index('ix_skills_institution_id', 'skills', ['institution_id'], unique=False)

    op.create_table(
        'skill_level_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_skill_level_settings_institution_id', 'skill_level_settings', ['institution_id'], unique=False
    )

    op.create_table(
        'skill_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('skill_id', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['skill_id'], ['skills.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_skill_levels_skill_id', 'skill_levels', ['skill_id'], unique=False)

    op.create_table(
        'sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('authors', sa.String(length=500), nullable=True),
        sa.Column('publication_year', sa.Integer(), nullable=True),
        sa.Column('pdf_s3_key', sa.String(length=500), nullable=True),
        sa.Column('pdf_file_size', sa.Integer(), nullable=True),
        sa.Column('pdf_upload_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pdf_processing_status', sa.String(length=20), nullable=False),
        sa.Column('pdf_text', sa.Text(), nullable=True),
        sa.Column('pdf_page_count', sa.Integer(), nullable=True),
        sa.Column('is_custom', sa.Boolean(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'skill_sources',
        sa.Column('skill_id', sa.Integer(), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['skill_id'], ['skills.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('skill_id', 'source_id')
    )

    op.create_table(
        'assessments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=True),
        sa.Column('teacher_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('difficulty_level', sa.String(length=50), nullable=True),
        sa.Column('educational_level', sa.String(length=50), nullable=True),
        sa.Column('output_language', sa.String(length=5), nullable=False),
        sa.Column('evaluation_context', sa.Text(), nullable=True),
        sa.Column('case_text', sa.Text(), nullable=True),
        sa.Column('questions_per_skill', sa.Integer(), nullable=False),
        sa.Column('available_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('available_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispute_period', sa.Integer(), nullable=False),
        sa.Column('show_teacher_name', sa.Boolean(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['institution_id'], ['institutions.id']),
        sa.ForeignKeyConstraint(['teacher_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_assessments_institution_id', 'assessments', ['institution_id'], unique=False)
    op.create_index('ix_assessments_teacher_id', 'assessments', ['teacher_id'], unique=False)

    op.create_table(
        'assessment_skills',
        sa.Column('assessment_id', sa.Integer(), nullable=False),
        sa.Column('skill_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['skill_id'], ['skills.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('assessment_id', 'skill_id')
    )

    op.create_table(
        'assessment_groups',
        sa.Column('assessment_id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['group_id'], ['groups.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('assessment_id', 'group_id')
    )

    op.create_table(
        'attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assessment_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('final_grade', sa.Float(), nullable=False),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_attempts_assessment_id', 'attempts', ['assessment_id'], unique=False)
    op.create_index('ix_attempts_user_id', 'attempts', ['user_id'], unique=False)

    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.Integer(), nullable=False),
        sa.Column('message_type', sa.String(length=20), nullable=False),
        sa.Column('message_text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_conversation_messages_attempt_id', 'conversation_messages', ['attempt_id'], unique=False)

    op.create_table(
        'results',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.Integer(), nullable=False),
        sa.Column('skill_id', sa.Integer(), nullable=False),
        sa.Column('skill_level_id', sa.Integer(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id']),
        sa.ForeignKeyConstraint(['skill_id'], ['skills.id']),
        sa.ForeignKeyConstraint(['skill_level_id'], ['skill_levels.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attempt_id', 'skill_id', name='uq_result_attempt_skill')
    )
    op.create_index('ix_results_attempt_id', 'results', ['attempt_id'], unique=False)

    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('result_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('student_argument', sa.Text(), nullable=False),
        sa.Column('teacher_argument', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['result_id'], ['results.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('result_id')
    )

    op.create_table(
        'dispute_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('dispute_id', sa.Integer(), nullable=False),
        sa.Column('message_type', sa.String(length=20), nullable=False),
        sa.Column('message_text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['dispute_id'], ['disputes.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_dispute_messages_dispute_id', 'dispute_messages', ['dispute_id'], unique=False)

    op.create_table(
        'storage_cleanup',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('s3_key', sa.String(length=500), nullable=False),
        sa.Column('failures', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade():
    op.drop_table('storage_cleanup')
    op.drop_index('ix_dispute_messages_dispute_id', table_name='dispute_messages')
    op.drop_table('dispute_messages')
    op.drop_table('disputes')
    op.drop_index('ix_results_attempt_id', table_name='results')
    op.drop_table('results')
    op.drop_index('ix_conversation_messages_attempt_id', table_name='conversation_messages')
    op.drop_table('conversation_messages')
    op.drop_index('ix_attempts_user_id', table_name='attempts')
    op.drop_index('ix_attempts_assessment_id', table_name='attempts')
    op.drop_table('attempts')
    op.drop_table('assessment_groups')
    op.drop_table('assessment_skills')
    op.drop_index('ix_assessments_teacher_id', table_name='assessments')
    op.drop_index('ix_assessments_institution_id', table_name='assessments')
    op.drop_table('assessments')
    op.drop_table('skill_sources')
    op.drop_table('sources')
    op.drop_index('ix_skill_levels_skill_id', table_name='skill_levels')
    op.drop_table('skill_levels')
    op.drop_index('ix_skill_level_settings_institution_id', table_name='skill_level_settings')
    op.drop_table('skill_level_settings')
    op.drop_index('ix_skills_institution_id', table_name='skills')
    op.drop_index('ix_skills_domain_id', table_name='skills')
    op.drop_table('skills')
    op.drop_index('ix_domains_institution_id', table_name='domains')
    op.drop_table('domains')
    op.drop_table('user_groups')
    op.drop_index('ix_groups_institution_id', table_name='groups')
    op.drop_table('groups')
    op.drop_index('ix_users_reset_token', table_name='users')
    op.drop_index('ix_users_institution_id', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_table('institutions')
