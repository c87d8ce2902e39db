"""Curriculum progress schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Curriculum reference data
    op.create_table(
        'curriculum_subjects',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('name_arabic', sa.String(200), nullable=True),
        sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('icon', sa.String(50), nullable=True),
        sa.Column('color', sa.String(30), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'curriculum_phases',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Uuid(), sa.ForeignKey('curriculum_subjects.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('name_arabic', sa.String(200), nullable=True),
        sa.Column('slug', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, default=0),
        sa.Column('estimated_hours', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('subject_id', 'sort_order', name='uq_curriculum_phases_subject_order'),
    )

    op.create_table(
        'curriculum_stages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('phase_id', sa.Uuid(), sa.ForeignKey('curriculum_phases.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('name_arabic', sa.String(200), nullable=True),
        sa.Column('slug', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, default=0),
        *_timestamps(),
    )

    op.create_table(
        'curriculum_milestones',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('stage_id', sa.Uuid(), sa.ForeignKey('curriculum_stages.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('name_arabic', sa.String(200), nullable=True),
        sa.Column('slug', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, default=0),
        sa.Column('pillar', sa.String(20), nullable=True),
        sa.Column('verification_criteria', sa.Text(), nullable=True),
        *_timestamps(),
    )

    # Per-student progress
    op.create_table(
        'student_milestone_progress',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('student_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('milestone_id', sa.Uuid(), sa.ForeignKey('curriculum_milestones.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('status', sa.String(30), nullable=False, default='not_started'),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, default=0),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_by', sa.Uuid(), nullable=True),
        sa.Column('verification_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('student_id', 'milestone_id', name='uq_student_milestone_progress_student_milestone'),
    )
    op.create_index(
        'ix_student_milestone_progress_status_updated',
        'student_milestone_progress',
        ['status', 'updated_at'],
    )

    op.create_table(
        'student_curriculum_progress',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('student_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('subject_id', sa.Uuid(), sa.ForeignKey('curriculum_subjects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_phase_id', sa.Uuid(), sa.ForeignKey('curriculum_phases.id', ondelete='SET NULL'), nullable=True),
        sa.Column('current_stage_id', sa.Uuid(), sa.ForeignKey('curriculum_stages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('overall_progress_percentage', sa.Integer(), nullable=False, default=0),
        *_timestamps(),
        sa.UniqueConstraint('student_id', 'subject_id', name='uq_student_curriculum_progress_student_subject'),
    )

    op.create_table(
        'student_surah_progress',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('student_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('surah_number', sa.Integer(), nullable=False),
        sa.Column('surah_name', sa.String(100), nullable=True),
        sa.Column('total_ayat', sa.Integer(), nullable=False),
        sa.Column('fahm_progress', sa.Integer(), nullable=False, default=0),
        sa.Column('itqan_progress', sa.Integer(), nullable=False, default=0),
        sa.Column('hifz_progress', sa.Integer(), nullable=False, default=0),
        sa.Column('fahm_completed', sa.Boolean(), nullable=False, default=False),
        sa.Column('itqan_completed', sa.Boolean(), nullable=False, default=False),
        sa.Column('hifz_completed', sa.Boolean(), nullable=False, default=False),
        sa.Column('status', sa.String(20), nullable=False, default='not_started'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('student_id', 'surah_number', name='uq_student_surah_progress_student_surah'),
    )

    # Read-only here; written by the booking side
    op.create_table(
        'lessons',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('learner_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('teacher_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('status', sa.String(30), nullable=False, default='scheduled'),
        sa.Column('scheduled_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, default=30),
        *_timestamps(),
    )

    # Append-only history
    op.create_table(
        'progress_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('from_status', sa.String(30), nullable=True),
        sa.Column('to_status', sa.String(30), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index('ix_progress_events_entity', 'progress_events', ['entity_type', 'entity_id'])
    op.create_index('ix_progress_events_student_time', 'progress_events', ['student_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_progress_events_student_time', table_name='progress_events')
    op.drop_index('ix_progress_events_entity', table_name='progress_events')
    op.drop_table('progress_events')
    op.drop_table('lessons')
    op.drop_table('student_surah_progress')
    op.drop_table('student_curriculum_progress')
    op.drop_index('ix_student_milestone_progress_status_updated', table_name='student_milestone_progress')
    op.drop_table('student_milestone_progress')
    op.drop_table('curriculum_milestones')
    op.drop_table('curriculum_stages')
    op.drop_table('curriculum_phases')
    op.drop_table('curriculum_subjects')
