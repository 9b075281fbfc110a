"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all database tables for the CBT exam service:
- cbt_questions: the question bank
- cbt_exams: exam definitions (one published at a time)
- cbt_exam_attempts: one record per (exam, trainee), unique

Also creates indexes for common query patterns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Questions Table ───────────────────────────────────────
    op.create_table(
        'cbt_questions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('subject', sa.Text(), nullable=False),
        sa.Column('topic', sa.Text(), nullable=False, server_default=''),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(20), nullable=False,
                  server_default='multiple_choice'),
        sa.Column('options', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('difficulty', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_cbt_questions_subject', 'cbt_questions', ['subject'])
    op.create_index('ix_cbt_questions_is_active', 'cbt_questions', ['is_active'])

    # ── Exams Table ───────────────────────────────────────────
    op.create_table(
        'cbt_exams',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('passing_score', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('subjects', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('randomization', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('show_results', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_cbt_exams_is_active', 'cbt_exams', ['is_active'])
    op.create_index('ix_cbt_exams_created_at', 'cbt_exams', ['created_at'])

    # ── Attempts Table ────────────────────────────────────────
    op.create_table(
        'cbt_exam_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('exam_id', sa.String(36), sa.ForeignKey('cbt_exams.id'), nullable=False),
        sa.Column('trainee_id', sa.String(64), nullable=False),
        sa.Column('trainee_name', sa.Text(), nullable=False, server_default=''),
        sa.Column('trainee_email', sa.Text(), nullable=False, server_default=''),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_answers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('wrong_answers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unanswered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_passed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('answers', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('status', sa.String(20), nullable=False, server_default='in_progress'),
        sa.Column('auto_submitted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('violation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        # Idempotency key: one attempt per trainee per exam
        sa.UniqueConstraint('exam_id', 'trainee_id', name='uq_cbt_exam_attempts_exam_trainee'),
    )
    op.create_index('ix_cbt_exam_attempts_trainee_id', 'cbt_exam_attempts', ['trainee_id'])
    op.create_index('ix_cbt_exam_attempts_status', 'cbt_exam_attempts', ['status'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index('ix_cbt_exam_attempts_status', table_name='cbt_exam_attempts')
    op.drop_index('ix_cbt_exam_attempts_trainee_id', table_name='cbt_exam_attempts')
    op.drop_table('cbt_exam_attempts')
    op.drop_index('ix_cbt_exams_created_at', table_name='cbt_exams')
    op.drop_index('ix_cbt_exams_is_active', table_name='cbt_exams')
    op.drop_table('cbt_exams')
    op.drop_index('ix_cbt_questions_is_active', table_name='cbt_questions')
    op.drop_index('ix_cbt_questions_subject', table_name='cbt_questions')
    op.drop_table('cbt_questions')
