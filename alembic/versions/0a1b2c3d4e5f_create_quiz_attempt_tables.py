"""create quiz attempt tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

quiz_status = sa.Enum('draft', 'published', 'closed', name='quiz_status')
question_type = sa.Enum('multiple_choice', 'true_false', 'short_answer', 'essay', name='question_type')
attempt_status = sa.Enum('in_progress', 'completed', 'graded', name='attempt_status')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'quizzes',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('course_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('instructor_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', quiz_status, nullable=False),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=True),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_quizzes_id', 'quizzes', ['id'])
    op.create_index('ix_quizzes_course_id', 'quizzes', ['course_id'])
    op.create_index('ix_quizzes_instructor_id', 'quizzes', ['instructor_id'])
    op.create_index('ix_quizzes_status', 'quizzes', ['status'])

    op.create_table(
        'quiz_questions',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('quiz_id', sa.Uuid(as_uuid=True), sa.ForeignKey('quizzes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_type', question_type, nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('options', JSONType, nullable=True),
        sa.Column('correct_answer', sa.Text(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_quiz_questions_id', 'quiz_questions', ['id'])
    op.create_index('ix_quiz_questions_quiz_id', 'quiz_questions', ['quiz_id'])

    op.create_table(
        'quiz_attempts',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('quiz_id', sa.Uuid(as_uuid=True), sa.ForeignKey('quizzes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('status', attempt_status, nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('answers', JSONType, nullable=False),
        sa.Column('answer_key', JSONType, nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('force_finalized', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('finalized_by', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('graded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_quiz_attempts_id', 'quiz_attempts', ['id'])
    op.create_index('ix_quiz_attempts_quiz_id', 'quiz_attempts', ['quiz_id'])
    op.create_index('ix_quiz_attempts_student_id', 'quiz_attempts', ['student_id'])
    op.create_index('ix_quiz_attempts_status', 'quiz_attempts', ['status'])
    op.create_index('ix_quiz_attempts_started_at', 'quiz_attempts', ['started_at'])

    op.create_table(
        'quiz_question_grades',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('attempt_id', sa.Uuid(as_uuid=True), sa.ForeignKey('quiz_attempts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.Uuid(as_uuid=True), sa.ForeignKey('quiz_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('graded_by', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('graded_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_grade_attempt_question'),
    )
    op.create_index('ix_quiz_question_grades_id', 'quiz_question_grades', ['id'])
    op.create_index('ix_quiz_question_grades_attempt_id', 'quiz_question_grades', ['attempt_id'])
    op.create_index('ix_quiz_question_grades_question_id', 'quiz_question_grades', ['question_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('type', sa.String(50), nullable=False, server_default='general'),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('data', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'activity_log',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('actor_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('attempt_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('details', JSONType, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_activity_log_id', 'activity_log', ['id'])
    op.create_index('ix_activity_log_actor_id', 'activity_log', ['actor_id'])
    op.create_index('ix_activity_log_attempt_id', 'activity_log', ['attempt_id'])


def downgrade() -> None:
    op.drop_table('activity_log')
    op.drop_table('notifications')
    op.drop_table('quiz_question_grades')
    op.drop_table('quiz_attempts')
    op.drop_table('quiz_questions')
    op.drop_table('quizzes')
    bind = op.get_bind()
    attempt_status.drop(bind, checkfirst=True)
    question_type.drop(bind, checkfirst=True)
    quiz_status.drop(bind, checkfirst=True)
