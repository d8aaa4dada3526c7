from datetime import timedelta
import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    TransientPersistenceError,
    AttemptClosedError,
    AttemptNotFoundError,
    IllegalTransition,
    IncompletePrerequisite,
    InvalidAnswer,
    InvalidGrade,
    MaxAttemptsReachedError,
    PermissionDeniedError,
    QuizNotFoundError,
    QuizUnavailableError,
)
from app.core.security import Actor, Role
from app.engine.states import AttemptStatus, QuizStatus, SubmitTrigger
from app.engine.timer import utcnow
from app.models import ActivityLog, Notification, QuizQuestion
from app.schemas.attempt import GradeRequest, SubmitRequest
from app.services.attempt_service import AttemptService
from app.repositories.quiz_repo import QuizQuestionGradeRepository, QuizQuestionRepository, QuizRepository
from app.services.attempt_state_machine import AttemptStateMachine, FORCED_ZERO_FEEDBACK
from app.services.submission_coordinator import SubmissionCoordinator
from app.services.grade_ledger import ManualGradeLedger
from app.services.grading_service import GradingService

from factories import essay, mc, minutes_ago, short_answer, tf


@pytest.fixture
async def mixed_quiz(make_quiz):
    """2-point and 3-point multiple choice plus a 5-point essay."""
    return await make_quiz([
        mc(points=2, correct="B"),
        mc(points=3, options=("A", "C", "D"), correct="A"),
        essay(points=5),
    ])


async def start(db, quiz, student, now=None):
    state, created = await AttemptService(db).start_attempt(quiz.id, student, now=now)
    return state


async def submit(db, attempt_id, student, answers=None, captures=()):
    request = SubmitRequest(answers=answers or {}, captures=list(captures))
    return await AttemptService(db).submit(attempt_id, student, request)


# ============================================================
# FULL LIFECYCLE
# ============================================================

async def test_submit_then_manual_grade_reaches_graded(db, mixed_quiz, student, instructor):
    quiz, (q1, q2, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    assert attempt.status == AttemptStatus.IN_PROGRESS
    assert attempt.breakdown is None

    await AttemptService(db).save_answers(attempt.id, student, {str(q1.id): "B", str(q2.id): "C"})
    submitted = await submit(db, attempt.id, student, {str(q3.id): "Photosynthesis converts light..."})

    assert submitted.applied
    assert submitted.status == AttemptStatus.COMPLETED
    assert submitted.score == 2
    assert submitted.completed_at is not None
    assert submitted.breakdown.pending_question_ids == [str(q3.id)]
    assert submitted.answers == {
        str(q1.id): "B",
        str(q2.id): "C",
        str(q3.id): "Photosynthesis converts light...",
    }

    recorded = await GradingService(db).record_grade(
        attempt.id, instructor, GradeRequest(question_id=q3.id, points=4, feedback="Good")
    )
    assert recorded.grade.points_awarded == 4
    assert recorded.attempt.status == AttemptStatus.GRADED
    assert recorded.attempt.score == 6
    assert recorded.attempt.graded_at is not None
    assert not recorded.attempt.force_finalized

    notifications = (await db.execute(select(Notification))).scalars().all()
    assert {n.type for n in notifications} == {"quiz_completed", "quiz_graded"}
    assert {n.user_id for n in notifications} == {instructor.id, student.id}

    actions = (await db.execute(select(ActivityLog.action))).scalars().all()
    for action in ("attempt_started", "answers_saved", "attempt_submitted", "grade_recorded", "attempt_graded"):
        assert action in actions


async def test_partial_grades_show_running_total(db, make_quiz, student, instructor):
    quiz, (q1, q2, q3) = await make_quiz([mc(points=2, correct="B"), essay(points=5), short_answer(points=3)])
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q1.id): "B", str(q2.id): "x", str(q3.id): "y"})

    graded = await GradingService(db).record_grade(
        attempt.id, instructor, GradeRequest(question_id=q2.id, points=5)
    )
    assert graded.attempt.status == AttemptStatus.COMPLETED
    assert graded.attempt.score == 7

    regraded = await GradingService(db).record_grade(
        attempt.id, instructor, GradeRequest(question_id=q2.id, points=3)
    )
    assert regraded.attempt.score == 5

    grades = await GradingService(db).list_grades(attempt.id, instructor)
    assert len(grades.grades) == 1
    assert not grades.is_complete


async def test_objective_only_quiz_is_graded_on_submit(db, make_quiz, student):
    quiz, (q1, q2) = await make_quiz([mc(points=2, correct="B"), tf(points=1, correct="False")])
    attempt = await start(db, quiz, student)

    result = await submit(db, attempt.id, student, {str(q1.id): "b", str(q2.id): "false"})

    assert result.status == AttemptStatus.GRADED
    assert result.score == 3
    assert result.graded_at is not None


# ============================================================
# EARLY FINALIZE
# ============================================================

async def test_early_finalize_requires_confirmation(db, mixed_quiz, student, instructor):
    quiz, (q1, q2, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q1.id): "B", str(q2.id): "C", str(q3.id): "draft"})

    with pytest.raises(IncompletePrerequisite) as exc:
        await GradingService(db).finalize(attempt.id, instructor, confirm=False)
    assert exc.value.pending_question_ids == [str(q3.id)]

    state = await AttemptService(db).get_attempt_state(attempt.id, instructor)
    assert state.status == AttemptStatus.COMPLETED


async def test_early_finalize_zeroes_ungraded_questions(db, mixed_quiz, student, instructor):
    quiz, (q1, q2, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q1.id): "B", str(q2.id): "C", str(q3.id): "draft"})

    final = await GradingService(db).finalize(attempt.id, instructor, confirm=True)

    assert final.status == AttemptStatus.GRADED
    assert final.score == 2
    assert final.force_finalized

    attempt_row = await AttemptStateMachine(db).attempt_repo.get_by_id(attempt.id, fresh=True)
    assert attempt_row.finalized_by == instructor.id

    grades = await GradingService(db).list_grades(attempt.id, instructor)
    assert [(g.points_awarded, g.feedback) for g in grades.grades] == [(0, FORCED_ZERO_FEEDBACK)]


async def test_finalize_open_attempt_is_illegal(db, mixed_quiz, student, instructor):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(IllegalTransition):
        await GradingService(db).finalize(attempt.id, instructor, confirm=True)


async def test_finalize_with_nothing_pending_is_not_flagged(db, mixed_quiz, student, instructor):
    quiz, (_, _, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q3.id): "essay"})
    # Grade lands in the ledger without the follow-up refresh
    await ManualGradeLedger(db).upsert(attempt.id, q3.id, 3, "Fine", instructor.id)

    final = await GradingService(db).finalize(attempt.id, instructor, confirm=False)

    assert final.status == AttemptStatus.GRADED
    assert final.score == 3
    assert not final.force_finalized
    attempt_row = await AttemptStateMachine(db).attempt_repo.get_by_id(attempt.id, fresh=True)
    assert attempt_row.finalized_by is None


# ============================================================
# IDEMPOTENCY / LATE WRITES
# ============================================================

async def test_second_submit_is_a_noop(db, mixed_quiz, student):
    quiz, (q1, _, _) = mixed_quiz
    attempt = await start(db, quiz, student)

    first = await submit(db, attempt.id, student, {str(q1.id): "B"})
    second = await submit(db, attempt.id, student, {str(q1.id): "A"})

    assert first.applied
    assert not second.applied
    assert second.status == AttemptStatus.COMPLETED
    assert second.completed_at == first.completed_at
    assert second.answers == {str(q1.id): "B"}
    assert second.score == first.score


async def test_late_autosave_is_rejected(db, mixed_quiz, student):
    quiz, (q1, q2, _) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q1.id): "B"})

    with pytest.raises(AttemptClosedError):
        await AttemptService(db).save_answers(attempt.id, student, {str(q2.id): "A"})

    state = await AttemptService(db).get_attempt_state(attempt.id, student)
    assert state.answers == {str(q1.id): "B"}


async def test_submit_merges_every_capture(db, mixed_quiz, student):
    quiz, (q1, q2, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await AttemptService(db).save_answers(attempt.id, student, {str(q1.id): "B", str(q3.id): "saved essay"})

    result = await submit(
        db,
        attempt.id,
        student,
        answers={str(q3.id): ""},
        captures=[{str(q2.id): "D"}, {str(q2.id): "A"}],
    )
    assert result.answers == {str(q1.id): "B", str(q2.id): "A", str(q3.id): "saved essay"}
    assert result.score == 5


# ============================================================
# START / RESUME
# ============================================================

async def test_resume_returns_open_attempt(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    service = AttemptService(db)
    first, created = await service.start_attempt(quiz.id, student)
    again, created_again = await service.start_attempt(quiz.id, student)
    assert created and not created_again
    assert again.id == first.id
    assert again.started_at == first.started_at


async def test_max_attempts_enforced(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student)
    with pytest.raises(MaxAttemptsReachedError):
        await start(db, quiz, student)


async def test_draft_quiz_is_hidden(db, make_quiz, student):
    quiz, _ = await make_quiz([mc()], status=QuizStatus.DRAFT)
    with pytest.raises(QuizNotFoundError):
        await start(db, quiz, student)


async def test_closed_or_overdue_quiz_rejects_new_attempts(db, make_quiz, student):
    closed, _ = await make_quiz([mc()], status=QuizStatus.CLOSED)
    with pytest.raises(QuizUnavailableError):
        await start(db, closed, student)

    overdue, _ = await make_quiz([mc()], due_date=utcnow() - timedelta(days=1))
    with pytest.raises(QuizUnavailableError):
        await start(db, overdue, student)


async def test_instructor_cannot_start_attempt(db, mixed_quiz, instructor):
    quiz, _ = mixed_quiz
    with pytest.raises(PermissionDeniedError):
        await AttemptService(db).start_attempt(quiz.id, instructor)


async def test_answer_key_is_pinned_at_start(db, mixed_quiz, student):
    quiz, (q1, _, _) = mixed_quiz
    attempt = await start(db, quiz, student)

    row = await db.get(QuizQuestion, q1.id)
    row.correct_answer = "C"
    await db.commit()

    result = await submit(db, attempt.id, student, {str(q1.id): "B"})
    assert result.score == 2


# ============================================================
# VALIDATION / OWNERSHIP
# ============================================================

async def test_unknown_question_ids_are_rejected(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(InvalidAnswer):
        await AttemptService(db).save_answers(attempt.id, student, {str(uuid.uuid4()): "A"})


async def test_other_students_cannot_see_attempt(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    intruder = Actor(id=uuid.uuid4(), role=Role.STUDENT)
    with pytest.raises(AttemptNotFoundError):
        await AttemptService(db).get_attempt_state(attempt.id, intruder)


@pytest.mark.parametrize("points", [-1, 6])
async def test_grade_points_out_of_range(db, mixed_quiz, student, instructor, points):
    quiz, (_, _, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student)
    with pytest.raises(InvalidGrade):
        await GradingService(db).record_grade(
            attempt.id, instructor, GradeRequest(question_id=q3.id, points=points)
        )


async def test_grade_rejects_objective_and_foreign_questions(db, mixed_quiz, make_quiz, student, instructor):
    quiz, (q1, _, _) = mixed_quiz
    _, (foreign,) = await make_quiz([essay()])
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student)

    grading = GradingService(db)
    with pytest.raises(InvalidGrade):
        await grading.record_grade(attempt.id, instructor, GradeRequest(question_id=q1.id, points=1))
    with pytest.raises(InvalidGrade):
        await grading.record_grade(attempt.id, instructor, GradeRequest(question_id=foreign.id, points=1))


async def test_grading_open_attempt_is_rejected(db, mixed_quiz, student, instructor):
    quiz, (_, _, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(InvalidGrade):
        await GradingService(db).record_grade(attempt.id, instructor, GradeRequest(question_id=q3.id, points=1))


async def test_student_cannot_see_score_before_submit(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(PermissionDeniedError):
        await AttemptService(db).get_score_breakdown(attempt.id, student)


# ============================================================
# TIMER / EXPIRY
# ============================================================

async def test_timer_counts_from_persisted_start(db, make_quiz, student):
    quiz, _ = await make_quiz([mc()], time_limit_minutes=30)
    attempt = await start(db, quiz, student, now=minutes_ago(10))

    timer = await AttemptService(db).get_timer(attempt.id, student)
    assert timer.status == AttemptStatus.IN_PROGRESS
    assert 1195 <= timer.remaining_seconds <= 1200
    assert not timer.expired
    assert not timer.auto_submitted


async def test_timer_expiry_submits_saved_answers(db, make_quiz, student):
    quiz, (q1, q2) = await make_quiz([mc(points=2, correct="B"), essay()], time_limit_minutes=10)
    attempt = await start(db, quiz, student, now=minutes_ago(12))
    await AttemptService(db).save_answers(attempt.id, student, {str(q1.id): "B", str(q2.id): "half done"})

    timer = await AttemptService(db).get_timer(attempt.id, student)
    assert timer.expired
    assert timer.auto_submitted
    assert timer.status == AttemptStatus.COMPLETED

    state = await AttemptService(db).get_attempt_state(attempt.id, student)
    assert state.answers == {str(q1.id): "B", str(q2.id): "half done"}
    assert state.score == 2

    again = await AttemptService(db).get_timer(attempt.id, student)
    assert not again.auto_submitted


async def test_untimed_quiz_never_expires(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student, now=minutes_ago(60 * 24))
    timer = await AttemptService(db).get_timer(attempt.id, student)
    assert timer.untimed
    assert timer.remaining_seconds is None
    assert not timer.expired


async def test_sweeper_submits_only_overdue_attempts(db, make_quiz, student):
    quiz, _ = await make_quiz([mc()], time_limit_minutes=5, max_attempts=3)
    other = Actor(id=uuid.uuid4(), role=Role.STUDENT)
    overdue = await start(db, quiz, student, now=minutes_ago(6))
    fresh = await start(db, quiz, other)

    assert await AttemptService(db).expire_overdue() == 1
    assert await AttemptService(db).expire_overdue() == 0

    svc = AttemptService(db)
    assert (await svc.get_attempt_state(overdue.id, student)).status == AttemptStatus.GRADED
    assert (await svc.get_attempt_state(fresh.id, other)).status == AttemptStatus.IN_PROGRESS


async def test_overdue_resume_submits_instead(db, make_quiz, student):
    quiz, _ = await make_quiz([mc()], time_limit_minutes=5, max_attempts=2)
    first = await start(db, quiz, student, now=minutes_ago(9))
    resumed, created = await AttemptService(db).start_attempt(quiz.id, student)
    assert not created
    assert resumed.id == first.id
    assert resumed.status != AttemptStatus.IN_PROGRESS


# ============================================================
# SCORE BREAKDOWN / RESCORE
# ============================================================

async def test_rescore_repairs_drifted_score(db, mixed_quiz, student, instructor):
    quiz, (q1, _, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q1.id): "B", str(q3.id): "essay"})

    repo = AttemptStateMachine(db).attempt_repo
    row = await repo.get_by_id(attempt.id, fresh=True)
    await repo.compare_and_set(attempt.id, AttemptStatus.COMPLETED, row.version, score=99)

    breakdown = await AttemptService(db).get_score_breakdown(attempt.id, instructor)
    assert breakdown.stored_score == 99
    assert not breakdown.scores_match
    assert breakdown.needs_update

    report = await GradingService(db).rescore_quiz(quiz.id, instructor)
    assert report.checked == 1
    assert report.updated == 1
    assert report.graded == 0
    assert report.errors == []

    breakdown = await AttemptService(db).get_score_breakdown(attempt.id, instructor)
    assert breakdown.stored_score == 2
    assert breakdown.scores_match
    assert not breakdown.needs_update


async def test_grading_queue_lists_completed_attempts(db, mixed_quiz, student, instructor):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student)

    queue = await AttemptService(db).get_grading_queue(quiz.id, instructor)
    assert queue.total == 1
    assert queue.attempts[0].attempt_id == attempt.id
    assert queue.attempts[0].pending_question_count == 1


async def test_notification_failure_does_not_block_submit(db, mixed_quiz, student, monkeypatch):
    from app.services import notification_service

    async def broken(*args, **kwargs):
        raise RuntimeError("push gateway down")

    monkeypatch.setattr(notification_service, "notify_quiz_completed", broken)
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    result = await submit(db, attempt.id, student)
    assert result.applied
    assert result.status == AttemptStatus.COMPLETED


async def test_state_machine_transition_entry_point(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    machine = AttemptStateMachine(db)

    result = await machine.transition(attempt.id, AttemptStatus.COMPLETED, trigger=SubmitTrigger.MANUAL)
    assert result.applied
    with pytest.raises(IllegalTransition):
        await machine.transition(attempt.id, AttemptStatus.IN_PROGRESS)


# ============================================================
# INSTRUCTOR SUBMIT
# ============================================================

async def test_instructor_can_submit_stuck_attempt(db, mixed_quiz, student, instructor):
    quiz, (q1, _, _) = mixed_quiz
    attempt = await start(db, quiz, student)
    await AttemptService(db).save_answers(attempt.id, student, {str(q1.id): "B"})

    result = await AttemptService(db).submit(attempt.id, instructor, SubmitRequest())

    assert result.applied
    assert result.status == AttemptStatus.COMPLETED
    assert result.answers == {str(q1.id): "B"}
    assert result.score == 2

    details = (await db.execute(
        select(ActivityLog.details).where(ActivityLog.action == "attempt_submitted")
    )).scalars().all()
    assert details == [{"trigger": "instructor", "score": 2}]


async def test_instructor_cannot_add_answers_on_submit(db, mixed_quiz, student, instructor):
    quiz, (q1, _, _) = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(PermissionDeniedError):
        await AttemptService(db).submit(attempt.id, instructor, SubmitRequest(answers={str(q1.id): "B"}))

    state = await AttemptService(db).get_attempt_state(attempt.id, student)
    assert state.status == AttemptStatus.IN_PROGRESS


async def test_other_instructors_cannot_submit(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    stranger = Actor(id=uuid.uuid4(), role=Role.INSTRUCTOR)
    with pytest.raises(AttemptNotFoundError):
        await AttemptService(db).submit(attempt.id, stranger, SubmitRequest())


async def test_students_cannot_claim_instructor_trigger(db, mixed_quiz, student):
    quiz, _ = mixed_quiz
    attempt = await start(db, quiz, student)
    with pytest.raises(PermissionDeniedError):
        await AttemptService(db).submit(attempt.id, student, SubmitRequest(trigger=SubmitTrigger.INSTRUCTOR))


# ============================================================
# TRANSIENT READ FAILURES
# ============================================================

def fail_call(monkeypatch, repo_class, name, failing_calls):
    """Make the given (1-based) calls of a repository method raise a transient error."""
    original = getattr(repo_class, name)
    calls = {"n": 0}

    async def flaky(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] in failing_calls:
            raise TransientPersistenceError("connection reset")
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(repo_class, name, flaky)
    return calls


async def test_submit_retries_question_reads(db, mixed_quiz, student, monkeypatch):
    quiz, (q1, _, _) = mixed_quiz
    attempt = await start(db, quiz, student)
    calls = fail_call(monkeypatch, QuizQuestionRepository, "get_by_quiz", {1, 2})

    result = await submit(db, attempt.id, student, {str(q1.id): "B"})

    assert result.applied
    assert result.status == AttemptStatus.COMPLETED
    assert result.score == 2
    assert calls["n"] >= 4


async def test_expiry_retries_timer_reads(db, make_quiz, student, monkeypatch):
    quiz, _ = await make_quiz([mc(), essay()], time_limit_minutes=5)
    attempt = await start(db, quiz, student, now=minutes_ago(7))
    calls = fail_call(monkeypatch, QuizRepository, "get_by_id", {1})

    state = await SubmissionCoordinator(db).enforce_expiry(attempt.id)

    assert state is not None
    assert state.applied
    assert state.attempt.status == AttemptStatus.COMPLETED
    assert calls["n"] >= 2


async def test_grading_read_back_is_retried(db, mixed_quiz, student, instructor, monkeypatch):
    quiz, (_, _, q3) = mixed_quiz
    attempt = await start(db, quiz, student)
    await submit(db, attempt.id, student, {str(q3.id): "essay"})
    fail_call(monkeypatch, QuizQuestionGradeRepository, "get_by_attempt", {1})

    recorded = await GradingService(db).record_grade(
        attempt.id, instructor, GradeRequest(question_id=q3.id, points=5)
    )
    assert recorded.attempt.status == AttemptStatus.GRADED
    assert recorded.attempt.score == 5
