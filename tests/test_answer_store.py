from types import SimpleNamespace

import pytest

from app.core.exceptions import (
    AttemptClosedError,
    PersistenceUnavailableError,
    TransientPersistenceError,
)
from app.engine.states import AttemptStatus
from app.services.answer_store import AnswerStore
from app.services.attempt_service import AttemptService
from app.services.attempt_state_machine import AttemptStateMachine

from factories import essay, mc


@pytest.fixture
async def open_attempt(db, make_quiz, student):
    quiz, questions = await make_quiz([mc(), mc(correct="A"), essay()])
    state, _ = await AttemptService(db).start_attempt(quiz.id, student)
    return state.id, [str(q.id) for q in questions]


async def test_writes_merge_per_key(db, open_attempt):
    attempt_id, (q1, q2, q3) = open_attempt
    store = AnswerStore(db)

    await store.write(attempt_id, {q1: "A"})
    await store.write(attempt_id, {q2: "C"})
    result = await store.write(attempt_id, {q1: "B", q3: "   "})

    assert result.saved
    assert result.answers == {q1: "B", q2: "C"}
    assert await store.load(attempt_id) == {q1: "B", q2: "C"}


async def test_blank_values_never_erase(db, open_attempt):
    attempt_id, (q1, _, q3) = open_attempt
    store = AnswerStore(db)
    await store.write(attempt_id, {q1: "A", q3: "My essay"})

    result = await store.write(attempt_id, {q1: None, q3: ""})
    assert result.answers == {q1: "A", q3: "My essay"}
    assert result.answered_count == 2


async def test_each_change_bumps_version(db, open_attempt):
    attempt_id, (q1, _, _) = open_attempt
    store = AnswerStore(db)
    repo = store.attempt_repo

    before = (await repo.get_by_id(attempt_id, fresh=True)).version
    await store.write(attempt_id, {q1: "A"})
    after_change = (await repo.get_by_id(attempt_id, fresh=True)).version
    await store.write(attempt_id, {q1: "A"})
    after_repeat = (await repo.get_by_id(attempt_id, fresh=True)).version

    assert after_change == before + 1
    assert after_repeat == after_change


async def test_write_after_submit_is_rejected(db, open_attempt):
    attempt_id, (q1, q2, _) = open_attempt
    store = AnswerStore(db)
    await store.write(attempt_id, {q1: "A"})
    await AttemptStateMachine(db).submit(attempt_id)

    with pytest.raises(AttemptClosedError) as exc:
        await store.write(attempt_id, {q2: "B"})
    assert exc.value.status == AttemptStatus.COMPLETED
    assert await store.load(attempt_id) == {q1: "A"}


async def test_autosave_degrades_when_storage_is_down(db, open_attempt, monkeypatch):
    attempt_id, (q1, _, _) = open_attempt
    store = AnswerStore(db)

    async def unavailable(*args, **kwargs):
        raise TransientPersistenceError("database is locked")

    monkeypatch.setattr(store.attempt_repo, "compare_and_set", unavailable)
    result = await store.write(attempt_id, {q1: "A"})

    assert not result.saved
    assert result.warning
    assert result.answers == {q1: "A"}


async def test_critical_write_raises_when_storage_is_down(db, open_attempt, monkeypatch):
    attempt_id, (q1, _, _) = open_attempt
    store = AnswerStore(db)

    async def unavailable(*args, **kwargs):
        raise TransientPersistenceError("database is locked")

    monkeypatch.setattr(store.attempt_repo, "compare_and_set", unavailable)
    with pytest.raises(PersistenceUnavailableError):
        await store.write(attempt_id, {q1: "A"}, critical=True)


async def test_transient_failure_is_retried(db, open_attempt, monkeypatch):
    attempt_id, (q1, _, _) = open_attempt
    store = AnswerStore(db)
    real = store.attempt_repo.compare_and_set
    calls = {"n": 0}

    async def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise TransientPersistenceError("connection reset")
        return await real(*args, **kwargs)

    monkeypatch.setattr(store.attempt_repo, "compare_and_set", flaky)
    result = await store.write(attempt_id, {q1: "A"}, critical=True)

    assert result.saved
    assert calls["n"] == 2
    assert await store.load(attempt_id) == {q1: "A"}


async def test_short_read_back_retries_critical_write(db, open_attempt, monkeypatch):
    attempt_id, (q1, _, q3) = open_attempt
    store = AnswerStore(db)
    real_get = store.attempt_repo.get_by_id
    real_cas = store.attempt_repo.compare_and_set
    reads = {"n": 0}
    writes = {"n": 0}

    async def lossy_get(*args, **kwargs):
        reads["n"] += 1
        attempt = await real_get(*args, **kwargs)
        if reads["n"] == 2:
            # Read-back after the first write sees nothing saved
            return SimpleNamespace(
                id=attempt.id,
                quiz_id=attempt.quiz_id,
                status=AttemptStatus.IN_PROGRESS,
                version=attempt.version,
                answers={},
            )
        return attempt

    async def counted_cas(*args, **kwargs):
        writes["n"] += 1
        return await real_cas(*args, **kwargs)

    monkeypatch.setattr(store.attempt_repo, "get_by_id", lossy_get)
    monkeypatch.setattr(store.attempt_repo, "compare_and_set", counted_cas)
    result = await store.write(attempt_id, {q1: "A", q3: "My essay"}, critical=True)

    assert result.saved
    assert result.answers == {q1: "A", q3: "My essay"}
    assert reads["n"] == 4
    assert writes["n"] == 1
    assert await store.load(attempt_id) == {q1: "A", q3: "My essay"}
