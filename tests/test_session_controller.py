"""
Tests for the Test-Session Controller state machine.
"""

import asyncio

import pytest

from examlock.core.errors import PersistenceError, SessionStateError, ValidationError
from examlock.models.schemas import NOT_ANSWERED
from examlock.services import session_controller
from examlock.services.session_controller import (
    AUTO_SUBMIT_BLUR, AUTO_SUBMIT_HIDDEN, AUTO_SUBMIT_TIMEOUT, FULLSCREEN_ADVISORY,
    SessionState, TestSession, score_answers
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def session(build_test, taker, store):
    return TestSession(build_test(), taker, store)


class TestScoring:
    def test_partial_score(self, build_test):
        score, total, answers = score_answers(build_test(), {"q1": "Paris", "q2": "5"})

        assert score == 10
        assert total == 20
        assert [(a.question_id, a.selected_option) for a in answers] == [("q1", "Paris"), ("q2", "5")]

    def test_unanswered_questions_use_sentinel_and_score_zero(self, build_test):
        score, total, answers = score_answers(build_test(), {"q2": "4"})

        assert score == 10
        assert total == 20
        assert answers[0].selected_option == NOT_ANSWERED

    def test_match_is_exact_string_equality(self, build_test):
        score, _, _ = score_answers(build_test(), {"q1": "paris", "q2": " 4"})
        assert score == 0

    def test_empty_test(self, build_test):
        assert score_answers(build_test(questions=[]), {}) == (0, 0, [])


class TestLifecycle:
    def test_start_moves_to_in_progress(self, session):
        session.start()

        assert session.state == SessionState.IN_PROGRESS
        assert session.advisory is None
        assert session.time_left == 600

    def test_denied_fullscreen_is_advisory_only(self, session):
        session.start(fullscreen_granted=False)

        assert session.state == SessionState.IN_PROGRESS
        assert session.advisory == FULLSCREEN_ADVISORY

    def test_start_twice_rejected(self, session):
        session.start()
        with pytest.raises(SessionStateError):
            session.start()

    def test_submit_before_start_rejected(self, session):
        with pytest.raises(SessionStateError):
            run(session.submit())

    def test_answer_before_start_rejected(self, session):
        with pytest.raises(SessionStateError):
            session.select_answer("q1", "Paris")


class TestAnswersAndNavigation:
    def test_select_answer_overwrites(self, session):
        session.start()
        session.select_answer("q1", "Rome")
        session.select_answer("q1", "Paris")

        assert session.answers == {"q1": "Paris"}

    def test_select_answer_without_questions(self, build_test, taker, store):
        session = TestSession(build_test(questions=[]), taker, store)
        session.start()

        with pytest.raises(ValidationError):
            session.select_answer("q1", "Paris")

    def test_navigation_is_clamped(self, session):
        session.start()

        assert session.navigate(-1) == 0
        assert session.navigate(1) == 1
        assert session.navigate(1) == 1
        assert session.navigate(-1) == 0

    def test_invalid_direction(self, session):
        session.start()
        with pytest.raises(ValidationError):
            session.navigate(2)

    def test_navigation_closed_after_submit(self, session):
        session.start()
        run(session.submit())

        with pytest.raises(SessionStateError):
            session.navigate(1)
        with pytest.raises(SessionStateError):
            session.select_answer("q1", "Paris")

    def test_can_submit_only_on_last_question(self, session):
        session.start()
        assert not session.can_submit

        session.navigate(1)
        assert session.can_submit


class TestSubmit:
    def test_two_question_example(self, session, store):
        session.start()
        session.select_answer("q1", "Paris")
        session.navigate(1)
        session.select_answer("q2", "5")

        result = run(session.submit())

        assert result.score == 10
        assert result.total_points == 20
        assert result.id == "result-1"
        assert result.first_name == "Ada"
        assert result.department == "QA"
        assert result.test_title == "Geography"
        assert result.auto_submit_reason is None
        assert session.state == SessionState.SUBMITTED
        assert len(store.saved) == 1

    def test_submit_is_idempotent(self, session, store):
        session.start()

        first = run(session.submit())
        second = run(session.submit())

        assert first is second
        assert len(store.saved) == 1

    def test_concurrent_triggers_persist_once(self, session, store):
        session.start()

        async def race():
            return await asyncio.gather(
                session.submit(),
                session.auto_submit(AUTO_SUBMIT_TIMEOUT),
                session.notify_visibility(hidden=True)
            )

        results = run(race())

        assert results[0] is not None
        assert results[1] is None
        assert results[2] is None
        assert store.calls == 1

    def test_empty_test_submits_immediately(self, build_test, taker, store):
        session = TestSession(build_test(questions=[]), taker, store)
        session.start()

        snapshot = session.snapshot()
        assert snapshot["progress"] == "0/0"
        assert snapshot["canSubmit"] is True

        result = run(session.submit())
        assert (result.score, result.total_points) == (0, 0)

    def test_persistence_error_reopens_attempt(self, build_test, taker, failing_store):
        store = failing_store(1)
        session = TestSession(build_test(), taker, store)
        session.start()
        session.select_answer("q1", "Paris")

        with pytest.raises(PersistenceError):
            run(session.submit())

        assert session.state == SessionState.IN_PROGRESS
        assert session.last_error == "Store unreachable"

        session.navigate(1)
        result = run(session.submit())

        assert result.score == 10
        assert session.state == SessionState.SUBMITTED
        assert session.last_error is None
        assert len(store.saved) == 1

    def test_unexpected_store_error_is_wrapped(self, build_test, taker):
        class BrokenStore:
            def save(self, result):
                raise OSError("disk full")

        session = TestSession(build_test(), taker, BrokenStore())
        session.start()

        with pytest.raises(PersistenceError):
            run(session.submit())
        assert session.state == SessionState.IN_PROGRESS


class TestAutoSubmit:
    def test_countdown_reaches_zero_once(self, build_test, taker, store):
        session = TestSession(build_test(time_limit=1), taker, store)
        session.start()

        async def drain():
            for _ in range(59):
                await session.tick()
            assert session.state == SessionState.IN_PROGRESS
            assert session.time_left == 1
            await session.tick()
            await session.tick()

        run(drain())

        assert session.time_left == 0
        assert session.state == SessionState.SUBMITTED
        assert session.auto_submit_reason == AUTO_SUBMIT_TIMEOUT
        assert store.saved[0].auto_submit_reason == AUTO_SUBMIT_TIMEOUT
        assert len(store.saved) == 1

    def test_countdown_task_drives_timeout(self, monkeypatch, build_test, taker, store):
        real_sleep = asyncio.sleep

        async def fast_sleep(_seconds):
            await real_sleep(0)

        session = TestSession(build_test(time_limit=1), taker, store)

        async def scenario():
            monkeypatch.setattr(session_controller.asyncio, "sleep", fast_sleep)
            session.start()
            session.start_countdown()
            for _ in range(2000):
                if session.state == SessionState.SUBMITTED:
                    break
                await real_sleep(0.001)

        run(scenario())

        assert session.state == SessionState.SUBMITTED
        assert session.time_left == 0
        assert len(store.saved) == 1

    def test_countdown_never_negative(self, build_test, taker, failing_store):
        session = TestSession(build_test(time_limit=1), taker, failing_store(5))
        session.start()
        session.time_left = 1

        run(session.tick())
        run(session.tick())

        # Save failed, so the attempt stays open at zero without retrying on its own
        assert session.time_left == 0
        assert session.state == SessionState.IN_PROGRESS
        assert session.last_error == "Store unreachable"

    def test_manual_retry_after_failed_auto_submit_is_not_forced(self, build_test, taker, failing_store):
        store = failing_store(1)
        session = TestSession(build_test(), taker, store)
        session.start()

        run(session.notify_visibility(hidden=True))
        assert session.state == SessionState.IN_PROGRESS
        assert session.auto_submit_reason is None

        session.navigate(1)
        result = run(session.submit())

        assert result.auto_submit_reason is None
        assert store.saved[0].auto_submit_reason is None
        assert session.snapshot()["autoSubmitNotice"] is None

    def test_hidden_page_auto_submits(self, session, store):
        session.start()

        run(session.notify_visibility(hidden=True))

        assert session.state == SessionState.SUBMITTED
        assert store.saved[0].auto_submit_reason == AUTO_SUBMIT_HIDDEN
        assert session.snapshot()["autoSubmitNotice"] == (
            "Reason: Switched to another tab or window. Your progress has been saved."
        )

    def test_visible_page_does_nothing(self, session, store):
        session.start()
        run(session.notify_visibility(hidden=False))
        assert session.state == SessionState.IN_PROGRESS

    def test_blur_without_focus_auto_submits(self, build_test, taker, store):
        session = TestSession(build_test(), taker, store, blur_debounce_ms=10)
        session.start()

        async def scenario():
            session.notify_blur()
            await asyncio.sleep(0.2)

        run(scenario())

        assert session.state == SessionState.SUBMITTED
        assert session.auto_submit_reason == AUTO_SUBMIT_BLUR

    def test_focus_within_debounce_keeps_attempt_open(self, build_test, taker, store):
        session = TestSession(build_test(), taker, store, blur_debounce_ms=50)
        session.start()

        async def scenario():
            session.notify_blur()
            await asyncio.sleep(0.01)
            session.notify_focus()
            await asyncio.sleep(0.1)

        run(scenario())

        assert session.state == SessionState.IN_PROGRESS
        assert store.calls == 0

    def test_triggers_ignored_before_start(self, session, store):
        run(session.notify_visibility(hidden=True))
        session.notify_blur()

        assert session.state == SessionState.NOT_STARTED
        assert store.calls == 0


class TestSnapshot:
    def test_snapshot_hides_correct_answer(self, session):
        session.start()
        session.select_answer("q1", "Rome")

        snapshot = session.snapshot()
        current = snapshot["currentQuestion"]

        assert snapshot["state"] == "in_progress"
        assert snapshot["progress"] == "1/2"
        assert snapshot["timeLeftDisplay"] == "10:00"
        assert current["selectedOption"] == "Rome"
        assert "<p>" in current["questionHtml"]
        assert "correctAnswer" not in current
