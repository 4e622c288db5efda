# examlock/services/session_controller.py
"""
Test-Session Controller: one timed attempt at one test for one user.

NOT_STARTED -> IN_PROGRESS -> SUBMITTING -> SUBMITTED
                    ^              |
                    +--- save fails

The countdown and the host's visibility/focus notifications all funnel into
submit(), which is guarded by the current state so that two triggers in the
same tick persist exactly one result.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, Any, List, Optional, Protocol, Tuple, Union

import markdown

from ..core.config import config
from ..core.errors import ExamLockError, PersistenceError, SessionStateError, ValidationError
from ..core.utils import DateTimeUtils, generate_id
from ..models.schemas import NOT_ANSWERED, Answer, Test, TestResult, User, UserPublic

logger = logging.getLogger(__name__)

AUTO_SUBMIT_TIMEOUT = "Time ran out"
AUTO_SUBMIT_HIDDEN = "Switched to another tab or window"
AUTO_SUBMIT_BLUR = "Left the test window"

FULLSCREEN_ADVISORY = (
    "Fullscreen mode could not be enabled automatically. For the best experience, "
    "please enable it manually. The test will start anyway."
)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class ResultSink(Protocol):
    def save(self, result: TestResult) -> str: ...


def score_answers(test: Test, selected: Dict[str, str]) -> Tuple[int, int, List[Answer]]:
    """Score recorded answers against a test.

    A question earns its points only when the recorded option equals the
    correct answer exactly. Unanswered questions are recorded with the
    NOT_ANSWERED sentinel and never score.
    """
    score = 0
    answers = []
    for question in test.questions:
        option = selected.get(question.id)
        if option is not None and option == question.correct_answer:
            score += question.points
        answers.append(Answer(
            question_id=question.id,
            selected_option=option if option is not None else NOT_ANSWERED
        ))
    return score, test.total_points, answers


class TestSession:
    __test__ = False

    def __init__(self, test: Test, user: Union[User, UserPublic], result_store: ResultSink,
                 session_id: Optional[str] = None,
                 blur_debounce_ms: int = config.AUTO_SUBMIT_BLUR_DEBOUNCE_MS):
        self.session_id = session_id or generate_id()
        self.test = test
        self.user = user
        self.result_store = result_store
        self.blur_debounce = blur_debounce_ms / 1000

        self.state = SessionState.NOT_STARTED
        self.current_index = 0
        self.answers: Dict[str, str] = {}
        self.time_left = test.time_limit * 60

        self.auto_submit_reason: Optional[str] = None
        self.advisory: Optional[str] = None
        self.last_error: Optional[str] = None
        self.result: Optional[TestResult] = None

        self.created_at = time.time()
        self.started_at: Optional[float] = None

        self._focused = True
        self._timer_task: Optional[asyncio.Task] = None
        self._blur_task: Optional[asyncio.Task] = None

    # ==================== Properties ====================

    @property
    def question_count(self) -> int:
        return len(self.test.questions)

    @property
    def is_terminal(self) -> bool:
        return self.state == SessionState.SUBMITTED

    @property
    def can_submit(self) -> bool:
        """Manual submission is offered on the final question, or at once for an empty test"""
        if self.state != SessionState.IN_PROGRESS:
            return False
        return self.question_count == 0 or self.current_index == self.question_count - 1

    # ==================== Lifecycle ====================

    def start(self, fullscreen_granted: bool = True):
        """Begin the attempt; a denied fullscreen request only raises an advisory"""
        if self.state != SessionState.NOT_STARTED:
            raise SessionStateError("Test has already been started")

        if not fullscreen_granted:
            logger.warning(f"Fullscreen unavailable for session {self.session_id}, starting anyway")
            self.advisory = FULLSCREEN_ADVISORY

        self.state = SessionState.IN_PROGRESS
        self.started_at = time.time()
        logger.info(f"🚀 Session started: {self.session_id} ({self.test.title}, {self.time_left}s)")

    def start_countdown(self):
        """Drive the countdown from the running event loop"""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.get_running_loop().create_task(self._run_countdown())

    async def _run_countdown(self):
        while self.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING) and self.time_left > 0:
            await asyncio.sleep(1)
            await self.tick()

    async def tick(self):
        """One second of countdown; reaching zero auto-submits once"""
        if self.state != SessionState.IN_PROGRESS or self.time_left <= 0:
            return

        self.time_left = max(0, self.time_left - 1)
        if self.time_left == 0:
            await self.auto_submit(AUTO_SUBMIT_TIMEOUT)

    # ==================== Answering ====================

    def select_answer(self, question_id: str, option: str):
        if self.state != SessionState.IN_PROGRESS:
            raise SessionStateError("Answers can only be changed while the test is in progress")
        if self.question_count == 0:
            raise ValidationError("There is no current question to answer")

        self.answers[question_id] = option

    def navigate(self, direction: int) -> int:
        if self.state in (SessionState.SUBMITTING, SessionState.SUBMITTED):
            raise SessionStateError("Navigation is closed once submission has begun")
        if direction not in (-1, 1):
            raise ValidationError("direction must be -1 or 1")

        if self.question_count:
            self.current_index = min(max(self.current_index + direction, 0), self.question_count - 1)
        return self.current_index

    # ==================== Submission ====================

    def _build_result(self) -> TestResult:
        score, total_points, answers = score_answers(self.test, self.answers)
        return TestResult(
            user_id=self.user.id,
            first_name=self.user.first_name,
            last_name=self.user.last_name,
            department=self.user.department,
            test_id=self.test.id,
            test_title=self.test.title,
            score=score,
            total_points=total_points,
            answers=answers,
            submitted_at=DateTimeUtils.utc_now(),
            auto_submit_reason=self.auto_submit_reason
        )

    async def submit(self, reason: Optional[str] = None) -> Optional[TestResult]:
        """Score and persist the attempt.

        Returns the stored result once submitted, or None while a save is
        already in flight. On a failed save the attempt reopens for retry and
        the error is re-raised.
        """
        if self.state == SessionState.SUBMITTED:
            return self.result
        if self.state == SessionState.SUBMITTING:
            return None
        if self.state == SessionState.NOT_STARTED:
            raise SessionStateError("Test has not been started")

        self.state = SessionState.SUBMITTING
        # Each submission records its own trigger; a manual retry carries none
        self.auto_submit_reason = reason
        self._cancel_task(self._blur_task)

        result = self._build_result()
        logger.info(f"📝 Submitting session {self.session_id}: {result.score}/{result.total_points}")

        try:
            result_id = await asyncio.to_thread(self.result_store.save, result)
        except Exception as e:
            self.state = SessionState.IN_PROGRESS
            self.auto_submit_reason = None
            self.last_error = e.message if isinstance(e, ExamLockError) else str(e)
            logger.error(f"❌ Submission failed for {self.session_id}: {self.last_error}")
            if isinstance(e, ExamLockError):
                raise
            raise PersistenceError(f"Result save failed: {e}") from e

        self.result = result.model_copy(update={"id": result_id})
        self.state = SessionState.SUBMITTED
        self.last_error = None
        self.cancel_tasks()

        logger.info(f"✅ Session submitted: {self.session_id} -> result {result_id}")
        return self.result

    async def auto_submit(self, reason: str) -> Optional[TestResult]:
        """Forced submission from a timer or integrity trigger; never raises"""
        if self.state != SessionState.IN_PROGRESS:
            return None

        logger.warning(f"⚠️ Auto-submitting session {self.session_id}: {reason}")
        try:
            return await self.submit(reason)
        except ExamLockError as e:
            logger.error(f"Auto-submit failed for {self.session_id}: {e.message}")
            return None

    # ==================== Host notifications ====================

    async def notify_visibility(self, hidden: bool) -> Optional[TestResult]:
        if hidden:
            return await self.auto_submit(AUTO_SUBMIT_HIDDEN)
        return None

    def notify_blur(self):
        """Focus left the test; submit unless focus returns within the debounce window"""
        if self.state != SessionState.IN_PROGRESS:
            return

        self._focused = False
        if self._blur_task is None or self._blur_task.done():
            self._blur_task = asyncio.get_running_loop().create_task(self._confirm_focus_loss())

    def notify_focus(self):
        self._focused = True

    async def _confirm_focus_loss(self):
        await asyncio.sleep(self.blur_debounce)
        if not self._focused:
            await self.auto_submit(AUTO_SUBMIT_BLUR)

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]):
        # Never cancel the task we are running inside
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def cancel_tasks(self):
        self._cancel_task(self._timer_task)
        self._cancel_task(self._blur_task)

    # ==================== View ====================

    def snapshot(self) -> Dict[str, Any]:
        """State of the attempt as the host should render it"""
        total = self.question_count
        position = self.current_index + 1 if total else 0
        current = None

        if total:
            question = self.test.questions[self.current_index]
            current = {
                "id": question.id,
                "questionHtml": markdown.markdown(question.question),
                "options": question.options,
                "points": question.points,
                "selectedOption": self.answers.get(question.id)
            }

        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "testId": self.test.id,
            "title": self.test.title,
            "description": self.test.description,
            "questionNumber": position,
            "totalQuestions": total,
            "progress": f"{position}/{total}",
            "progressPercent": round(position / total * 100, 1) if total else 0,
            "currentQuestion": current,
            "answeredCount": sum(1 for q in self.test.questions if q.id in self.answers),
            "timeLeft": self.time_left,
            "timeLeftDisplay": DateTimeUtils.format_countdown(self.time_left),
            "canSubmit": self.can_submit,
            "advisory": self.advisory,
            "autoSubmitReason": self.auto_submit_reason,
            "autoSubmitNotice": (
                f"Reason: {self.auto_submit_reason}. Your progress has been saved."
                if self.auto_submit_reason and self.is_terminal else None
            ),
            "lastError": self.last_error,
            "resultId": self.result.id if self.result else None
        }
