# examlock/services/session_service.py
import logging
import time
from typing import Dict, Any, Optional

from ..core.config import config, Config
from ..core.errors import NotFoundError, SessionStateError, ValidationError
from ..core.utils import ValidationUtils, DateTimeUtils
from ..models.schemas import TestResult
from .auth_service import AuthService, get_auth_service
from .result_service import ResultService, get_result_service
from .session_controller import SessionState, TestSession
from .test_service import TestService, get_test_service

logger = logging.getLogger(__name__)


class SessionService:
    """Registry of live attempts keyed by session id"""

    def __init__(self, test_service: Optional[TestService] = None,
                 auth_service: Optional[AuthService] = None,
                 result_service: Optional[ResultService] = None,
                 cfg: Config = config):
        self.test_service = test_service or get_test_service()
        self.auth_service = auth_service or get_auth_service()
        self.result_service = result_service or get_result_service()
        self.cfg = cfg
        self.sessions: Dict[str, TestSession] = {}

    def create_session(self, test_id: str, user_id: str) -> TestSession:
        test = self.test_service.get_test(test_id)
        user = self.auth_service.get_user(user_id)

        self.cleanup_expired_sessions()

        session = TestSession(
            test=test,
            user=user.public(),
            result_store=self.result_service,
            blur_debounce_ms=self.cfg.AUTO_SUBMIT_BLUR_DEBOUNCE_MS
        )
        self.sessions[session.session_id] = session

        logger.info(f"✅ Session created: {session.session_id} (test {test.id}, user {user.id})")
        return session

    def get_session(self, session_id: str) -> TestSession:
        ValidationUtils.validate_record_id(session_id, "Session ID")
        session = self.sessions.get(session_id)
        if not session:
            raise NotFoundError("Session not found or expired")
        return session

    async def start_session(self, session_id: str, fullscreen_granted: bool = True) -> TestSession:
        session = self.get_session(session_id)
        session.start(fullscreen_granted=fullscreen_granted)
        session.start_countdown()
        return session

    async def handle_event(self, session_id: str, event: str) -> TestSession:
        """Route a host environment event to the attempt"""
        session = self.get_session(session_id)

        if event == "hidden":
            await session.notify_visibility(hidden=True)
        elif event == "visible":
            await session.notify_visibility(hidden=False)
        elif event == "blur":
            session.notify_blur()
        elif event == "focus":
            session.notify_focus()
        else:
            raise ValidationError(f"Unknown event: {event}")

        return session

    async def submit_session(self, session_id: str) -> Optional[TestResult]:
        """Manual submission from the final question"""
        session = self.get_session(session_id)

        if session.state == SessionState.IN_PROGRESS and not session.can_submit:
            raise SessionStateError("Submit is available on the last question")

        return await session.submit()

    def cleanup_expired_sessions(self) -> int:
        """Drop stale attempts that are finished or were never started"""
        now = time.time()
        expired = [
            session_id for session_id, session in self.sessions.items()
            if now - session.created_at > self.cfg.SESSION_EXPIRATION_SECONDS
            and session.state in (SessionState.SUBMITTED, SessionState.NOT_STARTED)
        ]

        for session_id in expired:
            self.sessions.pop(session_id).cancel_tasks()

        if expired:
            logger.info(f"🧹 Cleanup: removed {len(expired)} sessions")
        return len(expired)

    def shutdown(self):
        for session in self.sessions.values():
            session.cancel_tasks()
        logger.info(f"✅ Stopped timers for {len(self.sessions)} sessions")

    def health_check(self) -> Dict[str, Any]:
        states: Dict[str, int] = {}
        for session in self.sessions.values():
            states[session.state.value] = states.get(session.state.value, 0) + 1

        return {
            "status": "healthy",
            "active_sessions": len(self.sessions),
            "states": states,
            "timestamp": DateTimeUtils.get_current_timestamp()
        }


# Singleton pattern for session service
_session_service = None

def get_session_service() -> SessionService:
    """Get session service instance (singleton)"""
    global _session_service
    if _session_service is None:
        _session_service = SessionService()
    return _session_service
