"""
Business logic services for tests, attempts, results and identity
"""

from .test_service import get_test_service
from .result_service import get_result_service
from .auth_service import get_auth_service
from .session_service import get_session_service

__all__ = [
    "get_test_service",
    "get_result_service",
    "get_auth_service",
    "get_session_service"
]
