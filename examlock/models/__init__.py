"""
Pydantic models and schemas for records and request/response validation
"""

from .schemas import (
    NOT_ANSWERED,
    Question,
    Test,
    Answer,
    TestResult,
    User,
    UserPublic,
    PublicTest,
    ResultDetails,
)

__all__ = [
    "NOT_ANSWERED",
    "Question",
    "Test",
    "Answer",
    "TestResult",
    "User",
    "UserPublic",
    "PublicTest",
    "ResultDetails",
]
