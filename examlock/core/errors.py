# examlock/core/errors.py
"""
Error taxonomy shared by stores, services and the API layer.
Every failure is scoped to one request or one attempt.
"""


class ExamLockError(Exception):
    """Base class for all expected application errors"""

    status_code = 500
    error_type = "server_error"
    title = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ExamLockError):
    """Missing or malformed input, including malformed stored records"""
    status_code = 400
    error_type = "validation_error"
    title = "Validation Error"


class AuthenticationError(ExamLockError):
    status_code = 401
    error_type = "authentication_error"
    title = "Unauthorized"


class NotFoundError(ExamLockError):
    status_code = 404
    error_type = "not_found_error"
    title = "Resource Not Found"


class ConflictError(ExamLockError):
    status_code = 409
    error_type = "conflict_error"
    title = "Conflict"


class SessionStateError(ExamLockError):
    """Operation not allowed in the attempt's current state"""
    status_code = 409
    error_type = "session_state_error"
    title = "Invalid Session State"


class PersistenceError(ExamLockError):
    """Store unreachable or write failed; the caller may retry"""
    status_code = 503
    error_type = "persistence_error"
    title = "Storage Unavailable"
