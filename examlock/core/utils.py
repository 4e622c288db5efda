# examlock/core/utils.py
import logging
import time
import uuid
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from .errors import ValidationError

logger = logging.getLogger(__name__)


class ValidationUtils:
    """Utility functions for data validation"""

    @staticmethod
    def validate_record_id(record_id: str, kind: str = "ID") -> str:
        """Reject empty ids and ids that could escape a storage directory"""
        if not record_id or not record_id.strip():
            raise ValidationError(f"{kind} is required")

        if ".." in record_id or "/" in record_id or "\\" in record_id:
            raise ValidationError(f"Invalid {kind}")

        return record_id.strip()

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def sanitize_input(input_str: str, max_length: int = 5000) -> str:
        """Sanitize user input"""
        if not input_str:
            return ""

        sanitized = input_str.strip()

        if len(sanitized) > max_length:
            sanitized = sanitized[:max_length]

        return sanitized


class DateTimeUtils:
    """Utility functions for date/time operations"""

    @staticmethod
    def get_current_timestamp() -> float:
        """Get current timestamp"""
        return time.time()

    @staticmethod
    def utc_now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def format_countdown(seconds: int) -> str:
        """Format remaining seconds as mm:ss"""
        seconds = max(0, int(seconds))
        minutes, secs = divmod(seconds, 60)
        return f"{minutes:02d}:{secs:02d}"


class ResponseFormatter:
    """Utility functions for formatting API responses"""

    @staticmethod
    def format_error_response(error_message: str, error_title: str = "Error",
                              error_type: str = "server_error",
                              component: Optional[str] = None) -> Dict[str, Any]:
        """Format error response"""
        response = {
            "error": error_title,
            "message": error_message,
            "type": error_type,
            "timestamp": time.time()
        }

        if component:
            response["component"] = component

        return response


def generate_id() -> str:
    """Generate unique record ID"""
    return str(uuid.uuid4())
