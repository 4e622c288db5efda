# examlock/__init__.py
"""
ExamLock - department-scoped online testing with lockdown attempts
"""

__version__ = "1.0.0"
__description__ = "Timed multiple-choice tests with auto-submit on focus loss"

# Core module exports
from .core.config import config
from .main import app

__all__ = ["app", "config"]
