# examlock/core/config.py
import os
from pathlib import Path
from typing import Dict, Any, List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent.parent

DEFAULT_DEPARTMENTS = (
    "Python Developer,R&D,Sales,Marketing,Project Coordinators,"
    "QA,Delivery Manager,IT,General"
)

class Config:
    """Centralized configuration management"""

    # ==================== API Configuration ====================
    API_TITLE = "ExamLock API"
    API_DESCRIPTION = "Department-scoped online testing with lockdown attempts"
    API_VERSION = "1.0.0"

    # ==================== Storage Configuration ====================
    # "file" keeps JSON documents under DATA_DIR, "mongo" uses MongoDB
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "file").lower()
    DATA_DIR = os.getenv("EXAMLOCK_DATA_DIR", str(BASE_DIR / "data"))

    # MongoDB
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "examlock")
    MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

    # Collections
    TESTS_COLLECTION = "tests"
    RESULTS_COLLECTION = "test_results"
    USERS_COLLECTION = "users"

    # ==================== Department Configuration ====================
    GENERAL_DEPARTMENT = os.getenv("GENERAL_DEPARTMENT", "General")
    DEPARTMENTS: List[str] = [
        d.strip() for d in os.getenv("DEPARTMENTS", DEFAULT_DEPARTMENTS).split(",") if d.strip()
    ]

    # ==================== Session Configuration ====================
    # Focus loss shorter than this is ignored (native dialogs, focus flicker)
    AUTO_SUBMIT_BLUR_DEBOUNCE_MS = int(os.getenv("AUTO_SUBMIT_BLUR_DEBOUNCE_MS", "100"))
    SESSION_EXPIRATION_SECONDS = int(os.getenv("SESSION_EXPIRATION_SECONDS", "14400"))  # 4 hours

    # ==================== Server Configuration ====================
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:9002").split(",")
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8080"))
    DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # ==================== Environment Overrides ====================
    @classmethod
    def from_env(cls) -> 'Config':
        """Create config with environment variable overrides"""
        config = cls()

        if config.GENERAL_DEPARTMENT not in config.DEPARTMENTS:
            config.DEPARTMENTS = config.DEPARTMENTS + [config.GENERAL_DEPARTMENT]

        return config

    def is_known_department(self, department: str) -> bool:
        return department in self.DEPARTMENTS

    # ==================== Validation ====================
    def validate(self) -> Dict[str, Any]:
        """Validate configuration and return status"""
        issues = []

        if self.STORAGE_BACKEND not in ("file", "mongo"):
            issues.append("STORAGE_BACKEND must be 'file' or 'mongo'")

        if self.STORAGE_BACKEND == "mongo" and not self.MONGO_URI:
            issues.append("MONGO_URI is required when STORAGE_BACKEND is 'mongo'")

        if not self.DEPARTMENTS:
            issues.append("DEPARTMENTS must list at least one department")

        if self.AUTO_SUBMIT_BLUR_DEBOUNCE_MS < 0:
            issues.append("AUTO_SUBMIT_BLUR_DEBOUNCE_MS cannot be negative")

        if self.SESSION_EXPIRATION_SECONDS < 60:
            issues.append("SESSION_EXPIRATION_SECONDS must be at least 60")

        return {
            "valid": len(issues) == 0,
            "issues": issues,
            "config_loaded": True,
            "storage_backend": self.STORAGE_BACKEND
        }

# Global configuration instance
config = Config.from_env()

# Validate on import
validation_result = config.validate()
if not validation_result["valid"]:
    import logging
    logger = logging.getLogger(__name__)
    logger.warning(f"Configuration issues: {validation_result['issues']}")
