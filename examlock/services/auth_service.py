# examlock/services/auth_service.py
import logging
from typing import Optional

from ..core.config import config, Config
from ..core.database import DatabaseManager, get_db_manager
from ..core.errors import AuthenticationError, NotFoundError, ValidationError
from ..core.utils import ValidationUtils, generate_id
from ..models.schemas import User, UserPublic

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    """Identity with plaintext password comparison.

    WARNING: passwords are stored and compared as plain text. This is a
    placeholder and must not be treated as a security boundary.
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None, cfg: Config = config):
        self.db_manager = db_manager or get_db_manager()
        self.cfg = cfg

    def signup(self, email: str, password: str, first_name: str,
               last_name: str, department: str) -> str:
        fields = [email, password, first_name, last_name, department]
        if not all(value and str(value).strip() for value in fields):
            raise ValidationError("All fields are required")

        department = department.strip()
        if not self.cfg.is_known_department(department):
            raise ValidationError(f"Unknown department: {department}")

        if "@" not in email:
            raise ValidationError("A valid email address is required")

        user = User(
            id=generate_id(),
            email=email.strip(),
            password=password,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            department=department
        )

        # The store enforces case-insensitive email uniqueness (ConflictError)
        user_id = self.db_manager.insert_user(user)
        logger.info(f"✅ User signed up: {user_id} ({department})")
        return user_id

    def login(self, email: str, password: str) -> UserPublic:
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.db_manager.get_user_by_email(email)
        if not user or user.password != password:
            logger.warning(f"Failed login for {ValidationUtils.normalize_email(email)}")
            raise AuthenticationError(INVALID_CREDENTIALS)

        logger.info(f"🔑 User logged in: {user.id}")
        return user.public()

    def get_user(self, user_id: str) -> User:
        ValidationUtils.validate_record_id(user_id, "User ID")
        user = self.db_manager.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


# Singleton pattern for auth service
_auth_service = None

def get_auth_service() -> AuthService:
    """Get auth service instance (singleton)"""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
