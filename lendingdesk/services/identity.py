"""Member registration and credential checks.

Passwords are hashed with bcrypt and only ever compared through
``bcrypt.checkpw``; nothing outside this module sees a hash.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

import bcrypt

from lendingdesk.core.config import settings
from lendingdesk.core.errors import UsernameTaken, ValidationError
from lendingdesk.core.logging import get_logger
from lendingdesk.domain.user import Identity, Role, User
from lendingdesk.infrastructure.store import LibraryStore
from lendingdesk.utils.fields import clean_text

logger = get_logger(__name__)

# bcrypt only reads the first 72 bytes; newer releases refuse longer input
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash; overlong passwords are rejected before this
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


class IdentityService:

    def __init__(self, store: LibraryStore):
        self.store = store

    def register_user(
        self,
        username: Optional[str],
        password: Optional[str],
        role: Optional[str] = None,
    ) -> Identity:
        """Create a member account.

        Args:
            username: Unique login name
            password: Plain password, hashed before storage
            role: "student", "teacher" or "admin"; defaults to student

        Raises:
            ValidationError: missing username/password, a password
                longer than 72 bytes, or an unknown role
            UsernameTaken: the username is already registered
        """
        username = clean_text(username)
        if not username or not password:
            raise ValidationError("Username & password required")
        if password_too_long(password):
            raise ValidationError("Password too long")

        try:
            member_role = Role(role) if role else Role.STUDENT
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")

        user = User(
            id=uuid.uuid4().hex,
            username=username,
            password_hash=hash_password(password),
            role=member_role,
            created_at=datetime.now(timezone.utc),
        )
        if not self.store.create_user_if_absent(user):
            logger.info(f"Registration rejected, username taken: {username}")
            raise UsernameTaken(username)

        logger.info(
            f"User registered: {username}",
            extra={"user_id": user.id, "role": member_role.value},
        )
        return user.to_identity()

    def authenticate(self, username: Optional[str], password: Optional[str]) -> Optional[Identity]:
        """Check credentials.

        Returns:
            The member's identity, or None. Unknown user and wrong password
            are indistinguishable to the caller.
        """
        username = clean_text(username)
        if not username or not password:
            return None
        if password_too_long(password):
            logger.warning(f"Login attempt with overlong password for user: {username}")
            return None

        user = self.store.find_user_by_username(username)
        if user is None:
            logger.warning(f"Login attempt for non-existent user: {username}")
            return None

        if not verify_password(password, user.password_hash):
            logger.warning(f"Invalid password for user: {username}")
            return None

        logger.info(f"User authenticated successfully: {username}")
        return user.to_identity()
