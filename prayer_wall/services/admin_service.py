"""
Administrator accounts: authentication and account management.

Passwords are stored as bcrypt hashes. Login attempts are counted per hashed
client by an injected LoginThrottle. The set of administrators is never
emptied: removing the last one, or yourself, raises LastAdminError.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import bcrypt

from prayer_wall.config import get_bcrypt_rounds, load_config
from prayer_wall.exceptions import InvalidCredentials, LastAdminError, ValidationError
from prayer_wall.records import AdminRecord
from prayer_wall.services.audit_service import AuditLog, EventTypes
from prayer_wall.storage.base import StoragePort
from prayer_wall.throttle import LoginThrottle

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _utcnow():
    """Return current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds or get_bcrypt_rounds())
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def _validate_credentials(username: Optional[str], password: Optional[str]) -> str:
    name = (username or "").strip()
    if not name or not password:
        raise ValidationError("Username and password are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return name


class AdminService:
    """Authentication and management of administrator accounts."""

    def __init__(
        self,
        storage: StoragePort,
        throttle: Optional[LoginThrottle] = None,
        audit: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        bcrypt_rounds: Optional[int] = None,
    ):
        self.storage = storage
        self.throttle = throttle or LoginThrottle()
        self._clock = clock or _utcnow
        self.audit = audit or AuditLog(storage, clock=self._clock)
        self.bcrypt_rounds = bcrypt_rounds

    def authenticate(self, username: str, password: str, client_token: Optional[str] = None) -> AdminRecord:
        """
        Verify credentials.

        Args:
            username: Administrator username
            password: Plaintext password
            client_token: Hashed client identity, used for throttling

        Returns:
            The authenticated administrator

        Raises:
            LoginThrottled: too many attempts from this client
            InvalidCredentials: unknown username or wrong password
        """
        self.throttle.hit(client_token)

        admin = self.storage.get_admin_by_username((username or "").strip()) if username else None
        if admin is None or not verify_password(password, admin.password_hash):
            logger.info("Failed login for %r", username)
            self.audit.record(
                EventTypes.ADMIN_LOGIN_FAIL,
                admin_username=username or None,
                submitter_token=client_token,
            )
            raise InvalidCredentials("Invalid username or password.")

        self.throttle.clear(client_token)
        self.audit.record(EventTypes.ADMIN_LOGIN, admin_username=admin.username, submitter_token=client_token)
        return admin

    def list_admins(self) -> List[AdminRecord]:
        return self.storage.list_admins()

    def create_admin(self, actor: str, username: str, password: str) -> bool:
        """
        Add an administrator.

        Returns:
            False if the username is already taken

        Raises:
            ValidationError: missing username, or password shorter than 6 characters
        """
        name = _validate_credentials(username, password)
        if self.storage.get_admin_by_username(name) is not None:
            return False
        try:
            self.storage.create_admin(name, hash_password(password, self.bcrypt_rounds), self._clock())
        except ValidationError:
            # Lost a race with another create of the same username
            return False
        self.audit.record(EventTypes.ADMIN_CREATE, admin_username=actor, details={"new_admin": name})
        return True

    def remove_admin(self, actor: str, admin_id: int) -> bool:
        """
        Remove an administrator.

        Returns:
            False if no such administrator exists

        Raises:
            LastAdminError: target is the last administrator, or the actor themselves
        """
        target = self.storage.get_admin(admin_id)
        if target is None:
            return False
        if target.username == actor:
            raise LastAdminError("You cannot remove your own account.")
        if self.storage.count_admins() <= 1:
            raise LastAdminError("Cannot remove the last administrator.")
        if not self.storage.delete_admin(admin_id):
            return False
        self.audit.record(EventTypes.ADMIN_DELETE, admin_username=actor, details={"deleted_admin": target.username})
        return True

    def change_password(self, actor: str, current_password: str, new_password: str) -> bool:
        """
        Change the actor's own password.

        Returns:
            False if the current password does not match

        Raises:
            ValidationError: new password shorter than 6 characters
        """
        _validate_credentials(actor, new_password)
        admin = self.storage.get_admin_by_username(actor)
        if admin is None or not verify_password(current_password, admin.password_hash):
            return False
        if not self.storage.update_admin_password(admin.id, hash_password(new_password, self.bcrypt_rounds)):
            return False
        self.audit.record(EventTypes.ADMIN_PASSWORD_CHANGE, admin_username=actor)
        return True

    def initialize_admin(self, username: Optional[str] = None, password: Optional[str] = None) -> bool:
        """
        Seed the first administrator when none exists.

        Credentials default to ADMIN_USERNAME / ADMIN_PASSWORD from config.

        Returns:
            True if an administrator was created
        """
        if self.storage.count_admins() > 0:
            return False
        config = load_config()
        username = username or config.get("admin_username")
        password = password or config.get("admin_password")
        if not username or not password:
            logger.warning("No administrators exist and ADMIN_USERNAME / ADMIN_PASSWORD are not set")
            return False
        self.storage.create_admin(
            _validate_credentials(username, password),
            hash_password(password, self.bcrypt_rounds),
            self._clock(),
        )
        logger.info("Created initial administrator %s", username)
        self.audit.record(EventTypes.ADMIN_CREATE, details={"new_admin": username, "initial": True})
        return True
