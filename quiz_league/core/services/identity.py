"""Accounts, password hashing and bearer tokens.

Tokens are self-contained HS256 JWTs carrying ``userId``, ``iat`` and ``exp``
(unix seconds). Verification needs only the secret; the login audit table is
written when a token is issued but is never consulted.
"""

from __future__ import annotations

from datetime import timedelta
import logging
import re
from uuid import uuid4

import jwt
from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quiz_league.constants.quiz_constants import MIN_PASSWORD_LENGTH
from quiz_league.core.config import Settings
from quiz_league.core.errors import (
    AlreadyRegistered,
    Forbidden,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from quiz_league.core.models import IssuedToken, User
from quiz_league.core.storage.tables import LoginAuditRow, ResultRow, SessionRow, UserRow
from quiz_league.utils.clock import Clock, to_unix_seconds, to_utc_iso

logger = logging.getLogger(__name__)

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")

# Salted PBKDF2-SHA256 with a high round count.
_password_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password with a fresh salt."""
    return _password_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored hash; an unset hash never matches."""
    if not password_hash:
        return False
    try:
        return _password_context.verify(password, password_hash)
    except ValueError:
        return False


def normalize_phone(phone: str) -> str:
    """Strip separators and check the result is a plausible phone number."""
    normalized = _PHONE_SEPARATORS.sub("", phone or "")
    if not _PHONE_PATTERN.match(normalized):
        raise ValidationError("Phone number must contain 7 to 15 digits.")
    return normalized


def issue_token(user: User, settings: Settings, clock: Clock) -> IssuedToken:
    """Sign a token for ``user`` that expires after the configured lifetime."""
    issued_at = clock().replace(microsecond=0)
    expires_at = issued_at + timedelta(hours=settings.token_expiry_hours)
    claims = {
        "userId": user.id,
        "iat": to_unix_seconds(issued_at),
        "exp": to_unix_seconds(expires_at),
    }
    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
    return IssuedToken(token=token, user=user, issued_at=issued_at, expires_at=expires_at)


def verify_token(token: str | None, settings: Settings, clock: Clock) -> str | None:
    """Return the user id carried by a valid token, or ``None``."""
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            # Time claims are checked against the injected clock below.
            options={"require": ["exp", "iat"], "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError:
        return None
    user_id = claims.get("userId")
    if not isinstance(user_id, str) or not user_id:
        return None
    if claims["exp"] <= to_unix_seconds(clock()):
        return None
    return user_id


class IdentityService:
    """Registration, login and administrator account operations."""

    def __init__(self, db: Session, settings: Settings, clock: Clock) -> None:
        self._db = db
        self._settings = settings
        self._clock = clock

    def authenticate(self, token: str | None) -> str:
        """Return the user id behind ``token`` or raise Unauthenticated."""
        user_id = verify_token(token, self._settings, self._clock)
        if user_id is None:
            raise Unauthenticated("Invalid or expired token")
        return user_id

    def get_user(self, user_id: str) -> User:
        """Return a user by id."""
        row = self._db.get(UserRow, user_id)
        if row is None:
            raise NotFound("User not found")
        return _to_user(row)

    def require_admin(self, user_id: str) -> User:
        """Return the user if they are an administrator."""
        user = self.get_user(user_id)
        if not user.is_admin:
            raise Forbidden("Administrator access required")
        return user

    def list_users(self) -> list[User]:
        """Return all users, newest registration first."""
        rows = self._db.scalars(select(UserRow).order_by(UserRow.registered_at.desc()))
        return [_to_user(row) for row in rows]

    def register_user(
        self,
        name: str,
        phone: str,
        email: str | None = None,
        profile_url: str | None = None,
        is_admin: bool = False,
    ) -> User:
        """Create a player account without a password."""
        cleaned_name = (name or "").strip()
        if not cleaned_name:
            raise ValidationError("Name is required.")
        normalized_phone = normalize_phone(phone)
        cleaned_email = (email or "").strip().lower() or None
        cleaned_profile = (profile_url or "").strip() or None

        if self._exists(UserRow.phone == normalized_phone):
            raise AlreadyRegistered("This phone number is already registered.")
        if cleaned_email and self._exists(UserRow.email == cleaned_email):
            raise AlreadyRegistered("This email is already registered.")
        if cleaned_profile and self._exists(UserRow.profile_url == cleaned_profile):
            raise AlreadyRegistered("This profile URL is already registered.")

        row = UserRow(
            id=str(uuid4()),
            name=cleaned_name,
            phone=normalized_phone,
            email=cleaned_email,
            profile_url=cleaned_profile,
            password_hash=None,
            password_set=False,
            is_admin=is_admin,
            registered_at=self._clock(),
        )
        self._db.add(row)
        try:
            self._db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same details.
            self._db.rollback()
            logger.warning("Duplicate registration rejected for phone ending %s", normalized_phone[-4:])
            raise AlreadyRegistered("This phone number, email or profile URL is already registered.") from exc
        logger.info("Registered user %s", row.id)
        return _to_user(row)

    def set_password(self, user_id: str, password: str) -> IssuedToken:
        """Set the initial password. Later changes go through an administrator."""
        row = self._require_row(user_id)
        if row.password_set:
            raise ValidationError("Password has already been set.")
        row.password_hash = hash_password(_validate_password(password))
        row.password_set = True
        self._db.flush()
        return issue_token(_to_user(row), self._settings, self._clock)

    def login(self, phone: str, password: str) -> IssuedToken:
        """Check phone and password and issue a token."""
        try:
            normalized_phone = normalize_phone(phone)
        except ValidationError as exc:
            raise Unauthenticated("Invalid phone number or password") from exc
        row = self._db.scalar(select(UserRow).where(UserRow.phone == normalized_phone))
        if row is None or not verify_password(password, row.password_hash):
            logger.warning("Failed login attempt for phone ending %s", normalized_phone[-4:])
            raise Unauthenticated("Invalid phone number or password")
        return issue_token(_to_user(row), self._settings, self._clock)

    def record_login(self, issued: IssuedToken) -> None:
        """Add an audit row for an issued token."""
        self._db.add(
            LoginAuditRow(
                user_id=issued.user.id,
                issued_at=issued.issued_at,
                expires_at=issued.expires_at,
            )
        )

    def reset_password(self, user_id: str, password: str) -> User:
        """Overwrite a player's password."""
        row = self._require_row(user_id)
        if row.is_admin:
            raise Forbidden("Administrator passwords cannot be reset here.")
        row.password_hash = hash_password(_validate_password(password))
        row.password_set = True
        self._db.flush()
        logger.info("Password reset for user %s", user_id)
        return _to_user(row)

    def delete_user(self, user_id: str) -> None:
        """Delete a player together with their sessions and results."""
        row = self._require_row(user_id)
        if row.is_admin:
            raise Forbidden("Administrator accounts cannot be deleted.")
        self._db.execute(delete(ResultRow).where(ResultRow.user_id == user_id))
        self._db.execute(delete(SessionRow).where(SessionRow.user_id == user_id))
        self._db.delete(row)
        self._db.flush()
        logger.info("Deleted user %s", user_id)

    def ensure_admin(self, name: str, phone: str, password: str) -> User:
        """Create the configured administrator unless that phone is already registered."""
        normalized_phone = normalize_phone(phone)
        row = self._db.scalar(select(UserRow).where(UserRow.phone == normalized_phone))
        if row is not None:
            return _to_user(row)
        user = self.register_user(name, normalized_phone, is_admin=True)
        row = self._require_row(user.id)
        row.password_hash = hash_password(_validate_password(password))
        row.password_set = True
        self._db.flush()
        logger.info("Bootstrapped administrator %s", user.id)
        return _to_user(row)

    def _require_row(self, user_id: str) -> UserRow:
        row = self._db.get(UserRow, user_id)
        if row is None:
            raise NotFound("User not found")
        return row

    def _exists(self, condition) -> bool:
        return self._db.scalar(select(UserRow.id).where(condition).limit(1)) is not None


def _validate_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    return password


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        phone=row.phone,
        registered_at=row.registered_at,
        email=row.email,
        profile_url=row.profile_url,
        password_hash=row.password_hash,
        password_set=row.password_set,
        is_admin=row.is_admin,
    )


def map_user(user: User) -> dict[str, object]:
    """Public user payload. The password hash is never included."""
    return {
        "id": user.id,
        "name": user.name,
        "phone": user.phone,
        "email": user.email,
        "profileUrl": user.profile_url,
        "passwordSet": user.password_set,
        "isAdmin": user.is_admin,
        "registeredAt": to_utc_iso(user.registered_at),
    }


def map_token(issued: IssuedToken) -> dict[str, object]:
    return {
        "token": issued.token,
        "expiresAt": to_utc_iso(issued.expires_at),
        "user": map_user(issued.user),
    }
