# Overview: Identity provider; owns credentials, confirmation and session tokens.

"""
Identity Provider

WHY: Every other component only needs "who is this" and "is the session
alive". Passwords, confirmation tokens and session tokens live here and
nowhere else.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session and confirmation tokens are 32 random bytes, stored as SHA-256
- Absolute timeout (default 24h) and idle timeout (default 2h)

ERROR POLICY: sign_up/sign_in/confirm_email never raise for bad input or
bad credentials. They return an AuthResult carrying an error string so the
form that called them stays interactive. Only the admin_* operations raise
(IdentityError), because they run inside administrative workflows that must
roll back.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import bcrypt
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Identity, SessionToken
from ..validation import ValidationError, normalize_email
from stationauth.time_utils import has_passed, idle_longer_than, to_utc_z, utcnow


INVALID_CREDENTIALS = "Invalid login credentials"
EMAIL_NOT_CONFIRMED = "Email not confirmed"
ALREADY_REGISTERED = "User already registered"


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class IdentityError(Exception):
    """Raised by administrative identity operations."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[^A-Za-z0-9]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = 12) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed hash is a mismatch.
    """
    if not isinstance(password, str) or not isinstance(password_hash, str):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (ValueError, TypeError):
        return False


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 for storage.

    WHY SHA-256 not bcrypt: tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class SessionIdentity:
    id: str
    email: str


@dataclass(frozen=True)
class Session:
    """What consumers see of a live session. Never carries credentials."""
    identity: SessionIdentity
    access_token: str
    expires_at: datetime

    @property
    def user_id(self) -> str:
        return self.identity.id

    def is_expired(self, now: datetime | None = None) -> bool:
        return has_passed(self.expires_at, now)

    def to_dict(self) -> dict:
        return {
            "user": {"id": self.identity.id, "email": self.identity.email},
            "expires_at": to_utc_z(self.expires_at),
        }


@dataclass(frozen=True)
class AuthResult:
    session: Session | None = None
    identity: SessionIdentity | None = None
    error: str | None = None
    # Plaintext one-time token; handed to whoever delivers the confirmation email
    confirmation_token: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _snapshot(identity: Identity) -> SessionIdentity:
    return SessionIdentity(id=identity.id, email=identity.email)


class IdentityProvider:
    """Database-backed identity provider shared by every client context."""

    def __init__(
        self,
        *,
        bcrypt_rounds: int = 12,
        absolute_timeout: timedelta = timedelta(hours=24),
        idle_timeout: timedelta = timedelta(hours=2),
        require_email_confirmation: bool = True,
    ):
        self.bcrypt_rounds = bcrypt_rounds
        self.absolute_timeout = absolute_timeout
        self.idle_timeout = idle_timeout
        self.require_email_confirmation = require_email_confirmation

    @classmethod
    def from_config(cls, config) -> "IdentityProvider":
        return cls(
            bcrypt_rounds=config["BCRYPT_ROUNDS"],
            absolute_timeout=timedelta(hours=config["SESSION_ABSOLUTE_TIMEOUT_HOURS"]),
            idle_timeout=timedelta(hours=config["SESSION_IDLE_TIMEOUT_HOURS"]),
            require_email_confirmation=config["REQUIRE_EMAIL_CONFIRMATION"],
        )

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def sign_up(self, email: str, password: str, metadata: dict | None = None) -> AuthResult:
        """
        Register a new identity with no roles.

        With email confirmation required, no session is issued; the result
        carries the confirmation token instead.
        """
        try:
            email = normalize_email(email)
            password_hash = hash_password(password, self.bcrypt_rounds)
        except (ValidationError, PasswordValidationError) as e:
            return AuthResult(error=str(e))

        if db.session.query(Identity).filter_by(email=email).first():
            return AuthResult(error=ALREADY_REGISTERED)

        identity = Identity(
            email=email,
            password_hash=password_hash,
            user_metadata=dict(metadata or {}),
        )

        confirmation_token = None
        if self.require_email_confirmation:
            confirmation_token = generate_token()
            identity.confirmation_token_hash = hash_token(confirmation_token)
        else:
            identity.email_confirmed_at = utcnow()

        db.session.add(identity)
        db.session.commit()

        if confirmation_token is not None:
            return AuthResult(identity=_snapshot(identity), confirmation_token=confirmation_token)

        session = self._issue_session(identity)
        return AuthResult(session=session, identity=session.identity)

    def confirm_email(self, confirmation_token: str) -> AuthResult:
        if not confirmation_token:
            return AuthResult(error="Confirmation token required")

        identity = db.session.query(Identity).filter_by(
            confirmation_token_hash=hash_token(confirmation_token)
        ).first()
        if not identity:
            return AuthResult(error="Invalid confirmation link or email already confirmed")

        identity.email_confirmed_at = utcnow()
        identity.confirmation_token_hash = None
        db.session.commit()
        return AuthResult(identity=_snapshot(identity))

    def sign_in(
        self,
        email: str,
        password: str,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        """
        Verify credentials and issue a session.

        Unknown email, wrong password and deactivated account all return the
        same error so callers cannot enumerate accounts.
        """
        try:
            email = normalize_email(email)
        except ValidationError:
            return AuthResult(error=INVALID_CREDENTIALS)

        identity = db.session.query(Identity).filter_by(email=email).first()
        if not identity or not identity.is_active:
            return AuthResult(error=INVALID_CREDENTIALS)

        if not verify_password(password or "", identity.password_hash):
            return AuthResult(error=INVALID_CREDENTIALS)

        if self.require_email_confirmation and identity.email_confirmed_at is None:
            return AuthResult(identity=_snapshot(identity), error=EMAIL_NOT_CONFIRMED)

        identity.last_sign_in_at = utcnow()
        session = self._issue_session(identity, user_agent=user_agent, ip_address=ip_address)
        return AuthResult(session=session, identity=session.identity)

    def sign_out(self, access_token: str, reason: str = "User sign-out") -> bool:
        """Revoke one token. Returns False if it was unknown or already revoked."""
        record = db.session.query(SessionToken).filter_by(
            token_hash=hash_token(access_token),
            is_revoked=False,
        ).first()
        if not record:
            return False

        record.is_revoked = True
        record.revoked_at = utcnow()
        record.revoked_reason = reason
        db.session.commit()
        return True

    def get_session(self, access_token: str) -> Session | None:
        """
        Resolve a token to a live Session, or None.

        Idle sessions and sessions of deactivated identities are revoked on
        the way out. A valid lookup refreshes last_used_at.
        """
        if not access_token:
            return None

        now = utcnow()
        record = db.session.query(SessionToken).filter_by(
            token_hash=hash_token(access_token),
            is_revoked=False,
        ).first()
        if not record:
            return None

        if has_passed(record.expires_at, now):
            return None

        if idle_longer_than(record.last_used_at, self.idle_timeout, now):
            self._revoke(record, "Idle timeout", now)
            return None

        identity = record.identity
        if not identity or not identity.is_active:
            self._revoke(record, "Identity deactivated", now)
            return None

        record.last_used_at = now
        db.session.commit()

        return Session(
            identity=_snapshot(identity),
            access_token=access_token,
            expires_at=record.expires_at,
        )

    def get_identity(self, identity_id: str) -> Identity | None:
        return db.session.get(Identity, identity_id)

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    def admin_create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool = True,
        user_metadata: dict | None = None,
    ) -> Identity:
        """
        Create an identity on someone else's behalf.

        Raises IdentityError on any failure (invalid email or password,
        duplicate email, database error).
        """
        try:
            email = normalize_email(email)
            password_hash = hash_password(password, self.bcrypt_rounds)
        except (ValidationError, PasswordValidationError) as e:
            raise IdentityError(str(e)) from e

        if db.session.query(Identity).filter_by(email=email).first():
            raise IdentityError(ALREADY_REGISTERED)

        identity = Identity(
            email=email,
            password_hash=password_hash,
            user_metadata=dict(user_metadata or {}),
            email_confirmed_at=utcnow() if email_confirm else None,
        )
        try:
            db.session.add(identity)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise IdentityError("Failed to create user account") from e
        return identity

    def admin_delete_user(self, identity_id: str) -> bool:
        identity = db.session.get(Identity, identity_id)
        if not identity:
            return False
        db.session.delete(identity)
        db.session.commit()
        return True

    def revoke_all_sessions(self, identity_id: str, reason: str = "Revoke all sessions") -> int:
        now = utcnow()
        records = db.session.query(SessionToken).filter_by(
            identity_id=identity_id,
            is_revoked=False,
        ).all()
        for record in records:
            record.is_revoked = True
            record.revoked_at = now
            record.revoked_reason = reason
        db.session.commit()
        return len(records)

    # ------------------------------------------------------------------

    def _issue_session(
        self,
        identity: Identity,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> Session:
        plaintext_token = generate_token()
        now = utcnow()
        record = SessionToken(
            identity_id=identity.id,
            token_hash=hash_token(plaintext_token),
            created_at=now,
            last_used_at=now,
            expires_at=now + self.absolute_timeout,
            user_agent=user_agent,
            ip_address=ip_address,
            is_revoked=False,
        )
        db.session.add(record)
        db.session.commit()

        return Session(
            identity=_snapshot(identity),
            access_token=plaintext_token,
            expires_at=record.expires_at,
        )

    def _revoke(self, record: SessionToken, reason: str, now: datetime) -> None:
        record.is_revoked = True
        record.revoked_at = now
        record.revoked_reason = reason
        db.session.commit()
