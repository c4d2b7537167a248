"""
Authentication Provider

Identity boundary of the application. The rest of the system only ever
sees an `AuthenticatedUser` (id + email); how it was established stays
behind `AuthProviderInterface`.

The local provider keeps users and opaque tokens in the relational store:
- passwords are hashed with werkzeug.security, never stored in clear
- a session token is issued on every successful sign-in
- a one-time token backs the emailed sign-in link and is consumed on use

Errors are raised as AuthError with a generic message. Whether an email
exists is never revealed by a failed sign-in.
"""

import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import delete, select
from werkzeug.security import check_password_hash, generate_password_hash

from src.config import AuthSettings, get_settings
from src.models.budget import AuthenticatedUser, AuthSession, utc_now
from src.services.storage.database import (
    AuthTokenRecord,
    Database,
    ProfileRecord,
    UserRecord,
)


SESSION = "session"
OTP = "otp"


class AuthError(Exception):
    """No identity, or the provider refused the credentials."""
    pass


class AuthProviderInterface(ABC):
    """
    Abstract identity provider.
    """

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> AuthSession:
        """
        Register a user and open a session.

        Raises:
            AuthError: If the email is already registered
        """
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        pass

    @abstractmethod
    async def sign_in_with_otp(self, email: str) -> str:
        """
        Issue a one-time sign-in token for `email`.

        Unknown emails get an account created on the fly.
        """
        pass

    @abstractmethod
    async def verify_otp(self, email: str, token: str) -> AuthSession:
        pass

    @abstractmethod
    async def sign_out(self, token: str) -> None:
        pass

    @abstractmethod
    async def get_user(self, token: Optional[str]) -> Optional[AuthenticatedUser]:
        """The user behind a live session token, None otherwise."""
        pass

    @abstractmethod
    async def update_password(
        self,
        token: str,
        new_password: str,
        current_password: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def update_user(
        self,
        token: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> AuthenticatedUser:
        pass


class LocalAuthProvider(AuthProviderInterface):
    """
    Provider backed by the `users` and `auth_tokens` tables.
    """

    def __init__(
        self,
        database: Database,
        settings: Optional[AuthSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._database = database
        self._settings = settings or get_settings().auth
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    @staticmethod
    def _normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def _to_user(record: UserRecord) -> AuthenticatedUser:
        return AuthenticatedUser(id=record.id, email=record.email)

    def _issue_token(self, session, user: UserRecord, kind: str) -> AuthTokenRecord:
        now = self._clock()
        if kind == SESSION:
            ttl = timedelta(hours=self._settings.session_ttl_hours)
        else:
            ttl = timedelta(minutes=self._settings.otp_ttl_minutes)

        record = AuthTokenRecord(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            kind=kind,
            expires_at=now + ttl,
            created_at=now,
        )
        session.add(record)
        session.flush()
        return record

    def _open_session(self, session, user: UserRecord) -> AuthSession:
        record = self._issue_token(session, user, SESSION)
        return AuthSession(
            token=record.token,
            user=self._to_user(user),
            expires_at=record.expires_at,
        )

    def _live_token(self, session, token: Optional[str], kind: str) -> Optional[AuthTokenRecord]:
        if not token:
            return None
        record = session.get(AuthTokenRecord, token)
        if record is None or record.kind != kind:
            return None
        if record.expires_at <= self._clock():
            session.delete(record)
            return None
        return record

    def _require_user(self, session, token: Optional[str]) -> UserRecord:
        record = self._live_token(session, token, SESSION)
        if record is None:
            raise AuthError("User not authenticated")
        user = session.get(UserRecord, record.user_id)
        if user is None:
            raise AuthError("User not authenticated")
        return user

    def _find_by_email(self, session, email: str) -> Optional[UserRecord]:
        return session.scalars(
            select(UserRecord).where(UserRecord.email == email)
        ).first()

    # -- operations ----------------------------------------------------------

    async def sign_up(self, email: str, password: str) -> AuthSession:
        email = self._normalize_email(email)
        now = self._clock()
        with self._database.session() as session:
            if self._find_by_email(session, email) is not None:
                raise AuthError("Email already registered")

            user = UserRecord(
                email=email,
                password_hash=generate_password_hash(password),
                created_at=now,
                updated_at=now,
            )
            session.add(user)
            session.flush()

            self._logger.info("user_registered", user_id=str(user.id))
            return self._open_session(session, user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        email = self._normalize_email(email)
        with self._database.session() as session:
            user = self._find_by_email(session, email)
            if user is None or not check_password_hash(user.password_hash, password or ""):
                raise AuthError("Invalid login credentials")
            return self._open_session(session, user)

    async def sign_in_with_otp(self, email: str) -> str:
        email = self._normalize_email(email)
        now = self._clock()
        with self._database.session() as session:
            user = self._find_by_email(session, email)
            if user is None:
                # random secret nobody knows; the account is reachable by link only
                user = UserRecord(
                    email=email,
                    password_hash=generate_password_hash(secrets.token_urlsafe(32)),
                    created_at=now,
                    updated_at=now,
                )
                session.add(user)
                session.flush()
            return self._issue_token(session, user, OTP).token

    async def verify_otp(self, email: str, token: str) -> AuthSession:
        email = self._normalize_email(email)
        with self._database.session() as session:
            record = self._live_token(session, token, OTP)
            user = session.get(UserRecord, record.user_id) if record else None
            if user is None or user.email != email:
                raise AuthError("Sign-in link is invalid or has expired")

            session.delete(record)
            return self._open_session(session, user)

    async def sign_out(self, token: str) -> None:
        with self._database.session() as session:
            session.execute(
                delete(AuthTokenRecord).where(
                    AuthTokenRecord.token == token,
                    AuthTokenRecord.kind == SESSION,
                )
            )

    async def get_user(self, token: Optional[str]) -> Optional[AuthenticatedUser]:
        with self._database.session() as session:
            try:
                return self._to_user(self._require_user(session, token))
            except AuthError:
                return None

    async def update_password(
        self,
        token: str,
        new_password: str,
        current_password: Optional[str] = None,
    ) -> None:
        with self._database.session() as session:
            user = self._require_user(session, token)
            if current_password is not None and not check_password_hash(
                user.password_hash, current_password
            ):
                raise AuthError("Current password is incorrect")

            user.password_hash = generate_password_hash(new_password)
            user.updated_at = self._clock()

    async def update_user(
        self,
        token: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> AuthenticatedUser:
        now = self._clock()
        with self._database.session() as session:
            user = self._require_user(session, token)

            if email is not None:
                email = self._normalize_email(email)
                if email != user.email:
                    taken = self._find_by_email(session, email)
                    if taken is not None:
                        raise AuthError("Email already registered")
                    user.email = email
                    user.updated_at = now

            if full_name is not None:
                profile = session.get(ProfileRecord, user.id)
                if profile is None:
                    profile = ProfileRecord(user_id=user.id, created_at=now)
                    session.add(profile)
                profile.full_name = full_name
                profile.updated_at = now

            session.flush()
            return self._to_user(user)
