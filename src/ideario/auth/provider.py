"""Authentication providers.

An :class:`AuthProvider` issues and tracks the current session. The core
only needs ``get_session`` and ``on_session_change``; sign-up, sign-in and
sign-out failures surface as :class:`ideario.errors.AuthError` and end the
action that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from passlib.context import CryptContext

from ideario.auth.jwt import create_token, verify_token
from ideario.core.records import USERS
from ideario.errors import AuthError, ConflictError, ValidationError
from ideario.models.user import Session, User
from ideario.storage.base import PersistenceGateway

logger = logging.getLogger(__name__)

SessionListener = Callable[[str, Session | None], Coroutine[Any, Any, None]]

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

MIN_PASSWORD_LENGTH = 6

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class AuthProvider(ABC):
    """Session issuing and change notification."""

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    @abstractmethod
    async def get_session(self) -> Session | None:
        """The current session, or None when signed out or expired."""

    @abstractmethod
    async def sign_up(self, email: str, senha: str, nome: str) -> Session:
        """Register a user and sign them in."""

    @abstractmethod
    async def sign_in(self, email: str, senha: str) -> Session:
        """Sign in with email and password."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""

    @abstractmethod
    async def resolve(self, token: str) -> User:
        """Map a bearer token to its user. Raises AuthError when invalid."""

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Subscribe to sign-in/sign-out. Returns an unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def _notify(self, event: str, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session listener failed for %s", event)


class LocalAuthProvider(AuthProvider):
    """Email/password accounts stored in the ``usuarios`` collection.

    Passwords are hashed with passlib; sessions are HS256 JWTs.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        secret: str,
        ttl_minutes: int = 60,
    ) -> None:
        super().__init__()
        self._gateway = gateway
        self._secret = secret
        self._ttl_minutes = ttl_minutes
        self._session: Session | None = None

    async def get_session(self) -> Session | None:
        if self._session and self._session.is_expired():
            logger.info("Session for %s expired", self._session.user.id)
            self._session = None
            await self._notify(SIGNED_OUT, None)
        return self._session

    async def sign_up(self, email: str, senha: str, nome: str) -> Session:
        email = (email or "").strip().lower()
        nome = (nome or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        if not nome:
            raise ValidationError("nome cannot be empty")
        if len(senha or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must have at least {MIN_PASSWORD_LENGTH} characters"
            )

        user = User(email=email, nome=nome)
        senha_hash = await asyncio.to_thread(_pwd_context.hash, senha)
        try:
            await self._gateway.insert(
                USERS, {**user.model_dump(), "senha_hash": senha_hash}
            )
        except ConflictError as e:
            raise AuthError(f"Email already registered: {email}") from e

        logger.info("Registered user %s (%s)", user.id, email)
        return await self._start_session(user)

    async def sign_in(self, email: str, senha: str) -> Session:
        email = (email or "").strip().lower()
        rows = await self._gateway.query(USERS, filters={"email": email}, limit=1)
        if not rows:
            raise AuthError("Invalid email or password")

        record = rows[0]
        valid = await asyncio.to_thread(_pwd_context.verify, senha or "", record["senha_hash"])
        if not valid:
            logger.warning("Failed sign-in for %s", email)
            raise AuthError("Invalid email or password")

        return await self._start_session(_user_from_record(record))

    async def sign_out(self) -> None:
        if self._session is None:
            return
        logger.info("Signed out %s", self._session.user.id)
        self._session = None
        await self._notify(SIGNED_OUT, None)

    async def resolve(self, token: str) -> User:
        payload = verify_token(token, self._secret)
        record = await self._gateway.get(USERS, payload["sub"])
        if record is None:
            raise AuthError("Session user no longer exists")
        return _user_from_record(record)

    async def _start_session(self, user: User) -> Session:
        token, expires_at = create_token(user.id, self._secret, exp_minutes=self._ttl_minutes)
        self._session = Session(user=user, access_token=token, expires_at=expires_at)
        logger.info(
            "Signed in %s until %s",
            user.id,
            datetime.fromtimestamp(expires_at, UTC).isoformat(),
        )
        await self._notify(SIGNED_IN, self._session)
        return self._session


def _user_from_record(record: dict[str, Any]) -> User:
    return User(**{k: v for k, v in record.items() if k in User.model_fields})
