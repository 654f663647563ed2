"""
Per-context handle on the identity provider.

One IdentityClient stands for one signed-in context (an HTTP request built
from a bearer token, or a long-lived CLI/UI process). It remembers the
current access token and notifies subscribers when a session is
established or cleared.

Notifications are delivered synchronously while the client is still inside
the operation that produced them. Calling back into the client from a
listener is refused with ReentrantIdentityCallError; listeners must hand the
work off (see SessionManager's refresh queue).
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from .identity_provider import AuthResult, IdentityProvider, Session


class AuthChangeEvent(str, Enum):
    SESSION_ESTABLISHED = "session_established"
    SESSION_CLEARED = "session_cleared"


ChangeListener = Callable[[AuthChangeEvent, "Session | None"], None]


class ReentrantIdentityCallError(RuntimeError):
    """A change listener called back into the client that is notifying it."""


class IdentityClient:
    def __init__(
        self,
        provider: IdentityProvider,
        access_token: str | None = None,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ):
        self._provider = provider
        self._access_token = access_token
        self._listeners: list[ChangeListener] = []
        self._dispatching = 0
        self.user_agent = user_agent
        self.ip_address = ip_address

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Subscribe; returns the matching unsubscribe callable."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def get_session(self) -> Session | None:
        self._enter("get_session")
        if not self._access_token:
            return None

        session = self._provider.get_session(self._access_token)
        if session is None:
            # Token expired or was revoked elsewhere
            self._access_token = None
            self._emit(AuthChangeEvent.SESSION_CLEARED, None)
        return session

    def sign_in(self, email: str, password: str) -> AuthResult:
        self._enter("sign_in")
        result = self._provider.sign_in(
            email,
            password,
            user_agent=self.user_agent,
            ip_address=self.ip_address,
        )
        if result.ok and result.session is not None:
            self._access_token = result.session.access_token
            self._emit(AuthChangeEvent.SESSION_ESTABLISHED, result.session)
        return result

    def sign_up(self, email: str, password: str, metadata: dict | None = None) -> AuthResult:
        self._enter("sign_up")
        result = self._provider.sign_up(email, password, metadata)
        if result.ok and result.session is not None:
            self._access_token = result.session.access_token
            self._emit(AuthChangeEvent.SESSION_ESTABLISHED, result.session)
        return result

    def sign_out(self) -> None:
        self._enter("sign_out")
        token = self._access_token
        if token is None:
            return
        self._access_token = None
        self._provider.sign_out(token)
        self._emit(AuthChangeEvent.SESSION_CLEARED, None)

    def _enter(self, operation: str) -> None:
        if self._dispatching:
            raise ReentrantIdentityCallError(
                f"IdentityClient.{operation}() called from a change listener"
            )

    def _emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        self._dispatching += 1
        try:
            for listener in list(self._listeners):
                listener(event, session)
        finally:
            self._dispatching -= 1
