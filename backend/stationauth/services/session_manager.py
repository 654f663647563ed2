# Overview: Owner of the signed-in state of one client context.

"""
Session Manager

WHY: One place owns "who is signed in here, with which roles and profile".
Route guards and feature code read from it; only this class (through its
RoleResolver) writes to it.

INITIALIZATION ORDER (do not invert):
1. subscribe to the identity client's change notifications
2. request the current session snapshot
A session change that fires between the two is then still observed.

DEFERRED REFRESH: a "session established" notification does not fetch roles
inside the notification handler. It enqueues a RefreshJob; the queue is
drained by run_pending() once the identity client has returned. A fetch run
from inside the handler would re-enter the client while it is still
dispatching.

SIGN-OUT: "session cleared" wipes roles and profile synchronously inside
the handler. Every job and in-flight fetch carries the session generation
it was started for; results from an older generation are dropped.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from ..models import Profile
from ..roles import Role
from stationauth.time_utils import utcnow
from .identity_client import AuthChangeEvent, IdentityClient
from .identity_provider import AuthResult, Session, SessionIdentity
from .role_resolver import RoleResolver
from .stores import ProfileStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshJob:
    generation: int
    user_id: str


class RefreshQueue:
    """FIFO of refresh jobs; identical pending jobs are coalesced."""

    def __init__(self):
        self._jobs: deque[RefreshJob] = deque()

    def enqueue(self, job: RefreshJob) -> None:
        if job not in self._jobs:
            self._jobs.append(job)

    def pop(self) -> RefreshJob | None:
        return self._jobs.popleft() if self._jobs else None

    def __len__(self) -> int:
        return len(self._jobs)


class SessionManager:
    def __init__(
        self,
        client: IdentityClient,
        resolver: RoleResolver,
        profile_store: ProfileStore,
        *,
        queue: RefreshQueue | None = None,
    ):
        self._client = client
        self._resolver = resolver
        self._profiles = profile_store
        self._queue = queue or RefreshQueue()

        self._session: Session | None = None
        self._profile: Profile | None = None
        self._generation = 0
        self._initialized = False
        self._initializing = False
        self._draining = False
        self._unsubscribe = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Establish state once; later calls are no-ops."""
        if self._initialized or self._initializing:
            return
        self._initializing = True
        try:
            self._unsubscribe = self._client.on_change(self._handle_change)

            session = self._client.get_session()
            if session is not None:
                self._adopt_session(session)

            self.run_pending()
        finally:
            self._initializing = False
        self._initialized = True

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Identity operations
    # ------------------------------------------------------------------

    def current_session(self) -> Session | None:
        if self._session is not None and self._session.is_expired(utcnow()):
            return None
        return self._session

    def is_authenticated(self) -> bool:
        session = self.current_session()
        return session is not None and bool(session.identity.id)

    @property
    def identity(self) -> SessionIdentity | None:
        session = self.current_session()
        return session.identity if session else None

    def sign_in(self, email: str, password: str) -> AuthResult:
        result = self._client.sign_in(email, password)
        self.run_pending()
        return result

    def sign_up(self, email: str, password: str, metadata: dict | None = None) -> AuthResult:
        result = self._client.sign_up(email, password, metadata)
        self.run_pending()
        return result

    def sign_out(self) -> None:
        self._client.sign_out()
        self.run_pending()

    # ------------------------------------------------------------------
    # Read-only state for guards and feature code
    # ------------------------------------------------------------------

    @property
    def resolver(self) -> RoleResolver:
        return self._resolver

    @property
    def roles(self) -> frozenset[Role]:
        return self._resolver.roles

    @property
    def roles_loaded(self) -> bool:
        """True once roles were fetched for the current user."""
        session = self._session
        return session is not None and self._resolver.loaded_for == session.user_id

    @property
    def profile(self) -> Profile | None:
        return self._profile

    def has_role(self, role: Role) -> bool:
        return self._resolver.has_role(role)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_roles(self) -> frozenset[Role]:
        """Force a role refetch for the signed-in user (used by guards)."""
        session = self._session
        if session is None:
            return frozenset()
        generation = self._generation
        return self._resolver.fetch_roles(
            session.user_id,
            is_current=lambda: self._generation == generation,
        )

    def fetch_user_roles(self, user_id: str) -> frozenset[Role]:
        """
        Roles of any user.

        For the signed-in user this refreshes the cache. For anyone else the
        cache is left alone; looking at another account never changes the
        caller's own roles.
        """
        session = self._session
        if session is not None and session.user_id == user_id:
            return self.refresh_roles()
        roles, _ = self._resolver.load_roles(user_id)
        return roles

    def run_pending(self) -> None:
        """Drain queued refresh jobs. Not re-entrant; nested calls return."""
        if self._draining:
            return
        self._draining = True
        try:
            while True:
                job = self._queue.pop()
                if job is None:
                    break
                self._run_job(job)
        finally:
            self._draining = False

    @property
    def pending_jobs(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Internals (the only writers)
    # ------------------------------------------------------------------

    def _handle_change(self, event: AuthChangeEvent, session: Session | None) -> None:
        if event is AuthChangeEvent.SESSION_CLEARED or session is None:
            self._clear()
            return
        self._adopt_session(session)

    def _adopt_session(self, session: Session) -> None:
        previous = self._session
        self._session = session
        if previous is None or previous.user_id != session.user_id:
            self._generation += 1
            self._resolver.clear()
            self._profile = None
        self._queue.enqueue(RefreshJob(generation=self._generation, user_id=session.user_id))

    def _clear(self) -> None:
        self._generation += 1
        self._session = None
        self._profile = None
        self._resolver.clear()

    def _is_current(self, job: RefreshJob) -> bool:
        session = self._session
        return (
            job.generation == self._generation
            and session is not None
            and session.user_id == job.user_id
        )

    def _run_job(self, job: RefreshJob) -> None:
        if not self._is_current(job):
            logger.debug("Skipping stale refresh for user %s", job.user_id)
            return

        self._resolver.fetch_roles(job.user_id, is_current=lambda: self._is_current(job))

        try:
            profile = self._profiles.get(job.user_id)
        except Exception:
            logger.exception("Profile fetch failed for user %s", job.user_id)
            profile = None

        if self._is_current(job):
            self._profile = profile
