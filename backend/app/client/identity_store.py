"""
Client-side authentication state.

One IdentityStore per client process holds (status, user, access_token) and
walks loading -> authenticated | unauthenticated. It survives slow identity
checks: a validation that times out or fails for any reason other than an
explicit rejection falls back to the cached user instead of signing the
user out.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
VISIBILITY_DEBOUNCE_SECONDS = 5.0

# Per-user cache artifacts removed on sign-out
USER_CACHE_PREFIXES = ("profile", "notifications", "welcome_shown")


class AuthStatus(str, enum.Enum):
    loading = "loading"
    authenticated = "authenticated"
    unauthenticated = "unauthenticated"


class AuthEvent(str, enum.Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


@dataclass(frozen=True)
class Session:
    access_token: str
    user: dict[str, Any]
    refresh_token: str | None = None


@dataclass(frozen=True)
class AuthState:
    """Immutable snapshot; the store swaps the whole object on every change."""

    status: AuthStatus = AuthStatus.loading
    user: dict[str, Any] | None = None
    access_token: str | None = None

    @property
    def user_id(self) -> str | None:
        return str(self.user["id"]) if self.user and "id" in self.user else None


class SessionInvalid(Exception):
    """The identity provider explicitly rejected the session."""


class IdentityProvider(Protocol):
    async def get_user(self, access_token: str) -> dict[str, Any]: ...

    async def get_profile(self, access_token: str) -> dict[str, Any]: ...

    async def sign_out(self, access_token: str) -> None: ...


class SessionCache(Protocol):
    def get_session(self) -> Session | None: ...

    def set_session(self, session: Session) -> None: ...

    def clear_session(self) -> None: ...

    def set(self, key: str, value: Any) -> None: ...

    def get(self, key: str) -> Any: ...

    def delete(self, key: str) -> None: ...


@dataclass
class MemorySessionCache:
    """In-process cache: the session plus arbitrary per-user artifacts."""

    session: Session | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def get_session(self) -> Session | None:
        return self.session

    def set_session(self, session: Session) -> None:
        self.session = session

    def clear_session(self) -> None:
        self.session = None

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


Listener = Callable[[AuthState], None]


class IdentityStore:
    """
    Authentication lifecycle for one client.

    Listeners are called synchronously with the new state after every
    visible change. Token refreshes update the state silently.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        session_cache: SessionCache | None = None,
        *,
        realtime: Any = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._cache: SessionCache = session_cache if session_cache is not None else MemorySessionCache()
        self._realtime = realtime
        self._timeout = timeout
        self._clock = clock

        self._state = AuthState()
        self._listeners: list[Listener] = []
        self._init_task: asyncio.Task[None] | None = None
        self._profile_task: asyncio.Task[None] | None = None
        self._last_refresh: float | None = None
        self.timed_out = False

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def status(self) -> AuthStatus:
        return self._state.status

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: AuthState, notify: bool = True) -> None:
        self._state = state
        if not notify:
            return
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Auth state listener failed")

    # -----------------------------------------------------------------------
    # Initialization
    # -----------------------------------------------------------------------

    async def initialize(self) -> AuthState:
        """Idempotent. Concurrent callers share the same in-flight run."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._init_task)
        return self._state

    async def _initialize(self) -> None:
        session = self._cache.get_session()
        if session is None:
            self._set_state(AuthState(status=AuthStatus.unauthenticated))
            return

        try:
            user = await asyncio.wait_for(
                self._provider.get_user(session.access_token), timeout=self._timeout
            )
        except SessionInvalid:
            logger.info("Cached session rejected by identity provider")
            self._cache.clear_session()
            self._set_state(AuthState(status=AuthStatus.unauthenticated))
            return
        except Exception as exc:
            # Slow, unreachable or failing provider: stay signed in on the cached identity
            self.timed_out = True
            logger.warning(
                "Session validation did not complete (%s), using cached user", type(exc).__name__
            )
            self._set_state(
                AuthState(
                    status=AuthStatus.authenticated,
                    user=session.user,
                    access_token=session.access_token,
                )
            )
            self._last_refresh = self._clock()
            return

        self._adopt(session.access_token, user, session.refresh_token)
        self._last_refresh = self._clock()

    def _adopt(
        self, access_token: str, user: dict[str, Any], refresh_token: str | None = None
    ) -> None:
        self._cache.set_session(
            Session(access_token=access_token, user=user, refresh_token=refresh_token)
        )
        self._set_state(
            AuthState(status=AuthStatus.authenticated, user=user, access_token=access_token)
        )
        self._profile_task = asyncio.ensure_future(self._load_profile(access_token))

    async def _load_profile(self, access_token: str) -> None:
        """Swap in the extended profile without leaving `authenticated`."""
        try:
            profile = await self._provider.get_profile(access_token)
        except Exception:
            logger.warning("Extended profile load failed", exc_info=True)
            return

        state = self._state
        if state.status != AuthStatus.authenticated or state.user is None:
            return
        if str(profile.get("id", state.user_id)) != state.user_id:
            return
        self._cache.set(f"profile:{state.user_id}", profile)
        self._set_state(replace(state, user={**state.user, **profile}))

    # -----------------------------------------------------------------------
    # Provider events
    # -----------------------------------------------------------------------

    def handle_auth_change(self, event: AuthEvent | str, session: Session | None = None) -> None:
        event = AuthEvent(event)

        if event == AuthEvent.INITIAL_SESSION:
            return

        if event == AuthEvent.SIGNED_OUT:
            if self._state.status == AuthStatus.authenticated:
                self._purge_user_cache(self._state.user_id)
                self._cache.clear_session()
                self._set_state(AuthState(status=AuthStatus.unauthenticated))
            return

        if session is None:
            return

        if event == AuthEvent.TOKEN_REFRESHED:
            self._cache.set_session(session)
            self._set_state(replace(self._state, access_token=session.access_token), notify=False)
            return

        # SIGNED_IN / USER_UPDATED
        self._cache.set_session(session)
        self._set_state(
            AuthState(
                status=AuthStatus.authenticated,
                user=session.user,
                access_token=session.access_token,
            )
        )

    # -----------------------------------------------------------------------
    # Sign-out / refresh
    # -----------------------------------------------------------------------

    async def sign_out(self) -> None:
        """Purge per-user artifacts, tear down realtime, then sign out at the provider."""
        state = self._state
        self._purge_user_cache(state.user_id)

        if self._realtime is not None:
            try:
                await self._realtime.disconnect()
            except Exception:
                logger.exception("Realtime teardown failed during sign-out")

        try:
            if state.access_token:
                await self._provider.sign_out(state.access_token)
        finally:
            self._cache.clear_session()
            self._set_state(AuthState(status=AuthStatus.unauthenticated))

    async def refresh_user(self) -> AuthState:
        state = self._state
        if state.status != AuthStatus.authenticated or not state.access_token:
            return state
        await self._reverify(state.access_token, refresh_token=self._cached_refresh_token())
        return self._state

    async def _reverify(self, access_token: str, refresh_token: str | None = None) -> None:
        self._last_refresh = self._clock()
        try:
            user = await asyncio.wait_for(
                self._provider.get_user(access_token), timeout=self._timeout
            )
        except SessionInvalid:
            logger.info("Session invalidated server-side")
            self._purge_user_cache(self._state.user_id)
            self._cache.clear_session()
            self._set_state(AuthState(status=AuthStatus.unauthenticated))
            return
        except Exception as exc:
            logger.warning("Session re-verification did not complete: %s", type(exc).__name__)
            return
        self._adopt(access_token, user, refresh_token)

    # -----------------------------------------------------------------------
    # Page visibility
    # -----------------------------------------------------------------------

    def _debounced(self) -> bool:
        return (
            self._last_refresh is not None
            and self._clock() - self._last_refresh < VISIBILITY_DEBOUNCE_SECONDS
        )

    async def on_visible(self) -> bool:
        """Tab became visible again. Returns True when a refresh ran."""
        if self._state.status != AuthStatus.authenticated or self._debounced():
            return False
        await self.refresh_user()
        return True

    async def on_page_restored(self, persisted: bool) -> bool:
        """
        Page came back from the back/forward cache.

        The in-memory state may be stale, so the session is re-verified and
        a server-side sign-out is honoured.
        """
        if not persisted or self._debounced():
            return False
        state = self._state
        if state.status != AuthStatus.authenticated or not state.access_token:
            return False
        await self._reverify(state.access_token, refresh_token=self._cached_refresh_token())
        return True

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _cached_refresh_token(self) -> str | None:
        session = self._cache.get_session()
        return session.refresh_token if session else None

    def _purge_user_cache(self, user_id: str | None) -> None:
        if user_id is None:
            return
        for prefix in USER_CACHE_PREFIXES:
            self._cache.delete(f"{prefix}:{user_id}")


# ---------------------------------------------------------------------------
# HTTP identity provider
# ---------------------------------------------------------------------------

class HttpIdentityProvider:
    """IdentityProvider backed by the Teamboard auth API."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=DEFAULT_TIMEOUT_SECONDS)

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_user(self, access_token: str) -> dict[str, Any]:
        response = await self._client.get("/api/v1/auth/me", headers=self._headers(access_token))
        if response.status_code == 401:
            raise SessionInvalid(response.text)
        response.raise_for_status()
        return response.json()

    async def get_profile(self, access_token: str) -> dict[str, Any]:
        response = await self._client.get("/api/v1/profile", headers=self._headers(access_token))
        response.raise_for_status()
        return response.json()

    async def sign_out(self, access_token: str) -> None:
        response = await self._client.post(
            "/api/v1/auth/logout", headers=self._headers(access_token)
        )
        # An already-invalid token means we are signed out anyway
        if response.status_code != 401:
            response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
