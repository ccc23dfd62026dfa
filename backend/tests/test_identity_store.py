"""
Client identity store tests.

A fake identity provider stands in for the auth API so timeouts, rejected
sessions and slow profile loads can be driven directly.
"""

import asyncio

import httpx
import pytest

from app.client.identity_store import (
    VISIBILITY_DEBOUNCE_SECONDS,
    AuthEvent,
    AuthStatus,
    HttpIdentityProvider,
    IdentityStore,
    MemorySessionCache,
    Session,
    SessionInvalid,
)

USER = {"id": "u-1", "email": "alice@example.com"}
SESSION = Session(access_token="token-1", user=USER, refresh_token="refresh-1")


class FakeProvider:
    def __init__(self, user=USER, delay: float = 0.0, error: Exception | None = None):
        self.user = user
        self.delay = delay
        self.error = error
        self.profile = {"id": user["id"], "full_name": "Alice Owner"}
        self.get_user_calls = 0
        self.signed_out: list[str] = []
        self.sign_out_error: Exception | None = None

    async def get_user(self, access_token):
        self.get_user_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.user)

    async def get_profile(self, access_token):
        return dict(self.profile)

    async def sign_out(self, access_token):
        self.signed_out.append(access_token)
        if self.sign_out_error is not None:
            raise self.sign_out_error


class FakeRealtime:
    def __init__(self, events: list[str]):
        self.events = events

    async def disconnect(self):
        self.events.append("realtime.disconnect")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def cache_with_session() -> MemorySessionCache:
    return MemorySessionCache(session=SESSION)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_session_is_unauthenticated():
    store = IdentityStore(FakeProvider(), MemorySessionCache())
    assert store.status == AuthStatus.loading
    state = await store.initialize()
    assert state.status == AuthStatus.unauthenticated


@pytest.mark.asyncio
async def test_valid_session_authenticates_and_loads_profile():
    cache = cache_with_session()
    store = IdentityStore(FakeProvider(), cache)
    seen = []
    store.subscribe(lambda state: seen.append(state))

    state = await store.initialize()
    assert state.status == AuthStatus.authenticated
    assert state.access_token == "token-1"

    await settle()
    assert store.state.user["full_name"] == "Alice Owner"
    assert store.state.status == AuthStatus.authenticated
    assert cache.get("profile:u-1") == {"id": "u-1", "full_name": "Alice Owner"}
    assert all(s.status == AuthStatus.authenticated for s in seen)


@pytest.mark.asyncio
async def test_concurrent_initialize_shares_one_check():
    provider = FakeProvider(delay=0.01)
    store = IdentityStore(provider, cache_with_session())
    first, second = await asyncio.gather(store.initialize(), store.initialize())
    assert provider.get_user_calls == 1
    assert first.status == second.status == AuthStatus.authenticated


@pytest.mark.asyncio
async def test_slow_check_keeps_cached_user():
    provider = FakeProvider(delay=1.0)
    store = IdentityStore(provider, cache_with_session(), timeout=0.01)
    state = await store.initialize()
    assert state.status == AuthStatus.authenticated
    assert state.user == USER
    assert store.timed_out is True


@pytest.mark.asyncio
async def test_network_error_keeps_cached_user():
    provider = FakeProvider(error=httpx.ConnectError("offline"))
    store = IdentityStore(provider, cache_with_session())
    state = await store.initialize()
    assert state.status == AuthStatus.authenticated
    assert store.timed_out is True


@pytest.mark.asyncio
async def test_provider_error_status_keeps_cached_user():
    def unavailable(request):
        return httpx.Response(503, json={"detail": "maintenance"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(unavailable), base_url="http://auth"
    ) as http:
        store = IdentityStore(HttpIdentityProvider("http://auth", client=http), cache_with_session())
        state = await asyncio.wait_for(store.initialize(), timeout=1.0)

    assert state.status == AuthStatus.authenticated
    assert state.user == USER
    assert store.timed_out is True


@pytest.mark.asyncio
async def test_rejected_session_signs_out():
    cache = cache_with_session()
    store = IdentityStore(FakeProvider(error=SessionInvalid("expired")), cache)
    state = await store.initialize()
    assert state.status == AuthStatus.unauthenticated
    assert cache.get_session() is None


# ---------------------------------------------------------------------------
# Provider events
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_initial_session_event_ignored():
    store = IdentityStore(FakeProvider(), MemorySessionCache())
    store.handle_auth_change(AuthEvent.INITIAL_SESSION, SESSION)
    assert store.status == AuthStatus.loading


@pytest.mark.asyncio
async def test_token_refresh_is_silent():
    cache = cache_with_session()
    store = IdentityStore(FakeProvider(), cache)
    await store.initialize()
    await settle()

    seen = []
    store.subscribe(lambda state: seen.append(state))
    store.handle_auth_change("TOKEN_REFRESHED", Session(access_token="token-2", user=USER))

    assert seen == []
    assert store.state.access_token == "token-2"
    assert cache.get_session().access_token == "token-2"


@pytest.mark.asyncio
async def test_signed_out_event_only_when_authenticated():
    store = IdentityStore(FakeProvider(), MemorySessionCache())
    await store.initialize()
    seen = []
    store.subscribe(lambda state: seen.append(state))
    store.handle_auth_change(AuthEvent.SIGNED_OUT)
    assert seen == []

    store.handle_auth_change(AuthEvent.SIGNED_IN, SESSION)
    assert store.status == AuthStatus.authenticated
    store.handle_auth_change(AuthEvent.SIGNED_OUT)
    assert store.status == AuthStatus.unauthenticated
    assert [s.status for s in seen] == [AuthStatus.authenticated, AuthStatus.unauthenticated]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    store = IdentityStore(FakeProvider(), MemorySessionCache())
    seen = []

    def broken(state):
        raise RuntimeError("boom")

    store.subscribe(broken)
    unsubscribe = store.subscribe(lambda state: seen.append(state.status))
    store.handle_auth_change(AuthEvent.SIGNED_IN, SESSION)
    assert seen == [AuthStatus.authenticated]

    unsubscribe()
    store.handle_auth_change(AuthEvent.SIGNED_OUT)
    assert seen == [AuthStatus.authenticated]


# ---------------------------------------------------------------------------
# Sign-out
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sign_out_purges_user_cache_and_tears_down_realtime():
    events: list[str] = []
    cache = cache_with_session()
    cache.set("notifications:u-1", ["n1"])
    cache.set("welcome_shown:u-1", True)
    cache.set("theme", "dark")
    provider = FakeProvider()
    store = IdentityStore(provider, cache, realtime=FakeRealtime(events))
    await store.initialize()
    await settle()

    await store.sign_out()

    assert store.status == AuthStatus.unauthenticated
    assert events == ["realtime.disconnect"]
    assert provider.signed_out == ["token-1"]
    assert cache.get_session() is None
    assert cache.get("profile:u-1") is None
    assert cache.get("notifications:u-1") is None
    assert cache.get("welcome_shown:u-1") is None
    assert cache.get("theme") == "dark"


@pytest.mark.asyncio
async def test_sign_out_completes_locally_when_provider_fails():
    provider = FakeProvider()
    provider.sign_out_error = httpx.ConnectError("offline")
    store = IdentityStore(provider, cache_with_session())
    await store.initialize()

    with pytest.raises(httpx.ConnectError):
        await store.sign_out()
    assert store.status == AuthStatus.unauthenticated


# ---------------------------------------------------------------------------
# Visibility and page restore
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_visibility_refresh_is_debounced():
    clock = FakeClock()
    provider = FakeProvider()
    store = IdentityStore(provider, cache_with_session(), clock=clock)
    await store.initialize()
    assert provider.get_user_calls == 1

    clock.now += 1
    assert await store.on_visible() is False
    assert provider.get_user_calls == 1

    clock.now += VISIBILITY_DEBOUNCE_SECONDS
    assert await store.on_visible() is True
    assert provider.get_user_calls == 2


@pytest.mark.asyncio
async def test_restored_page_honours_server_sign_out():
    clock = FakeClock()
    provider = FakeProvider()
    store = IdentityStore(provider, cache_with_session(), clock=clock)
    await store.initialize()

    clock.now += VISIBILITY_DEBOUNCE_SECONDS + 1
    assert await store.on_page_restored(persisted=False) is False

    provider.error = SessionInvalid("signed out elsewhere")
    assert await store.on_page_restored(persisted=True) is True
    assert store.status == AuthStatus.unauthenticated


# ---------------------------------------------------------------------------
# HTTP provider against the API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_http_provider_round_trip(client):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "alice@example.com", "password": "password123", "full_name": "Alice Owner"},
    )
    token = resp.json()["access_token"]

    provider = HttpIdentityProvider("http://test", client=client)
    user = await provider.get_user(token)
    assert user["email"] == "alice@example.com"
    profile = await provider.get_profile(token)
    assert profile["full_name"] == "Alice Owner"

    await provider.sign_out(token)
    with pytest.raises(SessionInvalid):
        await provider.get_user(token)


@pytest.mark.asyncio
async def test_refresh_user_picks_up_server_changes():
    provider = FakeProvider()
    store = IdentityStore(provider, cache_with_session())
    await store.initialize()
    await settle()

    provider.user = {**USER, "email": "alice@new.example.com"}
    provider.profile = {"id": "u-1", "full_name": "Alice Renamed"}
    await store.refresh_user()
    await settle()

    assert provider.get_user_calls == 2
    assert store.state.user["email"] == "alice@new.example.com"
    assert store.state.user["full_name"] == "Alice Renamed"


@pytest.mark.asyncio
async def test_refresh_user_is_noop_when_signed_out():
    provider = FakeProvider()
    store = IdentityStore(provider, MemorySessionCache())
    await store.initialize()
    state = await store.refresh_user()
    assert state.status == AuthStatus.unauthenticated
    assert provider.get_user_calls == 0


@pytest.mark.asyncio
async def test_failed_reverification_keeps_session():
    provider = FakeProvider()
    store = IdentityStore(provider, cache_with_session())
    await store.initialize()
    await settle()

    provider.error = RuntimeError("identity backend exploded")
    state = await store.refresh_user()
    assert state.status == AuthStatus.authenticated
    assert state.user["email"] == "alice@example.com"
