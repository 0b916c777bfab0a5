"""Tests for client session lifecycle."""

from __future__ import annotations

import pytest

from auth import ProfileStore
from cart import STORAGE_KEY
from sessions import SessionRegistry, SessionStorage

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(store, provider, profiles, clock) -> SessionRegistry:
    return SessionRegistry(store, provider, profiles, idle_timeout=600, max_sessions=100, clock=clock)


class TestSessionStorage:
    async def test_get_set_remove(self) -> None:
        storage = SessionStorage()
        storage.set("k", "v")

        assert storage.get("k") == "v"
        storage.remove("k")
        storage.remove("k")
        assert storage.get("k") is None


class TestSessionRegistry:
    async def test_get_starts_coordinator_once(self, registry) -> None:
        first = await registry.get("s1")
        second = await registry.get("s1")

        assert first is second
        assert first.auth.started
        assert first.auth.state.loading is False

    async def test_end_drops_cart(self, registry, make_product) -> None:
        session = await registry.get("s1")
        session.cart.add(make_product("p1"), 3)

        registry.end("s1")
        fresh = await registry.get("s1")

        assert fresh.cart.item_count == 0
        assert STORAGE_KEY not in fresh.storage
        assert not session.auth.started

    async def test_end_signs_out(self, registry, provider, profiles) -> None:
        await registry.get("s1")
        identity = await provider.create_identity("s1", "ada@example.com", "secret-pw")

        registry.end("s1")

        assert provider.current_identity("s1") is None
        assert profiles.get(identity.uid) is None
        assert (await registry.get("s1")).auth.user is None

    async def test_sessions_do_not_share_carts(self, registry, make_product) -> None:
        (await registry.get("s1")).cart.add(make_product("p1"), 1)

        assert (await registry.get("s2")).cart.item_count == 0

    async def test_close_all(self, registry, provider, profiles) -> None:
        session = await registry.get("s1")
        await provider.create_identity("s1", "ada@example.com", "secret-pw")
        registry.close_all()

        assert "s1" not in registry
        assert not session.auth.started
        assert len(profiles) == 0

    async def test_rejects_unusable_limits(self, store, provider, profiles) -> None:
        with pytest.raises(ValueError):
            SessionRegistry(store, provider, profiles, idle_timeout=0)
        with pytest.raises(ValueError):
            SessionRegistry(store, provider, profiles, max_sessions=0)


class TestSessionEviction:
    async def test_idle_sessions_are_ended(self, registry, clock, provider, make_product) -> None:
        idle = await registry.get("idle")
        idle.cart.add(make_product("p1"), 2)
        await provider.create_identity("idle", "ada@example.com", "secret-pw")

        clock.now += 600
        await registry.get("active")

        assert "idle" not in registry
        assert not idle.auth.started
        assert provider.current_identity("idle") is None
        assert (await registry.get("idle")).cart.item_count == 0

    async def test_use_keeps_a_session_alive(self, registry, clock, make_product) -> None:
        session = await registry.get("s1")
        session.cart.add(make_product("p1"), 1)

        for _ in range(3):
            clock.now += 500
            assert await registry.get("s1") is session

        assert session.cart.item_count == 1

    async def test_many_session_ids_stay_bounded(self, registry) -> None:
        for n in range(200):
            await registry.get(f"visitor-{n}")

        assert len(registry) == 100
        assert "visitor-0" not in registry
        assert "visitor-199" in registry

    async def test_least_recently_used_goes_first(self, store, provider, profiles, clock) -> None:
        registry = SessionRegistry(store, provider, profiles, max_sessions=2, clock=clock)
        await registry.get("a")
        await registry.get("b")
        await registry.get("a")

        await registry.get("c")

        assert "a" in registry
        assert "b" not in registry
        assert "c" in registry
