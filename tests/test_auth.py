"""Unit tests for AuthCoordinator profile synchronization."""

from __future__ import annotations

import pytest

from auth import USERS, AuthCoordinator, ProfileStore, clear_user, set_loading, set_user
from errors import BackendError, EmailInUseError, InvalidCredentialsError, NotAuthenticatedError, ProfileNotFoundError
from schemas import AuthState, UserProfile

pytestmark = pytest.mark.anyio


class TestReducers:
    async def test_set_user_finishes_loading(self) -> None:
        profile = UserProfile(id="u1", name="Ada")
        state = set_user(AuthState(loading=True), profile)

        assert state.user == profile
        assert state.loading is False

    async def test_clear_user_keeps_loading(self) -> None:
        state = clear_user(AuthState(user=UserProfile(id="u1"), loading=True))

        assert state.user is None
        assert state.loading is True

    async def test_reducers_do_not_mutate(self) -> None:
        original = AuthState()
        set_loading(original, False)

        assert original.loading is True


class TestStart:
    async def test_signed_out_start(self, coordinator) -> None:
        assert coordinator.state.loading is True

        await coordinator.start()

        assert coordinator.started
        assert coordinator.state.user is None
        assert coordinator.state.loading is False

    async def test_start_twice_registers_once(self, coordinator, provider) -> None:
        states = []
        coordinator.subscribe(states.append)
        await coordinator.start()
        await coordinator.start()

        assert len(states) == 1

    async def test_stop_releases_subscription(self, coordinator, provider) -> None:
        await coordinator.start()
        coordinator.stop()
        coordinator.stop()
        await provider.create_identity("session-1", "ada@example.com", "secret-pw")

        assert coordinator.user is None
        assert not coordinator.started


class TestProfileSync:
    async def test_first_sign_in_synthesizes_profile(self, coordinator, provider, store, profiles) -> None:
        await coordinator.start()
        identity = await provider.create_identity("session-1", "ada@example.com", "secret-pw", display_name="Ada")

        user = coordinator.user
        assert user is not None
        assert user.id == identity.uid
        assert (user.name, user.email) == ("Ada", "ada@example.com")
        assert (user.username, user.address, user.city, user.state, user.zipcode, user.age) == ("", "", "", "", "", 0)
        stored = await store.get_document(USERS, identity.uid)
        assert stored["email"] == "ada@example.com"
        assert profiles.get(identity.uid) == user

    async def test_profile_persisted_before_publish(self, coordinator, provider, store) -> None:
        persisted_at_publish = []

        def listener(state) -> None:
            if state.user is not None:
                persisted_at_publish.append(state.user.id in store._coll(USERS))

        coordinator.subscribe(listener)
        await coordinator.start()
        await provider.create_identity("session-1", "ada@example.com", "secret-pw")

        assert persisted_at_publish == [True]

    async def test_loading_toggles_around_fetch(self, coordinator, provider) -> None:
        states = []
        coordinator.subscribe(states.append)
        await coordinator.start()
        await provider.create_identity("session-1", "ada@example.com", "secret-pw")

        assert [s.loading for s in states] == [False, True, False]

    async def test_existing_profile_is_loaded(self, coordinator, provider, store) -> None:
        identity = await provider.create_identity("other", "ada@example.com", "secret-pw")
        await store.set_document(USERS, identity.uid, {
            "name": "Ada Lovelace",
            "username": "ada",
            "email": "ada@example.com",
            "age": 36,
            "address": "12 Analytical Row",
            "city": "London",
            "state": "LDN",
            "zipcode": "10001",
        })

        await coordinator.start()
        await coordinator.login("ada@example.com", "secret-pw")

        assert coordinator.user.username == "ada"
        assert coordinator.user.id == identity.uid
        assert coordinator.user.zipcode == "10001"

    async def test_sign_out_clears_user_and_cached_profile(self, coordinator, provider, profiles) -> None:
        await coordinator.start()
        identity = await provider.create_identity("session-1", "ada@example.com", "secret-pw")
        assert profiles.get(identity.uid) is not None

        await coordinator.logout()

        assert coordinator.user is None
        assert coordinator.state.loading is False
        assert profiles.get(identity.uid) is None
        assert len(profiles) == 0

    async def test_provider_sign_out_drops_cached_profile(self, coordinator, provider, profiles) -> None:
        await coordinator.start()
        identity = await provider.create_identity("session-1", "ada@example.com", "secret-pw")

        await provider.sign_out("session-1")

        assert coordinator.user is None
        assert profiles.get(identity.uid) is None

    async def test_malformed_stored_profile(self, coordinator, provider, store) -> None:
        identity = await provider.create_identity("other", "ada@example.com", "secret-pw")
        await store.set_document(USERS, identity.uid, {"name": "Ada", "age": "thirty-six"})
        await coordinator.start()

        with pytest.raises(BackendError) as exc:
            await coordinator.login("ada@example.com", "secret-pw")

        assert exc.value.message == "User profile could not be read"
        assert coordinator.user is None
        assert coordinator.state.loading is False

    async def test_profile_fetch_failure_propagates(self, provider, failing_store_factory) -> None:
        store = failing_store_factory(USERS)
        failing_provider = type(provider)(store, hash_iterations=1)
        coordinator = AuthCoordinator("s1", failing_provider, store, ProfileStore())
        await coordinator.start()

        with pytest.raises(BackendError):
            await failing_provider.create_identity("s1", "ada@example.com", "secret-pw")
        assert coordinator.user is None
        assert coordinator.state.loading is False


class TestOperations:
    async def test_signup_writes_full_profile(self, coordinator, store, signup_form) -> None:
        await coordinator.start()

        profile = await coordinator.signup(signup_form)

        assert coordinator.user == profile
        stored = await store.get_document(USERS, profile.id)
        assert stored["username"] == "ada"
        assert stored["displayName"] == "Ada Lovelace"
        assert stored["zipcode"] == "10001"
        assert "password" not in stored

    async def test_signup_duplicate_email(self, coordinator, signup_form) -> None:
        await coordinator.start()
        await coordinator.signup(signup_form)
        await coordinator.logout()

        with pytest.raises(EmailInUseError):
            await coordinator.signup(signup_form)
        assert coordinator.user is None

    async def test_login_bad_credentials(self, coordinator, signup_form) -> None:
        await coordinator.start()
        await coordinator.signup(signup_form)
        await coordinator.logout()

        with pytest.raises(InvalidCredentialsError):
            await coordinator.login("ada@example.com", "wrong-password")
        assert coordinator.user is None

    async def test_login_syncs_profile_through_subscription(self, coordinator, signup_form) -> None:
        await coordinator.start()
        registered = await coordinator.signup(signup_form)
        await coordinator.logout()

        await coordinator.login("ada@example.com", "secret-pw")

        assert coordinator.user == registered


class TestRequireUser:
    async def test_signed_out(self, coordinator) -> None:
        await coordinator.start()

        with pytest.raises(NotAuthenticatedError):
            coordinator.require_user()

    async def test_signed_in_with_profile(self, coordinator, signup_form) -> None:
        await coordinator.start()
        profile = await coordinator.signup(signup_form)

        assert coordinator.require_user() == profile

    async def test_signed_in_without_profile(self, provider, failing_store_factory) -> None:
        store = failing_store_factory(USERS)
        failing_provider = type(provider)(store, hash_iterations=1)
        coordinator = AuthCoordinator("s1", failing_provider, store, ProfileStore())
        await coordinator.start()
        with pytest.raises(BackendError):
            await failing_provider.create_identity("s1", "ada@example.com", "secret-pw")

        with pytest.raises(ProfileNotFoundError):
            coordinator.require_user()

    async def test_falls_back_to_profile_cached_by_another_session(self, provider, failing_store_factory) -> None:
        store = failing_store_factory(USERS)
        failing_provider = type(provider)(store, hash_iterations=1)
        identity = await failing_provider.create_identity("elsewhere", "ada@example.com", "secret-pw")
        profiles = ProfileStore()
        profiles.put(UserProfile(id=identity.uid, name="Ada", email="ada@example.com"))
        coordinator = AuthCoordinator("s1", failing_provider, store, profiles)
        await coordinator.start()

        with pytest.raises(BackendError):
            await coordinator.login("ada@example.com", "secret-pw")

        assert coordinator.user is None
        assert coordinator.require_user().name == "Ada"
