"""Profile cache and per-session auth coordination.

The coordinator keeps ``AuthState`` (user + loading) in sync with the
identity provider: every auth-state notification loads the signed-in user's
profile from the "users" collection, creating a minimal one on first sign-in.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import structlog

from database import DocumentStore
from errors import BackendError, NotAuthenticatedError, ProfileNotFoundError, StorefrontError
from identity import Identity, IdentityProvider, Unsubscribe
from schemas import AuthState, SignupRequest, UserProfile

logger = structlog.get_logger(__name__)

USERS = "users"

StateListener = Callable[[AuthState], None]


class ProfileStore:
    """Locally cached profiles keyed by identity id."""

    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}

    def get(self, uid: str) -> Optional[UserProfile]:
        return self._profiles.get(uid)

    def put(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile

    def discard(self, uid: str) -> None:
        self._profiles.pop(uid, None)

    def clear(self) -> None:
        self._profiles.clear()

    def __len__(self) -> int:
        return len(self._profiles)


# Reducers. Each returns a new state; AuthState is never mutated in place.

def set_user(state: AuthState, user: Optional[UserProfile]) -> AuthState:
    return state.model_copy(update={"user": user, "loading": False})


def clear_user(state: AuthState) -> AuthState:
    return state.model_copy(update={"user": None})


def set_loading(state: AuthState, loading: bool) -> AuthState:
    return state.model_copy(update={"loading": loading})


class AuthCoordinator:
    def __init__(self, session_id: str, provider: IdentityProvider, store: DocumentStore, profiles: ProfileStore):
        self.session_id = session_id
        self._provider = provider
        self._store = store
        self._profiles = profiles
        self._state = AuthState()
        self._listeners: List[StateListener] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> Optional[UserProfile]:
        return self._state.user

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    def require_user(self) -> UserProfile:
        """The published user, or the reason there is none.

        A signed-in session whose own profile fetch failed falls back to the
        profile another session cached for the same identity.
        """
        if self._state.user is not None:
            return self._state.user
        identity = self._provider.current_identity(self.session_id)
        if identity is None:
            raise NotAuthenticatedError()
        cached = self._profiles.get(identity.uid)
        if cached is None:
            raise ProfileNotFoundError(identity.uid)
        return cached

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    async def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = await self._provider.on_auth_state_changed(self.session_id, self._on_auth_state_changed)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_auth_state_changed(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self._forget_user()
            self._publish(set_loading(clear_user(self._state), False))
            return

        self._publish(set_loading(self._state, True))
        try:
            profile = await self.load_profile(identity)
        except StorefrontError:
            self._publish(set_loading(self._state, False))
            raise
        self._publish(set_user(self._state, profile))

    def _forget_user(self) -> None:
        if self._state.user is not None:
            self._profiles.discard(self._state.user.id)

    async def load_profile(self, identity: Identity) -> UserProfile:
        """Fetch the profile for ``identity``, persisting a minimal one when none exists."""
        doc = await self._store.get_document(USERS, identity.uid)
        if doc is not None:
            try:
                profile = UserProfile.from_document(identity.uid, doc)
            except ValueError as e:
                logger.error("profile_malformed", uid=identity.uid, error=str(e))
                raise BackendError("User profile could not be read", details={"uid": identity.uid}) from e
        else:
            profile = UserProfile(
                id=identity.uid,
                name=identity.display_name or "",
                email=identity.email or "",
            )
            await self._store.set_document(USERS, profile.id, profile.to_document())
            logger.info("profile_synthesized", uid=profile.id)
        self._profiles.put(profile)
        return profile

    async def signup(self, form: SignupRequest) -> UserProfile:
        identity = await self._provider.create_identity(
            self.session_id, form.email, form.password, display_name=form.name
        )
        profile = UserProfile(
            id=identity.uid,
            name=form.name,
            username=form.username,
            email=identity.email,
            age=form.age,
            address=form.address,
            city=form.city,
            state=form.state,
            zipcode=form.zipcode,
        )
        try:
            await self._store.set_document(USERS, profile.id, profile.to_document())
        except BackendError as e:
            raise BackendError("Registration failed", details=e.details) from e
        self._profiles.put(profile)
        self._publish(set_user(self._state, profile))
        logger.info("user_registered", uid=profile.id)
        return profile

    async def login(self, email: str, password: str) -> Identity:
        return await self._provider.sign_in(self.session_id, email, password)

    async def logout(self) -> None:
        await self._provider.sign_out(self.session_id)
        self._forget_user()
        self._publish(clear_user(self._state))
