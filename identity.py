"""Email/password identity provider.

Identities live in the "identities" collection. Sign-in state is tracked per
client session, and listeners registered with ``on_auth_state_changed`` are
awaited with the session's current identity (or None) on every change.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from database import DocumentStore
from errors import DuplicateDocumentError, EmailInUseError, InvalidCredentialsError, WeakPasswordError

logger = structlog.get_logger(__name__)

IDENTITIES = "identities"
MIN_PASSWORD_LENGTH = 6

AuthListener = Callable[[Optional["Identity"]], Awaitable[None]]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str
    display_name: str = ""


def hash_password(password: str, iterations: int, salt: Optional[bytes] = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations))
    return hmac.compare_digest(digest.hex(), digest_hex)


class IdentityProvider:
    def __init__(self, store: DocumentStore, hash_iterations: int = 200_000):
        self._store = store
        self._hash_iterations = hash_iterations
        self._current: Dict[str, Identity] = {}
        self._listeners: Dict[str, List[AuthListener]] = {}
        self._email_index_ready = False

    def current_identity(self, session_id: str) -> Optional[Identity]:
        return self._current.get(session_id)

    async def on_auth_state_changed(self, session_id: str, callback: AuthListener) -> Unsubscribe:
        """Register ``callback`` for ``session_id`` and deliver the current identity to it.

        Returns a handle that removes the registration. Calling it more than
        once is harmless.
        """
        listeners = self._listeners.setdefault(session_id, [])
        listeners.append(callback)

        def unsubscribe() -> None:
            registered = self._listeners.get(session_id, [])
            if callback in registered:
                registered.remove(callback)
            if not registered:
                self._listeners.pop(session_id, None)

        try:
            await callback(self._current.get(session_id))
        except Exception:
            unsubscribe()
            raise
        return unsubscribe

    async def _notify(self, session_id: str) -> None:
        identity = self._current.get(session_id)
        logger.debug("auth_state_changed", session_id=session_id, uid=identity.uid if identity else None)
        # copy: a listener may unsubscribe while being notified
        for callback in list(self._listeners.get(session_id, [])):
            await callback(identity)

    async def _ensure_email_index(self) -> None:
        if not self._email_index_ready:
            await self._store.ensure_unique(IDENTITIES, "email")
            self._email_index_ready = True

    async def create_identity(self, session_id: str, email: str, password: str, display_name: str = "") -> Identity:
        email = email.strip().lower()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise WeakPasswordError(MIN_PASSWORD_LENGTH)
        await self._ensure_email_index()
        existing = await self._store.get_documents(IDENTITIES, {"email": email}, limit=1)
        if existing:
            raise EmailInUseError(email)

        identity = Identity(uid=uuid.uuid4().hex, email=email, display_name=display_name)
        try:
            await self._store.set_document(IDENTITIES, identity.uid, {
                "email": email,
                "displayName": display_name,
                "passwordHash": hash_password(password, self._hash_iterations),
                "createdAt": datetime.now(timezone.utc),
            })
        except DuplicateDocumentError as e:
            # a concurrent signup claimed the address after the check above
            raise EmailInUseError(email) from e
        logger.info("identity_created", uid=identity.uid)

        self._current[session_id] = identity
        await self._notify(session_id)
        return identity

    async def sign_in(self, session_id: str, email: str, password: str) -> Identity:
        email = email.strip().lower()
        rows = await self._store.get_documents(IDENTITIES, {"email": email}, limit=1)
        if not rows or not verify_password(password, rows[0].get("passwordHash", "")):
            logger.info("sign_in_rejected", session_id=session_id)
            raise InvalidCredentialsError()

        row = rows[0]
        identity = Identity(uid=row["id"], email=row["email"], display_name=row.get("displayName") or "")
        self._current[session_id] = identity
        logger.info("signed_in", session_id=session_id, uid=identity.uid)
        await self._notify(session_id)
        return identity

    async def sign_out(self, session_id: str) -> None:
        if self._current.pop(session_id, None) is None:
            return
        logger.info("signed_out", session_id=session_id)
        await self._notify(session_id)

    def forget_session(self, session_id: str) -> None:
        """Drop sign-in state and listeners for a session that has ended."""
        self._current.pop(session_id, None)
        self._listeners.pop(session_id, None)
