"""Exception hierarchy for the storefront.

- StorefrontError: base for every failure surfaced to a client
- AuthenticationError: bad credentials, email already in use, weak password
- ProfileNotFoundError: signed in but no profile record
- BackendError: document store or identity provider call failed
- ValidationFailure: rejected before any backend call (empty cart, bad image URL)

Messages are safe to show to the user. Technical details go in ``details``
and are only logged.
"""

from __future__ import annotations

from typing import Any


class StorefrontError(Exception):
    """Base exception for the storefront.

    Args:
        message: Human-readable message returned to the client.
        details: Optional context for the logs, never returned to the client.
    """

    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(StorefrontError):
    status_code = 401


class InvalidCredentialsError(AuthenticationError):
    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


class EmailInUseError(AuthenticationError):
    status_code = 409

    def __init__(self, email: str) -> None:
        super().__init__("Email address is already in use", details={"email": email})
        self.email = email


class WeakPasswordError(AuthenticationError):
    status_code = 400

    def __init__(self, min_length: int) -> None:
        super().__init__(f"Password should be at least {min_length} characters")
        self.min_length = min_length


class NotAuthenticatedError(AuthenticationError):
    def __init__(self, message: str = "Please log in to continue") -> None:
        super().__init__(message)


class ProfileNotFoundError(StorefrontError):
    status_code = 404

    def __init__(self, uid: str) -> None:
        super().__init__(
            "User profile not found. Please contact support.", details={"uid": uid}
        )
        self.uid = uid


class BackendError(StorefrontError):
    """A document store or identity provider call was rejected."""

    status_code = 502


class DuplicateDocumentError(BackendError):
    """A write would give two documents the same value for a unique field."""

    status_code = 409

    def __init__(self, collection: str, field: str) -> None:
        super().__init__(
            "Document already exists", details={"collection": collection, "field": field}
        )
        self.collection = collection
        self.field = field


class ValidationFailure(StorefrontError):
    status_code = 400


class EmptyCartError(ValidationFailure):
    def __init__(self) -> None:
        super().__init__("Your cart is empty!")


class InvalidImageUrlError(ValidationFailure):
    def __init__(self, url: str) -> None:
        super().__init__(
            "Image must be a valid URL starting with http:// or https://",
            details={"image": url},
        )
        self.url = url
