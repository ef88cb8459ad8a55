"""Identity reconciliation exceptions.

Every exception carries an ``error_code`` that the login callback turns into
``/login?error={code}``. Codes are fixed: ``auth_failed``, ``no_account``,
``api_unavailable``.
"""
from __future__ import annotations
from typing import Any, Optional

AUTH_FAILED = "auth_failed"
NO_ACCOUNT = "no_account"
API_UNAVAILABLE = "api_unavailable"

ERROR_CODES = frozenset({AUTH_FAILED, NO_ACCOUNT, API_UNAVAILABLE})


class IdentityError(Exception):
    """Base exception for all login reconciliation failures."""
    error_code: str = AUTH_FAILED


class MissingIdentityAttribute(IdentityError):
    """Provider profile lacks an attribute required for reconciliation."""

    def __init__(self, attribute: str = "email"):
        self.attribute = attribute
        super().__init__(f"Identity profile has no usable '{attribute}'")


class ProviderAuthError(IdentityError):
    """Identity provider reported a failed handshake."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Provider authentication failed: {reason}")


class UserCreationFailed(IdentityError):
    """Local user store rejected creation of a new account."""

    def __init__(self, email: str, original_error: Optional[Exception] = None):
        self.email = email
        self.original_error = original_error
        super().__init__(f"Could not create local user for {email}")


class LocalStoreUnavailable(IdentityError):
    """Local user store could not be read during reconciliation."""

    def __init__(self, email: str, original_error: Optional[Exception] = None):
        self.email = email
        self.original_error = original_error
        super().__init__(f"Could not read local user for {email}")


class NoAccount(IdentityError):
    """Directory has no record and pre-registration is required."""
    error_code = NO_ACCOUNT

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"No directory account registered for {email}")


class DirectoryUnreachable(IdentityError):
    """Directory call failed (transport, timeout, or unusable response)."""
    error_code = API_UNAVAILABLE


class DirectoryAPIError(DirectoryUnreachable):
    """HTTP error status from the directory endpoint.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: Endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class DirectoryResponseError(DirectoryUnreachable):
    """Directory answered, but with GraphQL errors or a malformed payload.

    Attributes:
        errors: GraphQL ``errors`` list (empty for shape errors)
        code: First ``extensions.code`` found in ``errors``, if any
    """

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        self.errors = errors or []
        self.code = _first_error_code(self.errors)
        super().__init__(message)


def _first_error_code(errors: list[dict[str, Any]]) -> Optional[str]:
    for err in errors:
        if not isinstance(err, dict):
            continue
        extensions = err.get("extensions")
        if isinstance(extensions, dict) and extensions.get("code"):
            return str(extensions["code"])
    return None
