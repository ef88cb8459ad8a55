"""Login sequencing independent of the web framework.

``AuthGateway`` drives one login attempt through reconciliation and session
binding and decides where the browser goes next. The Flask blueprint in
``sso_gateway.api.auth`` owns the OAuth handshake and turns the gateway's
answers into responses.

Login attempt states:
    started -> profile_verified -> reconciled -> session_bound -> redirected
    started -> failed -> error_redirected
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, MutableMapping, Optional
from urllib.parse import urlencode

from .audit import NullAuditLogger
from .directory import DirectoryStatus
from .exceptions import IdentityError, ProviderAuthError
from .models import IdentityProfile, LocalUser
from .reconciliation import ReconciliationEngine
from .session import SessionManager

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    STARTED = "started"
    PROFILE_VERIFIED = "profile_verified"
    RECONCILED = "reconciled"
    SESSION_BOUND = "session_bound"
    REDIRECTED = "redirected"
    FAILED = "failed"
    ERROR_REDIRECTED = "error_redirected"


TERMINAL_STATES = frozenset({LoginState.REDIRECTED, LoginState.ERROR_REDIRECTED})


@dataclass
class LoginAttempt:
    """Trace of one callback: visited states, outcome, and redirect target."""
    states: list[LoginState] = field(default_factory=lambda: [LoginState.STARTED])
    location: str = ""
    error_code: Optional[str] = None
    user: Optional[LocalUser] = None

    @property
    def state(self) -> LoginState:
        return self.states[-1]

    @property
    def succeeded(self) -> bool:
        return self.state is LoginState.REDIRECTED

    def advance(self, state: LoginState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Login attempt already finished in state {self.state.value}")
        self.states.append(state)


class AuthGateway:
    """Sequence reconciliation, session binding, and redirects for federated login."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        sessions: SessionManager,
        directory,
        *,
        audit=None,
        home_url: str = "/",
        login_url: str = "/login",
    ):
        self.engine = engine
        self.sessions = sessions
        self.directory = directory
        self.audit = audit or NullAuditLogger()
        self.home_url = home_url
        self.login_url = login_url

    def error_location(self, code: str) -> str:
        return f"{self.login_url}?{urlencode({'error': code})}"

    def complete_login(
        self,
        session: MutableMapping,
        profile: Optional[IdentityProfile] = None,
        provider_error: Optional[str] = None,
    ) -> LoginAttempt:
        """Finish a login from the provider callback.

        Args:
            session: Caller's session mapping
            profile: Verified provider profile (None when the handshake failed)
            provider_error: Failure reported by the provider, if any

        Returns:
            Finished LoginAttempt; ``location`` is where to redirect
        """
        attempt = LoginAttempt()
        provider = profile.provider if profile is not None else ""
        email = profile.email if profile is not None else ""
        try:
            if provider_error or profile is None:
                raise ProviderAuthError(provider_error or "no profile returned")
            attempt.advance(LoginState.PROFILE_VERIFIED)

            user = self.engine.reconcile(profile)
            attempt.user = user
            attempt.advance(LoginState.RECONCILED)

            self.sessions.bind(session, user)
            attempt.advance(LoginState.SESSION_BOUND)
        except IdentityError as exc:
            logger.warning("Authentication error (%s): %s", exc.error_code, exc)
            return self._fail(attempt, exc.error_code, email, provider)

        logger.info("Authentication successful for user: %s", user.email)
        self.audit.safe_log_event("login_success", user.email, provider=provider, user_id=user.id)
        attempt.location = self.home_url
        attempt.advance(LoginState.REDIRECTED)
        return attempt

    def _fail(self, attempt: LoginAttempt, code: str, email: str, provider: str) -> LoginAttempt:
        attempt.error_code = code
        attempt.user = None
        attempt.advance(LoginState.FAILED)
        self.audit.safe_log_event(
            "login_failure",
            email,
            provider=provider or "unknown",
            success=False,
            details={"error_code": code},
        )
        attempt.location = self.error_location(code)
        attempt.advance(LoginState.ERROR_REDIRECTED)
        return attempt

    def logout(self, session: MutableMapping) -> str:
        """Clear the session; always succeeds and returns the home location."""
        user_id = session.get(self.sessions.key)
        self.sessions.clear(session)
        if user_id is not None:
            self.audit.safe_log_event("logout", "", user_id=user_id)
        return self.home_url

    def whoami(self, session: MutableMapping, legacy: bool = False) -> dict[str, Any]:
        """Describe the session's user; degrades to unauthenticated on any failure.

        ``legacy`` serializes the user with snake_case keys (``sso_type``).
        """
        try:
            user = self.sessions.resolve(session)
        except Exception as exc:
            logger.warning("Could not resolve session user: %s", exc)
            user = None
        if user is None:
            return {"isAuthenticated": False, "user": None}
        return {"isAuthenticated": True, "user": user.legacy_dict() if legacy else user.public_dict()}

    def validate(self, session: MutableMapping) -> tuple[int, dict[str, Any]]:
        """Re-check the session's user against the directory.

        Returns:
            (status_code, body); 401 only when there is no session user
        """
        user = self.sessions.resolve(session)
        if user is None:
            return 401, {"error": "Authentication required"}
        return self.validate_user(user)

    def validate_user(self, user: LocalUser) -> tuple[int, dict[str, Any]]:
        """Directory verification for an already-resolved user."""
        result = self.directory.lookup_by_email(user.email)
        if result.status is DirectoryStatus.FOUND and result.record is not None:
            return 200, {"verified": True, "user": result.record.as_dict()}
        if result.status is DirectoryStatus.UNAVAILABLE:
            return 200, {
                "verified": False,
                "reason": "directory_unavailable",
                "message": "Could not reach the user directory",
            }
        return 200, {
            "verified": False,
            "reason": "not_found",
            "message": "User not found in directory",
        }
