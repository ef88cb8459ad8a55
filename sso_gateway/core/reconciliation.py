"""Identity reconciliation: map one verified provider profile to one local user.

The local store is authoritative. The directory is consulted once per login
for enrichment (username, cross-reference id) and never decides which local
account the caller is.

Flow:
    1. reject profiles without an email
    2. directory lookup (single attempt)
    3. directory registration when no record was found (one retry on failure)
    4. local lookup by email            ┐
    5. existing user -> returned as-is  ├─ serialized per email
    6. otherwise create the local user  ┘
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from .audit import NullAuditLogger
from .directory import DirectoryResult, DirectoryStatus
from .exceptions import (
    DirectoryUnreachable,
    LocalStoreUnavailable,
    MissingIdentityAttribute,
    NoAccount,
    UserCreationFailed,
)
from .models import IdentityProfile, LocalUser
from .store import DuplicateEmailError, LocalUserStore

logger = logging.getLogger(__name__)

# Attempts for the opportunistic directory registration (initial + one retry)
DIRECTORY_CREATE_ATTEMPTS = 2


class EmailLockRegistry:
    """Hands out one lock per email, dropping it once no request holds it.

    Requests for different emails never share a lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # email -> [lock, holders]

    @contextmanager
    def hold(self, email: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(email, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(email, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class Reconciliation:
    """Everything one reconciliation learned, for callers that want more than the user."""
    user: LocalUser
    created: bool = False
    provider_mismatch: bool = False
    directory_lookup: Optional[DirectoryResult] = None
    directory_create: Optional[DirectoryResult] = None

    @property
    def directory_user_id(self) -> Optional[str]:
        return _directory_user_id(self.directory_lookup, self.directory_create)


def _directory_user_id(*results: Optional[DirectoryResult]) -> Optional[str]:
    for result in results:
        if result is not None and result.record is not None:
            return result.record.id
    return None


class ReconciliationEngine:
    """Resolve or create the canonical local user for a provider profile."""

    def __init__(
        self,
        store: LocalUserStore,
        directory,
        *,
        require_directory_account: bool = False,
        audit=None,
        locks: Optional[EmailLockRegistry] = None,
    ):
        """Initialize the engine.

        Args:
            store: Authoritative local user store
            directory: DirectoryService (or any object with the same methods)
            require_directory_account: Refuse to create local users the
                directory does not already know
            audit: AuditLogger for user_created/provider_mismatch events
            locks: Per-email lock registry (shared between engines in tests)
        """
        self.store = store
        self.directory = directory
        self.require_directory_account = require_directory_account
        self.audit = audit or NullAuditLogger()
        self.locks = locks if locks is not None else EmailLockRegistry()

    def reconcile(self, profile: IdentityProfile) -> LocalUser:
        """Return the local user for ``profile``, creating it on first login.

        Raises:
            MissingIdentityAttribute: Profile has no email
            LocalStoreUnavailable: Local store could not be read
            UserCreationFailed: Local store rejected the new account
            NoAccount: Pre-registration required and the directory has no record
            DirectoryUnreachable: Pre-registration required and the directory is down
        """
        return self.reconcile_detailed(profile).user

    def reconcile_detailed(self, profile: IdentityProfile) -> Reconciliation:
        email = (profile.email or "").strip()
        if not email:
            raise MissingIdentityAttribute("email")

        lookup = self.directory.lookup_by_email(email)
        create = None
        if lookup.record is None and not self.require_directory_account:
            create = self._register_in_directory(profile, email)

        with self.locks.hold(email):
            existing = self._read_local_user(email)
            if existing is not None:
                return self._existing(existing, profile, lookup, create)

            if self.require_directory_account and lookup.record is None:
                if lookup.status is DirectoryStatus.UNAVAILABLE:
                    raise DirectoryUnreachable(f"Could not verify account for {email}: {lookup.reason}")
                raise NoAccount(email)

            directory_user_id = _directory_user_id(lookup, create)
            user, created = self._create_local_user(profile, email, lookup, directory_user_id)
            return Reconciliation(
                user=user,
                created=created,
                directory_lookup=lookup,
                directory_create=create,
            )

    # ─────────────────────────────────────────────────────────────────────────
    # Steps
    # ─────────────────────────────────────────────────────────────────────────
    def _register_in_directory(self, profile: IdentityProfile, email: str) -> DirectoryResult:
        result = None
        for attempt in range(1, DIRECTORY_CREATE_ATTEMPTS + 1):
            result = self.directory.create_if_absent(
                email, email, profile.provider, profile.directory_metadata()
            )
            if result.available:
                break
            logger.warning(
                "Directory registration attempt %d/%d failed for %s: %s",
                attempt, DIRECTORY_CREATE_ATTEMPTS, email, result.reason,
            )
        return result

    def _read_local_user(self, email: str) -> Optional[LocalUser]:
        try:
            return self.store.get_user_by_email(email)
        except Exception as exc:
            logger.error("Error reading local user for %s: %s", email, exc)
            raise LocalStoreUnavailable(email, exc) from exc

    def _existing(
        self,
        user: LocalUser,
        profile: IdentityProfile,
        lookup: DirectoryResult,
        create: Optional[DirectoryResult],
    ) -> Reconciliation:
        logger.info("User already exists locally: %s", user.id)
        mismatch = user.sso_type != profile.provider
        if mismatch:
            logger.info("User %s previously used %s, now using %s", user.id, user.sso_type, profile.provider)
            self.audit.safe_log_event(
                "provider_mismatch",
                user.email,
                provider=profile.provider,
                user_id=user.id,
                details={"stored_provider": user.sso_type},
            )
        return Reconciliation(
            user=user,
            provider_mismatch=mismatch,
            directory_lookup=lookup,
            directory_create=create,
        )

    def _create_local_user(
        self,
        profile: IdentityProfile,
        email: str,
        lookup: DirectoryResult,
        directory_user_id: Optional[str],
    ) -> tuple[LocalUser, bool]:
        username = lookup.record.username if lookup.record is not None and lookup.record.username else email
        credentials = build_sso_credentials(profile, directory_user_id)

        logger.info("Creating new local user with email: %s", email)
        try:
            user = self.store.create_user(
                username=username,
                email=email,
                sso_type=profile.provider,
                sso_credentials=credentials,
            )
        except DuplicateEmailError:
            # Another worker created the record between our read and write
            user = self._read_local_user(email)
            if user is None:
                raise UserCreationFailed(email)
            logger.info("Local user for %s was created concurrently: %s", email, user.id)
            return user, False
        except Exception as exc:
            logger.error("Error creating local user for %s: %s", email, exc)
            raise UserCreationFailed(email, exc) from exc

        logger.info("New local user created: %s", user.id)
        self.audit.safe_log_event(
            "user_created",
            email,
            provider=profile.provider,
            user_id=user.id,
            details={"directory_user_id": directory_user_id},
        )
        return user, True


def build_sso_credentials(profile: IdentityProfile, directory_user_id: Optional[str] = None) -> dict[str, Any]:
    """Opaque credential blob stored on a new local user."""
    credentials: dict[str, Any] = {
        "access_token": profile.access_token,
        "refresh_token": profile.refresh_token,
        "profile_id": profile.provider_subject_id,
        "name": profile.display_name,
        "photo_url": profile.photo_url,
    }
    if directory_user_id:
        credentials["directory_user_id"] = directory_user_id
    return credentials
