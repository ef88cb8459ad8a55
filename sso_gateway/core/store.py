"""Local user store contract and the in-memory implementation.

The durable store is supplied by the host application; anything exposing
``get_user_by_email``, ``get_user`` and ``create_user`` with the signatures
below can be passed to ``create_app``. ``InMemoryUserStore`` backs demo mode
and the test suite.
"""
from __future__ import annotations
import copy
import itertools
import threading
from typing import Any, Optional, Protocol

from .models import LocalUser


class UserStoreError(Exception):
    """Base exception for local store failures."""
    pass


class DuplicateEmailError(UserStoreError):
    """Creation rejected because a user with this email already exists."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email {email} already exists")


class LocalUserStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[LocalUser]: ...

    def get_user(self, user_id: int) -> Optional[LocalUser]: ...

    def create_user(
        self,
        username: str,
        email: str,
        sso_type: str,
        sso_credentials: dict[str, Any],
    ) -> LocalUser: ...


class InMemoryUserStore:
    """Thread-safe store keyed by exact (case-sensitive) email.

    Enforces email uniqueness: ``create_user`` raises ``DuplicateEmailError``
    rather than creating a second record for an email.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._by_id: dict[int, LocalUser] = {}
        self._id_by_email: dict[str, int] = {}

    def get_user_by_email(self, email: str) -> Optional[LocalUser]:
        with self._lock:
            user_id = self._id_by_email.get(email)
            if user_id is None:
                return None
            return copy.deepcopy(self._by_id[user_id])

    def get_user(self, user_id: int) -> Optional[LocalUser]:
        try:
            key = int(user_id)
        except (TypeError, ValueError):
            return None
        with self._lock:
            user = self._by_id.get(key)
            return copy.deepcopy(user) if user is not None else None

    def create_user(
        self,
        username: str,
        email: str,
        sso_type: str,
        sso_credentials: dict[str, Any],
    ) -> LocalUser:
        if not email:
            raise UserStoreError("email is required")
        with self._lock:
            if email in self._id_by_email:
                raise DuplicateEmailError(email)
            user = LocalUser(
                id=next(self._ids),
                username=username,
                email=email,
                sso_type=sso_type,
                sso_credentials=dict(sso_credentials or {}),
            )
            self._by_id[user.id] = user
            self._id_by_email[email] = user.id
            return copy.deepcopy(user)

    def delete_user(self, user_id: int) -> bool:
        """Remove a record (administrative cleanup outside the login flow)."""
        with self._lock:
            user = self._by_id.pop(user_id, None)
            if user is None:
                return False
            self._id_by_email.pop(user.email, None)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)
