"""Best-effort directory user operations.

Neither operation raises: every failure becomes an ``unavailable`` result and
a warning in the log, so a login can always proceed without the directory.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..exceptions import DirectoryResponseError, DirectoryUnreachable
from ..models import DirectoryRecord
from .client import GraphQLClient

logger = logging.getLogger(__name__)

LOOKUP_BY_EMAIL = """
query GetUserByEmail($email: String!) {
  core_core_user(where: {email: {_eq: $email}}) {
    id
    email
    username
  }
}
"""

CREATE_USER = """
mutation CreateUser($email: String!, $username: String!, $sso_type: String!, $sso_credentials: jsonb) {
  insert_core_core_user_one(object: {
    email: $email,
    username: $username,
    sso_type: $sso_type,
    sso_credentials: $sso_credentials
  }) {
    id
    email
    username
  }
}
"""

# GraphQL error code for unique constraint violations on insert
CONSTRAINT_VIOLATION = "constraint-violation"


class DirectoryStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class DirectoryResult:
    """Outcome of one directory call; ``record`` is None when absent."""
    status: DirectoryStatus
    record: Optional[DirectoryRecord] = None
    reason: str = ""

    @property
    def available(self) -> bool:
        return self.status is not DirectoryStatus.UNAVAILABLE

    @classmethod
    def unavailable(cls, reason: str) -> "DirectoryResult":
        return cls(DirectoryStatus.UNAVAILABLE, None, reason)


class DirectoryService:
    """Service for querying and registering users in the remote directory."""

    def __init__(self, client: GraphQLClient):
        """Initialize directory service.

        Args:
            client: Directory GraphQL client
        """
        self.client = client

    def lookup_by_email(self, email: str) -> DirectoryResult:
        """Return the directory record matching the email, if any."""
        try:
            data = self.client.execute(LOOKUP_BY_EMAIL, {"email": email})
            users = data.get("core_core_user")
            if not isinstance(users, list):
                raise DirectoryResponseError("core_core_user is not a list")
            if not users:
                logger.info("Directory has no user for %s", email)
                return DirectoryResult(DirectoryStatus.NOT_FOUND)
            record = DirectoryRecord.from_payload(users[0])
        except (DirectoryUnreachable, ValueError) as exc:
            logger.warning("Directory lookup failed for %s: %s", email, exc)
            return DirectoryResult.unavailable(str(exc))

        logger.info("Directory user found for %s: %s", email, record.id)
        return DirectoryResult(DirectoryStatus.FOUND, record)

    def create_if_absent(
        self,
        email: str,
        username: str,
        sso_type: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DirectoryResult:
        """Register a user in the directory.

        A uniqueness violation is reported as ``already_exists``; the
        directory is expected to be idempotent on email.
        """
        variables = {
            "email": email,
            "username": username,
            "sso_type": sso_type,
            "sso_credentials": json.dumps(metadata or {}),
        }
        try:
            data = self.client.execute(CREATE_USER, variables)
            payload = data.get("insert_core_core_user_one")
            if payload is None:
                raise DirectoryResponseError("insert_core_core_user_one returned null")
            record = DirectoryRecord.from_payload(payload)
        except DirectoryResponseError as exc:
            if exc.code == CONSTRAINT_VIOLATION:
                logger.info("Directory user already exists for %s", email)
                return DirectoryResult(DirectoryStatus.ALREADY_EXISTS, reason=str(exc))
            logger.warning("Failed to create directory user for %s: %s", email, exc)
            return DirectoryResult.unavailable(str(exc))
        except (DirectoryUnreachable, ValueError) as exc:
            logger.warning("Failed to create directory user for %s: %s", email, exc)
            return DirectoryResult.unavailable(str(exc))

        logger.info("Created directory user for %s: %s", email, record.id)
        return DirectoryResult(DirectoryStatus.CREATED, record)


class NullDirectoryService:
    """Stand-in used when no directory endpoint is configured."""

    REASON = "directory not configured"

    def lookup_by_email(self, email: str) -> DirectoryResult:
        return DirectoryResult.unavailable(self.REASON)

    def create_if_absent(self, email, username, sso_type, metadata=None) -> DirectoryResult:
        return DirectoryResult.unavailable(self.REASON)
