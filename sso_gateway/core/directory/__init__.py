"""Remote identity directory client library.

Architecture:
- client.py: GraphQL HTTP transport with timeout and error decoding
- users.py: best-effort user lookup/registration returning DirectoryResult

Usage:
    from sso_gateway.core.directory import GraphQLClient, DirectoryService

    service = DirectoryService(GraphQLClient(url, timeout=3))
    result = service.lookup_by_email("alice@example.com")
    if result.record:
        ...
"""
from .client import GraphQLClient, REQUEST_TIMEOUT
from .users import (
    DirectoryService,
    DirectoryResult,
    DirectoryStatus,
    NullDirectoryService,
    CONSTRAINT_VIOLATION,
)


def build_directory_service(cfg):
    """Create the directory service described by the app config."""
    if not cfg.directory_url:
        return NullDirectoryService()
    client = GraphQLClient(
        cfg.directory_url,
        timeout=cfg.directory_timeout,
        admin_secret=cfg.directory_admin_secret or None,
    )
    return DirectoryService(client)


__all__ = [
    "GraphQLClient",
    "REQUEST_TIMEOUT",
    "DirectoryService",
    "DirectoryResult",
    "DirectoryStatus",
    "NullDirectoryService",
    "CONSTRAINT_VIOLATION",
    "build_directory_service",
]
