"""Low-level HTTP client for the remote identity directory (GraphQL endpoint).

Handles request bounding, authentication header, and response decoding.
"""
from __future__ import annotations
from typing import Optional, Dict, Any

import requests

from ..exceptions import DirectoryAPIError, DirectoryResponseError, DirectoryUnreachable

REQUEST_TIMEOUT = 5


class GraphQLClient:
    """HTTP client for the directory's GraphQL endpoint.

    Features:
    - Every call bounded by a timeout
    - Centralized error handling (all failures are DirectoryUnreachable subclasses)
    - Optional admin secret header

    Usage:
        client = GraphQLClient("https://directory.example.com/v1/graphql", timeout=3)
        data = client.execute("query { ... }", {"email": "a@x.com"})
    """

    ADMIN_SECRET_HEADER = "x-hasura-admin-secret"

    def __init__(self, endpoint: str, timeout: float = REQUEST_TIMEOUT, admin_secret: Optional[str] = None):
        """Initialize directory client.

        Args:
            endpoint: GraphQL endpoint URL
            timeout: Seconds to wait for connect and for each read
            admin_secret: Optional secret sent in the admin header
        """
        if not endpoint:
            raise ValueError("Directory endpoint URL is required")
        self.endpoint = endpoint
        self.timeout = timeout
        self._admin_secret = admin_secret or None

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run one GraphQL operation and return its ``data`` object.

        Args:
            query: GraphQL query or mutation document
            variables: Operation variables

        Returns:
            The ``data`` member of the response

        Raises:
            DirectoryUnreachable: On timeout or connection failure
            DirectoryAPIError: On HTTP error status
            DirectoryResponseError: On non-JSON body, GraphQL errors, or missing data
        """
        headers = {"Content-Type": "application/json"}
        if self._admin_secret:
            headers[self.ADMIN_SECRET_HEADER] = self._admin_secret

        try:
            resp = requests.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise DirectoryUnreachable(f"Directory request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise DirectoryUnreachable(f"Directory request failed: {exc}") from exc

        self._handle_error(resp)
        return self._decode(resp)

    def _handle_error(self, resp: requests.Response) -> None:
        """Raise DirectoryAPIError if the response status indicates an error."""
        if resp.status_code >= 400:
            raise DirectoryAPIError(resp.status_code, (resp.text or "")[:200], self.endpoint)

    def _decode(self, resp: requests.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise DirectoryResponseError("Directory returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise DirectoryResponseError("Directory response is not an object")

        errors = body.get("errors")
        if errors:
            if not isinstance(errors, list):
                errors = [{"message": str(errors)}]
            first = errors[0].get("message", "unknown error") if isinstance(errors[0], dict) else str(errors[0])
            raise DirectoryResponseError(f"Directory returned errors: {first}", errors)

        data = body.get("data")
        if not isinstance(data, dict):
            raise DirectoryResponseError("Directory response has no data object")
        return data
