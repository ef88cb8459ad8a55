"""
Flask decorators for session authentication.

``login_required`` rehydrates the session's local user and rejects
anonymous requests with a JSON 401. The host application uses it to guard
its own API routes.
"""

import logging
from functools import wraps

from flask import g, jsonify, session

logger = logging.getLogger(__name__)


def login_required(view):
    """
    Require an authenticated session.

    On success the resolved LocalUser is available as ``g.current_user``.

    Returns:
        401 {"error": "Authentication required"} when the session has no
        user or the user no longer exists.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        from sso_gateway.api.auth import get_gateway

        user = get_gateway().sessions.resolve(session)
        if user is None:
            logger.debug("Rejected unauthenticated request to %s", view.__name__)
            return jsonify({"error": "Authentication required"}), 401
        g.current_user = user
        return view(*args, **kwargs)

    return wrapper
