"""Session binding: the session holds only the local user id."""
from __future__ import annotations
import logging
from typing import MutableMapping, Optional

from .models import LocalUser
from .store import LocalUserStore

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"


class SessionManager:
    """Bind a resolved user to a session and rehydrate it on later requests.

    Works on any mutable mapping; under Flask that is ``flask.session``.
    """

    def __init__(self, store: LocalUserStore, key: str = SESSION_USER_KEY):
        self.store = store
        self.key = key

    def bind(self, session: MutableMapping, user: LocalUser) -> None:
        """Start a fresh session for ``user``, storing only its id."""
        session.clear()
        session[self.key] = user.id
        # Flask sessions honour PERMANENT_SESSION_LIFETIME only when permanent
        if hasattr(session, "permanent"):
            session.permanent = True

    def resolve(self, session: MutableMapping) -> Optional[LocalUser]:
        """Return the session's user, or None when unauthenticated.

        An id whose record has disappeared is dropped from the session.
        """
        user_id = session.get(self.key)
        if user_id is None:
            return None
        user = self.store.get_user(user_id)
        if user is None:
            logger.info("Session user %s no longer exists; treating as unauthenticated", user_id)
            session.pop(self.key, None)
        return user

    def clear(self, session: MutableMapping) -> None:
        session.clear()
