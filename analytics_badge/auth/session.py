from __future__ import annotations
"""
Cookie sessions backed by the fast cache.

The cookie carries an opaque session id; the fast cache maps s:<id> to the
linked account's username, and the account itself lives in the database.
A handler mutates `session.account`; `SessionManager.commit` writes it back
only when it differs from the snapshot taken at load time.
"""

import dataclasses
import logging
import secrets
from dataclasses import dataclass, field

from fastapi import Request, Response

from analytics_badge.auth.token_model import Account
from analytics_badge.config.badge_windows import session_key, SESSION_TTL_SECONDS
from analytics_badge.errors import CacheError, PersistenceError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


class SessionLoadError(Exception):
    """Raised when a session points at an account that cannot be loaded"""
    pass


@dataclass
class Session:
    id: str
    account: Account = field(default_factory=Account)
    loaded: Account = field(default_factory=Account)
    is_new: bool = False


class SessionManager:
    def __init__(self, cache, ttl_seconds: int = SESSION_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def load(self, request: Request, db) -> Session:
        """
        Restore the session named by the request cookie, or start a new one.

        Raises:
            SessionLoadError if the cached username has no readable account
        """
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return Session(id=secrets.token_urlsafe(16), is_new=True)

        session = Session(id=session_id)
        try:
            raw = self.cache.get(session_key(session_id))
        except CacheError as e:
            logger.warning(f"[SESSION] Cache read failed, continuing anonymously: {e}")
            return session
        if raw is None:
            return session

        username = raw.decode() if isinstance(raw, bytes) else raw
        try:
            account = db.fetch_account(username)
        except PersistenceError as e:
            raise SessionLoadError(f"Failed to load account {username}: {e}") from e
        if account is None:
            raise SessionLoadError(f"Session references missing account {username}")

        session.account = account
        session.loaded = dataclasses.replace(account)
        return session

    def commit(self, session: Session, response: Response, db) -> None:
        """Set the cookie for new sessions and persist a changed account."""
        if session.is_new:
            response.set_cookie(
                SESSION_COOKIE, session.id, max_age=self.ttl_seconds, httponly=True
            )

        if session.account == session.loaded:
            return
        username = session.account.username
        if not username:
            logger.warning("[SESSION] Account changed without a username, not persisting")
            return

        try:
            self.cache.set(session_key(session.id), username.encode(), self.ttl_seconds)
        except CacheError as e:
            logger.error(f"[SESSION] Cache write error: {e}")
        try:
            db.upsert_account(session.account)
        except PersistenceError as e:
            logger.error(f"[SESSION] Account write error for {username}: {e}")
