"""Server-side login sessions.

A session row is looked up by its opaque token (the ``session_token`` cookie)
and carries the CSRF token the client must echo on mutating requests. A
session is usable while ``is_valid = 1``, ``expires_at`` is in the future and
its user is still active.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from goldmarket.core.security import generate_session_token, generate_token
from goldmarket.db.dal import Database, utc_after, utc_now


class SessionStore:
    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        user: Dict[str, Any],
        timeout_seconds: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        token = generate_session_token()
        now = utc_now()
        self.db.execute(
            """
            INSERT INTO sessions
                (token, user_id, csrf_token, role, ip_address, user_agent,
                 created_at, last_activity, expires_at, is_valid)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                token,
                user["id"],
                generate_token(),
                user["role"],
                ip_address,
                user_agent,
                now,
                now,
                utc_after(timeout_seconds),
            ),
        )
        return self.db.fetch_one("SELECT * FROM sessions WHERE token = ?", (token,))  # type: ignore[return-value]

    def get_valid(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Resolve a live session and touch its last_activity.

        The role returned is the user's current role, so a demotion applies to
        sessions that are already open.
        """
        if not token:
            return None
        now = utc_now()
        row = self.db.fetch_one(
            """
            SELECT s.id, s.token, s.user_id, s.csrf_token, s.expires_at, s.created_at,
                   u.username, u.role
            FROM sessions s JOIN users u ON u.id = s.user_id
            WHERE s.token = ? AND s.is_valid = 1 AND s.expires_at > ? AND u.is_active = 1
            """,
            (token, now),
        )
        if row is None:
            return None
        self.db.execute("UPDATE sessions SET last_activity = ? WHERE id = ?", (now, row["id"]))
        return row

    def invalidate(self, token: str) -> None:
        self.db.execute("UPDATE sessions SET is_valid = 0 WHERE token = ?", (token,))

    def invalidate_user(self, user_id: int, keep_token: Optional[str] = None) -> int:
        """Invalidate every session of a user except `keep_token`; return the count."""
        return self.db.execute(
            "UPDATE sessions SET is_valid = 0 WHERE user_id = ? AND token != ? AND is_valid = 1",
            (user_id, keep_token or ""),
        )

    def refresh(self, token: str, timeout_seconds: int) -> Optional[str]:
        expires_at = utc_after(timeout_seconds)
        updated = self.db.execute(
            "UPDATE sessions SET expires_at = ?, last_activity = ? WHERE token = ? AND is_valid = 1",
            (expires_at, utc_now(), token),
        )
        return expires_at if updated else None

    def purge_expired(self) -> int:
        return self.db.execute(
            "DELETE FROM sessions WHERE is_valid = 0 OR expires_at <= ?", (utc_now(),)
        )
