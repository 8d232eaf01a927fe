"""Append-only audit log.

Writes are fire-and-forget: a failing insert is logged and swallowed so the
audited operation is never rolled back or failed because of auditing. When a
connection is passed in, the entry joins the caller's transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from goldmarket.db.dal import Database, utc_now

logger = logging.getLogger("goldmarket.audit")


@dataclass(frozen=True)
class Actor:
    """Who performed an action and from where."""

    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM = Actor()


def _encode(values: Optional[Dict[str, Any]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, ensure_ascii=False, default=str)


class AuditLog:
    def __init__(self, db: Database):
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        actor: Actor = SYSTEM,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        params = (
            actor.user_id,
            action,
            entity_type,
            None if entity_id is None else str(entity_id),
            _encode(old_values),
            _encode(new_values),
            actor.ip_address,
            actor.user_agent,
            utc_now(),
        )
        sql = """
            INSERT INTO audit_log
                (user_id, action, entity_type, entity_id, old_values, new_values,
                 ip_address, user_agent, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        try:
            if conn is not None:
                conn.execute(sql, params)
            else:
                self.db.execute(sql, params)
        except sqlite3.Error:
            logger.exception(
                "audit write failed",
                extra={"context": {"action": action, "entity_type": entity_type}},
            )

    def entries(
        self,
        entity_type: Optional[str] = None,
        entity_id: Any = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(str(entity_id))
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.fetch_all(
            f"SELECT * FROM audit_log {where} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        )
        for row in rows:
            for key in ("old_values", "new_values"):
                if row[key] is not None:
                    row[key] = json.loads(row[key])
        return rows
