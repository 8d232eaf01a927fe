"""Staff accounts: credential checks, per-account lockout and administration.

Passwords are stored as bcrypt hashes. Every mutation is audited with entity
type ``USER``; password hashes never reach the audit log or API responses.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from goldmarket.core.errors import (
    AuthenticationError,
    LockedError,
    NotFoundError,
    ValidationError,
)
from goldmarket.core.security import (
    PASSWORD_RULES,
    hash_password,
    is_strong_password,
    is_valid_email,
    is_valid_username,
    verify_password,
)
from goldmarket.db.dal import Database, parse_timestamp, utc_after, utc_now
from goldmarket.models.constants import ROLES
from .audit import SYSTEM, Actor, AuditLog

logger = logging.getLogger("goldmarket.users")

ENTITY_TYPE = "USER"
PUBLIC_FIELDS = (
    "id",
    "username",
    "email",
    "full_name",
    "role",
    "is_active",
    "last_login",
    "created_at",
    "updated_at",
)


def public_user(row: Dict[str, Any]) -> Dict[str, Any]:
    user = {key: row.get(key) for key in PUBLIC_FIELDS}
    user["is_active"] = bool(user["is_active"])
    return user


def _validate_profile(username: Optional[str], email: Optional[str], role: Optional[str]) -> None:
    errors = []
    if username is not None and not is_valid_username(username):
        errors.append(
            {
                "field": "username",
                "message": "Username must be 3-20 characters, alphanumeric and underscores only",
                "code": "USERNAME_INVALID",
            }
        )
    if email and not is_valid_email(email):
        errors.append({"field": "email", "message": "Invalid email format", "code": "EMAIL_INVALID"})
    if role is not None and role not in ROLES:
        errors.append({"field": "role", "message": "Invalid role", "code": "ROLE_INVALID"})
    if errors:
        raise ValidationError("Validation failed", "VALIDATION_ERROR", errors)


def _check_strength(password: str) -> None:
    if not is_strong_password(password):
        raise ValidationError(PASSWORD_RULES, "WEAK_PASSWORD")


class UserStore:
    def __init__(self, db: Database, audit: Optional[AuditLog] = None, bcrypt_rounds: int = 12):
        self.db = db
        self.audit = audit or AuditLog(db)
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Lookups
    def find_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    def find_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one("SELECT * FROM users WHERE username = ?", (username,))

    def get(self, user_id: int) -> Dict[str, Any]:
        row = self.find_by_id(user_id)
        if row is None:
            raise NotFoundError("User not found")
        return row

    def list_users(
        self,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM users WHERE 1=1"
        params: List[Any] = []
        if is_active is not None:
            sql += " AND is_active = ?"
            params.append(int(is_active))
        if role:
            sql += " AND role = ?"
            params.append(role)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
            if offset:
                sql += " OFFSET ?"
                params.append(offset)
        return [public_user(r) for r in self.db.fetch_all(sql, params)]

    def count(self, role: Optional[str] = None, is_active: Optional[bool] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM users WHERE 1=1"
        params: List[Any] = []
        if is_active is not None:
            sql += " AND is_active = ?"
            params.append(int(is_active))
        if role:
            sql += " AND role = ?"
            params.append(role)
        row = self.db.fetch_one(sql, params)
        return int(row["n"]) if row else 0

    def statistics(self) -> Dict[str, Any]:
        return {
            "total": self.count(),
            "active": self.count(is_active=True),
            "inactive": self.count(is_active=False),
            "by_role": {role: self.count(role=role) for role in ("admin", "manager", "user")},
        }

    # ------------------------------------------------------------------
    # Authentication
    def authenticate(
        self,
        username: str,
        password: str,
        max_attempts: int = 5,
        lockout_seconds: int = 900,
    ) -> Dict[str, Any]:
        """Verify credentials and return the user row.

        Wrong passwords increment the account's counter; reaching
        `max_attempts` locks the account for `lockout_seconds`.
        """
        user = self.find_by_username(username)
        if user is None:
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")
        if not user["is_active"]:
            raise AuthenticationError("Account is disabled", "ACCOUNT_DISABLED")
        if user["locked_until"]:
            remaining = (parse_timestamp(user["locked_until"]) - parse_timestamp(utc_now())).total_seconds()
            if remaining > 0:
                raise LockedError(max(1, int(remaining + 0.999)))
        if not verify_password(password, user["password_hash"]):
            self._register_failure(user, max_attempts, lockout_seconds)
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")
        self.db.execute(
            "UPDATE users SET login_attempts = 0, locked_until = NULL, last_login = ? WHERE id = ?",
            (utc_now(), user["id"]),
        )
        return self.get(user["id"])

    def _register_failure(self, user: Dict[str, Any], max_attempts: int, lockout_seconds: int) -> None:
        attempts = (user["login_attempts"] or 0) + 1
        locked_until = utc_after(lockout_seconds) if attempts >= max_attempts else None
        self.db.execute(
            "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
            (attempts, locked_until, user["id"]),
        )
        if locked_until:
            logger.warning(
                "ACCOUNT_LOCKED",
                extra={"context": {"user_id": user["id"], "attempts": attempts}},
            )

    # ------------------------------------------------------------------
    # Administration
    def create(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        role: str = "user",
        actor: Actor = SYSTEM,
    ) -> Dict[str, Any]:
        _validate_profile(username, email, role)
        _check_strength(password)
        if self.find_by_username(username):
            raise ValidationError("Username already exists", "USERNAME_EXISTS")
        if email and self.db.fetch_one("SELECT id FROM users WHERE email = ?", (email,)):
            raise ValidationError("Email already exists", "EMAIL_EXISTS")
        password_hash = hash_password(password, self.bcrypt_rounds)
        now = utc_now()
        with self.db.connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO users
                    (username, email, password_hash, full_name, role, is_active,
                     created_at, updated_at, created_by)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (username, email or None, password_hash, full_name, role, now, now, actor.user_id),
            )
            user_id = int(cur.lastrowid)
            self.audit.record(
                "CREATE",
                ENTITY_TYPE,
                user_id,
                new_values={"username": username, "email": email, "full_name": full_name, "role": role},
                actor=actor,
                conn=conn,
            )
        return public_user(self.get(user_id))

    def _active_admins(self, conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM users WHERE role = 'admin' AND is_active = 1"
        ).fetchone()
        return int(row[0])

    def update(self, user_id: int, changes: Dict[str, Any], actor: Actor = SYSTEM) -> Dict[str, Any]:
        """Apply profile changes (username, email, full_name, role, is_active, password)."""
        user = self.get(user_id)
        fields = {k: v for k, v in changes.items() if v is not None}
        _validate_profile(fields.get("username"), fields.get("email"), fields.get("role"))
        if "password" in fields:
            _check_strength(fields["password"])
        if fields.get("username") and fields["username"] != user["username"]:
            if self.find_by_username(fields["username"]):
                raise ValidationError("Username already exists", "USERNAME_EXISTS")
        if fields.get("email") and fields["email"] != user["email"]:
            if self.db.fetch_one("SELECT id FROM users WHERE email = ?", (fields["email"],)):
                raise ValidationError("Email already exists", "EMAIL_EXISTS")

        new_role = fields.get("role", user["role"])
        new_active = bool(fields.get("is_active", user["is_active"]))
        password_hash = (
            hash_password(fields["password"], self.bcrypt_rounds)
            if "password" in fields
            else user["password_hash"]
        )
        with self.db.transaction() as conn:
            losing_admin = user["role"] == "admin" and user["is_active"] and (
                new_role != "admin" or not new_active
            )
            if losing_admin and self._active_admins(conn) <= 1:
                raise ValidationError("Cannot demote or deactivate the last admin user", "LAST_ADMIN")
            conn.execute(
                """
                UPDATE users
                SET username = ?, email = ?, password_hash = ?, full_name = ?,
                    role = ?, is_active = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    fields.get("username", user["username"]),
                    fields.get("email", user["email"]) or None,
                    password_hash,
                    fields.get("full_name", user["full_name"]),
                    new_role,
                    int(new_active),
                    utc_now(),
                    user_id,
                ),
            )
            audited = {k: v for k, v in fields.items() if k != "password"}
            if "password" in fields:
                audited["password_changed"] = True
            self.audit.record(
                "UPDATE",
                ENTITY_TYPE,
                user_id,
                old_values=public_user(user),
                new_values=audited,
                actor=actor,
                conn=conn,
            )
        return public_user(self.get(user_id))

    def set_password(self, user_id: int, new_password: str, actor: Actor = SYSTEM) -> None:
        self.update(user_id, {"password": new_password}, actor)

    def set_status(self, user_id: int, is_active: bool, actor: Actor = SYSTEM) -> Dict[str, Any]:
        if actor.user_id == user_id and not is_active:
            raise ValidationError("Cannot deactivate your own account", "SELF_DEACTIVATE")
        return self.update(user_id, {"is_active": is_active}, actor)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self.get(user_id)
        if not verify_password(current_password, user["password_hash"]):
            raise ValidationError("Current password is incorrect", "INVALID_PASSWORD")
        _check_strength(new_password)
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (hash_password(new_password, self.bcrypt_rounds), utc_now(), user_id),
            )
            self.audit.record(
                "CHANGE_PASSWORD",
                ENTITY_TYPE,
                user_id,
                actor=Actor(user_id=user_id),
                conn=conn,
            )

    def delete(self, user_id: int, actor: Actor = SYSTEM) -> None:
        if actor.user_id == user_id:
            raise ValidationError("Cannot delete your own account", "SELF_DELETE")
        user = self.get(user_id)
        with self.db.transaction() as conn:
            if user["role"] == "admin" and user["is_active"] and self._active_admins(conn) <= 1:
                raise ValidationError("Cannot delete the last admin user", "LAST_ADMIN")
            self.audit.record(
                "DELETE", ENTITY_TYPE, user_id, old_values=public_user(user), actor=actor, conn=conn
            )
            conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
