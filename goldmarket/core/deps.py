"""FastAPI dependencies: store accessors and the security stages.

Admin routes chain the stages as rate limit -> session -> CSRF -> role. An
unexpected failure inside a stage surfaces as a 500 ``SecurityCheckError``
carrying the stage's code instead of a bare traceback.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, Optional

from fastapi import Depends, Request, Response

from goldmarket.db.dal import Database
from goldmarket.services.audit import Actor, AuditLog
from goldmarket.services.limits import BruteForceGuard, RateLimiter
from goldmarket.services.price_store import CURRENCY, GOLD, PriceVersionStore
from goldmarket.services.sessions import SessionStore
from goldmarket.services.settings_store import SettingsStore
from goldmarket.services.users import UserStore
from .config import Settings
from .errors import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    SecurityCheckError,
)
from .logging import client_ip
from .security import tokens_match

logger = logging.getLogger("goldmarket.security")

SESSION_COOKIE = "session_token"
CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "_csrf"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

Session = Dict[str, Any]


# Stores -----------------------------------------------------------


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_audit(db: Database = Depends(get_db)) -> AuditLog:
    return AuditLog(db)


def get_settings_store(
    db: Database = Depends(get_db), audit: AuditLog = Depends(get_audit)
) -> SettingsStore:
    return SettingsStore(db, audit)


def get_gold_store(
    db: Database = Depends(get_db), audit: AuditLog = Depends(get_audit)
) -> PriceVersionStore:
    return PriceVersionStore(db, GOLD, audit)


def get_currency_store(
    db: Database = Depends(get_db), audit: AuditLog = Depends(get_audit)
) -> PriceVersionStore:
    return PriceVersionStore(db, CURRENCY, audit)


def get_user_store(
    db: Database = Depends(get_db),
    audit: AuditLog = Depends(get_audit),
    settings: Settings = Depends(get_app_settings),
) -> UserStore:
    return UserStore(db, audit, bcrypt_rounds=settings.bcrypt_rounds)


def get_session_store(db: Database = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_brute_force_guard(request: Request) -> BruteForceGuard:
    return BruteForceGuard(request.app.state.kv_store)


def actor_from(request: Request, session: Optional[Session] = None) -> Actor:
    return Actor(
        user_id=session["user_id"] if session else None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


# Rate limiting ----------------------------------------------------


def rate_limit(scope: str, max_requests_setting: str = "rate_limit_max_requests"):
    """Build a per-route limiter; the ceiling is read from the named setting."""

    async def check_rate_limit(
        request: Request,
        response: Response,
        settings: Settings = Depends(get_app_settings),
    ) -> None:
        try:
            limiter = RateLimiter(
                request.app.state.kv_store,
                scope,
                settings.rate_limit_window_seconds,
                getattr(settings, max_requests_setting),
            )
            decision = limiter.hit(client_ip(request))
        except Exception as exc:
            logger.exception("rate limit check failed", extra={"context": {"scope": scope}})
            raise SecurityCheckError("Rate limit check failed", "RATE_LIMIT_ERROR") from exc
        if not decision.allowed:
            raise RateLimitError(
                "Too many requests, please try again later", decision.retry_after
            )
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)

    return check_rate_limit


# Session / CSRF / roles -------------------------------------------


async def require_session(
    request: Request, sessions: SessionStore = Depends(get_session_store)
) -> Session:
    try:
        session = sessions.get_valid(request.cookies.get(SESSION_COOKIE))
    except sqlite3.Error as exc:
        logger.exception("session lookup failed")
        raise SecurityCheckError("Session validation failed", "SESSION_ERROR") from exc
    if session is None:
        raise AuthenticationError("Invalid or expired session", "SESSION_INVALID")
    request.state.session = session
    return session


async def _submitted_csrf_token(request: Request) -> Optional[str]:
    token = request.headers.get(CSRF_HEADER) or request.query_params.get(CSRF_FIELD)
    if token:
        return token
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get(CSRF_FIELD), str):
        return payload[CSRF_FIELD]
    return None


async def verify_csrf(request: Request, session: Session, audit: AuditLog) -> None:
    if request.method in SAFE_METHODS:
        return
    try:
        submitted = await _submitted_csrf_token(request)
        valid = tokens_match(submitted, session.get("csrf_token"))
    except Exception as exc:
        logger.exception("csrf check failed")
        raise SecurityCheckError("CSRF validation failed", "SECURITY_ERROR") from exc
    if not submitted:
        raise AuthorizationError("CSRF token missing", "CSRF_MISSING")
    if not valid:
        context = {"path": request.url.path, "method": request.method, "user_id": session["user_id"]}
        logger.warning("INVALID_CSRF", extra={"context": context})
        audit.record(
            "INVALID_CSRF",
            "SECURITY",
            new_values={"path": request.url.path, "method": request.method},
            actor=actor_from(request, session),
        )
        raise AuthorizationError("Invalid CSRF token", "CSRF_INVALID")


async def csrf_protect(
    request: Request,
    session: Session = Depends(require_session),
    audit: AuditLog = Depends(get_audit),
) -> Session:
    """Session plus CSRF, for self-service routes open to every role."""
    await verify_csrf(request, session, audit)
    return session


def require_roles(*roles: str):
    """Session, then CSRF on mutating methods, then the role allow-list."""

    async def check_roles(
        request: Request,
        session: Session = Depends(require_session),
        audit: AuditLog = Depends(get_audit),
    ) -> Session:
        await verify_csrf(request, session, audit)
        try:
            allowed = session["role"] in roles
        except Exception as exc:
            logger.exception("role check failed")
            raise SecurityCheckError("Role check failed", "ROLE_ERROR") from exc
        if not allowed:
            context = {
                "path": request.url.path,
                "user_id": session["user_id"],
                "role": session["role"],
                "required": list(roles),
            }
            logger.warning("UNAUTHORIZED_ACCESS", extra={"context": context})
            audit.record(
                "UNAUTHORIZED_ACCESS",
                "SECURITY",
                new_values={"path": request.url.path, "role": session["role"], "required": list(roles)},
                actor=actor_from(request, session),
            )
            raise AuthorizationError("Insufficient permissions", "INSUFFICIENT_PERMISSIONS")
        return session

    return check_roles


require_admin = require_roles("admin")
require_staff = require_roles("admin", "manager")
