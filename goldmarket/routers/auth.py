"""Login sessions over cookies.

``session_token`` is httpOnly and identifies the server-side session.
``csrf_token`` is readable by the page, which echoes it in ``X-CSRF-Token`` on
every mutating request.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool

from goldmarket.core.config import Settings
from goldmarket.core.deps import (
    CSRF_COOKIE,
    SESSION_COOKIE,
    actor_from,
    csrf_protect,
    get_app_settings,
    get_audit,
    get_brute_force_guard,
    get_session_store,
    get_settings_store,
    get_user_store,
    rate_limit,
    require_session,
)
from goldmarket.core.errors import AuthenticationError, LockedError, NotFoundError
from goldmarket.core.logging import client_ip
from goldmarket.core.middleware import SanitizingRoute
from goldmarket.core.security import generate_token, mask_sensitive
from goldmarket.models import ok
from goldmarket.models.users import ChangePasswordIn, LoginIn, User
from goldmarket.services.audit import AuditLog
from goldmarket.services.limits import BruteForceGuard
from goldmarket.services.sessions import SessionStore
from goldmarket.services.settings_store import SettingsStore
from goldmarket.services.users import UserStore, public_user

logger = logging.getLogger("goldmarket.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"], route_class=SanitizingRoute)


def _set_cookie(response: Response, settings: Settings, name: str, value: str, httponly: bool) -> None:
    response.set_cookie(
        name,
        value,
        max_age=settings.cookie_max_age_seconds,
        httponly=httponly,
        secure=bool(settings.cookie_secure),
        samesite="strict",
    )


def _session_timeout(settings_store: SettingsStore, settings: Settings) -> int:
    return settings_store.get("session_timeout") or settings.session_timeout_seconds


@router.get("/csrf", summary="Issue a CSRF token for an anonymous visitor")
async def issue_csrf_token(response: Response, settings: Settings = Depends(get_app_settings)):
    token = generate_token()
    _set_cookie(response, settings, CSRF_COOKIE, token, httponly=False)
    return ok({"csrfToken": token})


@router.post(
    "/login",
    summary="Exchange credentials for a session",
    dependencies=[Depends(rate_limit("login", "login_rate_limit_max_requests"))],
)
async def login(
    payload: LoginIn,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_app_settings),
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    guard: BruteForceGuard = Depends(get_brute_force_guard),
    audit: AuditLog = Depends(get_audit),
):
    ip = client_ip(request)
    security = settings_store.get_security_settings()
    max_attempts = security["max_login_attempts"] or settings.max_login_attempts
    lockout_seconds = security["lockout_duration"] or settings.lockout_duration_seconds

    remaining = guard.locked_for(ip, max_attempts)
    if remaining is not None:
        raise LockedError(remaining)

    try:
        user = await run_in_threadpool(
            users.authenticate, payload.username, payload.password, max_attempts, lockout_seconds
        )
    except AuthenticationError as exc:
        guard.register_failure(ip, max_attempts, lockout_seconds)
        logger.warning(
            "login failed",
            extra={"context": {"username": payload.username, "ip": ip, "code": exc.code}},
        )
        audit.record(
            "LOGIN_FAILED",
            "AUTH",
            new_values={"username": payload.username, "reason": exc.code},
            actor=actor_from(request),
        )
        raise

    guard.reset(ip)
    session = sessions.create(
        user,
        _session_timeout(settings_store, settings),
        ip,
        request.headers.get("user-agent"),
    )
    _set_cookie(response, settings, SESSION_COOKIE, session["token"], httponly=True)
    _set_cookie(response, settings, CSRF_COOKIE, session["csrf_token"], httponly=False)
    audit.record("LOGIN", "AUTH", user["id"], actor=actor_from(request, {"user_id": user["id"]}))
    logger.info(
        "login",
        extra={"context": {"user_id": user["id"], "ip": ip, "session": mask_sensitive(session["token"])}},
    )
    return ok(
        {"user": User(**public_user(user)), "csrfToken": session["csrf_token"]},
        "Login successful",
    )


@router.post("/logout", summary="Invalidate the current session")
async def logout(
    request: Request,
    response: Response,
    session: dict = Depends(require_session),
    sessions: SessionStore = Depends(get_session_store),
    audit: AuditLog = Depends(get_audit),
):
    sessions.invalidate(session["token"])
    response.delete_cookie(SESSION_COOKIE)
    response.delete_cookie(CSRF_COOKIE)
    audit.record("LOGOUT", "AUTH", session["user_id"], actor=actor_from(request, session))
    return ok(message="Logged out")


@router.get("/session", summary="Current user and CSRF token")
async def current_session(
    session: dict = Depends(require_session),
    users: UserStore = Depends(get_user_store),
):
    user = users.find_by_id(session["user_id"])
    if user is None:
        raise NotFoundError("User not found")
    return ok({"user": User(**public_user(user)), "csrfToken": session["csrf_token"]})


@router.post("/change-password", summary="Change own password; other sessions end")
async def change_password(
    payload: ChangePasswordIn,
    session: dict = Depends(csrf_protect),
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
):
    await run_in_threadpool(
        users.change_password, session["user_id"], payload.current_password, payload.new_password
    )
    ended = sessions.invalidate_user(session["user_id"], keep_token=session["token"])
    logger.info(
        "password changed",
        extra={"context": {"user_id": session["user_id"], "sessions_ended": ended}},
    )
    return ok(message="Password changed successfully")


@router.post("/refresh", summary="Extend the current session")
async def refresh(
    session: dict = Depends(require_session),
    sessions: SessionStore = Depends(get_session_store),
    settings_store: SettingsStore = Depends(get_settings_store),
    settings: Settings = Depends(get_app_settings),
):
    expires_at = sessions.refresh(session["token"], _session_timeout(settings_store, settings))
    if expires_at is None:
        raise AuthenticationError("Invalid or expired session", "SESSION_INVALID")
    return ok({"expiresAt": expires_at}, "Session refreshed")
