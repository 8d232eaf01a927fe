from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool

from goldmarket.core.deps import (
    actor_from,
    csrf_protect,
    get_session_store,
    get_user_store,
    require_admin,
    require_session,
    require_staff,
)
from goldmarket.core.middleware import SanitizingRoute
from goldmarket.models import ok
from goldmarket.models.users import (
    PasswordResetIn,
    ProfileUpdateIn,
    Role,
    StatusIn,
    User,
    UserCreateIn,
    UserStatistics,
    UserUpdateIn,
)
from goldmarket.services.sessions import SessionStore
from goldmarket.services.users import UserStore, public_user

router = APIRouter(prefix="/api/users", tags=["users"], route_class=SanitizingRoute)


def _user(row: dict) -> User:
    return User(**public_user(row))


# Self-service -----------------------------------------------------


@router.get("/profile", summary="Own profile")
async def get_profile(
    session: dict = Depends(require_session), users: UserStore = Depends(get_user_store)
):
    return ok(_user(users.get(session["user_id"])))


@router.put("/profile", summary="Update own email or full name")
async def update_profile(
    payload: ProfileUpdateIn,
    request: Request,
    session: dict = Depends(csrf_protect),
    users: UserStore = Depends(get_user_store),
):
    user = users.update(
        session["user_id"], payload.model_dump(exclude_none=True), actor_from(request, session)
    )
    return ok(User(**user), "Profile updated")


# Administration ---------------------------------------------------


@router.get("/", summary="List users")
async def list_users(
    role: Optional[Role] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: Optional[int] = Query(None, ge=0),
    _: dict = Depends(require_staff),
    users: UserStore = Depends(get_user_store),
):
    rows = [User(**u) for u in users.list_users(role, is_active, limit, offset)]
    return ok(rows, count=len(rows), total=users.count(role, is_active))


@router.get("/statistics", summary="User counts by status and role")
async def user_statistics(
    _: dict = Depends(require_admin), users: UserStore = Depends(get_user_store)
):
    return ok(UserStatistics(**users.statistics()))


@router.get("/{user_id}", summary="One user")
async def get_user(
    user_id: int, _: dict = Depends(require_staff), users: UserStore = Depends(get_user_store)
):
    return ok(_user(users.get(user_id)))


@router.post("/", status_code=201, summary="Create a user")
async def create_user(
    payload: UserCreateIn,
    request: Request,
    session: dict = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    user = await run_in_threadpool(
        users.create,
        payload.username,
        payload.password,
        payload.email,
        payload.full_name,
        payload.role,
        actor_from(request, session),
    )
    return ok(User(**user), "User created")


@router.put("/{user_id}", summary="Update a user")
async def update_user(
    user_id: int,
    payload: UserUpdateIn,
    request: Request,
    session: dict = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
):
    user = await run_in_threadpool(
        users.update, user_id, payload.model_dump(exclude_none=True), actor_from(request, session)
    )
    if not user["is_active"]:
        sessions.invalidate_user(user_id)
    return ok(User(**user), "User updated")


@router.delete("/{user_id}", summary="Delete a user")
async def delete_user(
    user_id: int,
    request: Request,
    session: dict = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    users.delete(user_id, actor_from(request, session))
    return ok(message="User deleted")


@router.post("/{user_id}/change-password", summary="Reset another user's password")
async def reset_password(
    user_id: int,
    payload: PasswordResetIn,
    request: Request,
    session: dict = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
):
    await run_in_threadpool(users.set_password, user_id, payload.new_password, actor_from(request, session))
    sessions.invalidate_user(user_id, keep_token=session["token"])
    return ok(message="Password changed successfully")


@router.put("/{user_id}/status", summary="Activate or deactivate a user")
async def set_status(
    user_id: int,
    payload: StatusIn,
    request: Request,
    session: dict = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
):
    user = users.set_status(user_id, payload.is_active, actor_from(request, session))
    if not payload.is_active:
        sessions.invalidate_user(user_id)
    state = "activated" if payload.is_active else "deactivated"
    return ok(User(**user), f"User {state}")
