from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import Field

from .common import CamelModel

Role = Literal["admin", "manager", "user"]


class User(CamelModel):
    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role
    is_active: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class LoginIn(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ChangePasswordIn(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class UserCreateIn(CamelModel):
    username: str
    password: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role = "user"


class UserUpdateIn(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class ProfileUpdateIn(CamelModel):
    email: Optional[str] = None
    full_name: Optional[str] = None


class PasswordResetIn(CamelModel):
    new_password: str = Field(..., min_length=1)


class StatusIn(CamelModel):
    is_active: bool


class UserStatistics(CamelModel):
    total: int
    active: int
    inactive: int
    by_role: Dict[str, int]
