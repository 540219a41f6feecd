from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request, Response
from pydantic import Field, field_validator
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.config import COOKIE_SECURE, LOGIN_RATE_LIMIT, REFRESH_COOKIE_NAME, REFRESH_TOKEN_EXPIRES
from ..core.errors import AuthError
from ..core.limits import TOO_MANY_LOGINS, limiter
from ..core.security import (
    Principal,
    create_access_token,
    create_refresh_token,
    parse_expiry,
    verify_refresh_token,
)
from ..core.schemas import CamelModel
from ..database import get_session
from ..models import Group, GroupType, User
from ..services import directory

router = APIRouter(prefix="/api", tags=["Auth"])


class GroupRegistration(CamelModel):
    group_name: str = Field(alias="groupName", min_length=1)
    admin_email: str = Field(alias="adminEmail", min_length=3)
    admin_nickname: str = Field(alias="adminNickname", min_length=1)
    password: str = Field(min_length=1)
    type: GroupType = GroupType.FAMILY
    birth_year: Optional[int] = Field(default=None, alias="birthYear")

    @field_validator('admin_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        clean = v.strip().lower()
        if "@" not in clean:
            raise ValueError('Invalid email address')
        return clean


class JoinRequest(CamelModel):
    group_email: str = Field(alias="groupEmail", min_length=1)
    nickname: str = Field(min_length=1)
    password: str = Field(min_length=1)
    birth_year: Optional[int] = Field(default=None, alias="birthYear")


class LoginRequest(CamelModel):
    group_email: str = Field(alias="groupEmail", min_length=1)
    nickname: str = Field(min_length=1)
    password: str = Field(min_length=1)


def _issue_tokens(response: Response, group: Group, user: User) -> str:
    principal = Principal(user_id=user.id, role=user.role.value, group_id=group.id)
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        create_refresh_token(principal),
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        max_age=int(parse_expiry(REFRESH_TOKEN_EXPIRES).total_seconds()),
    )
    return create_access_token(principal)


@router.post("/groups")
async def create_group(
    data: GroupRegistration,
    response: Response,
    session: AsyncSession = Depends(get_session)
):
    group, admin = await directory.create_group(
        session,
        group_name=data.group_name,
        admin_email=data.admin_email,
        admin_nickname=data.admin_nickname,
        password=data.password,
        type=data.type,
        birth_year=data.birth_year,
    )
    access_token = _issue_tokens(response, group, admin)
    return {
        "success": True,
        "user": directory.user_view(admin),
        "group": directory.group_view(group),
        "accessToken": access_token,
    }


@router.post("/join")
async def join_group(
    data: JoinRequest,
    session: AsyncSession = Depends(get_session)
):
    user = await directory.join_group(
        session,
        group_email=data.group_email,
        nickname=data.nickname,
        password=data.password,
        birth_year=data.birth_year,
    )
    return {"success": True, "user": directory.user_view(user)}


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT, error_message=TOO_MANY_LOGINS)
async def login(
    request: Request,
    data: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session)
):
    group, user = await directory.login(
        session,
        group_email=data.group_email,
        nickname=data.nickname,
        password=data.password,
    )
    access_token = _issue_tokens(response, group, user)
    return {
        "success": True,
        "user": directory.user_view(user),
        "group": directory.group_view(group),
        "accessToken": access_token,
    }


@router.post("/auth/refresh")
async def refresh(refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE_NAME)):
    if not refresh_token:
        raise AuthError("No refresh token")
    principal = verify_refresh_token(refresh_token)
    if principal is None:
        raise AuthError("Invalid refresh token")
    return {"success": True, "accessToken": create_access_token(principal)}


@router.post("/auth/logout")
async def logout(response: Response):
    response.delete_cookie(REFRESH_COOKIE_NAME, httponly=True, secure=COOKIE_SECURE, samesite="lax")
    return {"success": True}
