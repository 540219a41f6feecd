from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.deps import get_current_admin, get_current_user
from ..core.schemas import CamelModel
from ..database import get_session
from ..models import User
from ..services import directory

router = APIRouter(prefix="/api", tags=["Users"])


class UserUpdate(CamelModel):
    nickname: Optional[str] = Field(default=None, min_length=1)
    birth_year: Optional[int] = Field(default=None, alias="birthYear")
    password: Optional[str] = None


class SettingsUpdate(CamelModel):
    allowance_amount: Optional[Decimal] = Field(default=None, ge=0, alias="allowanceAmount")
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, alias="interestRate")


@router.get("/users/{user_id}")
async def read_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    user = await directory.get_user(session, current_user, user_id)
    return {"success": True, "user": directory.user_view(user, current_user)}


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    user = await directory.update_user(
        session, current_user, user_id,
        nickname=data.nickname,
        birth_year=data.birth_year,
        password=data.password,
    )
    return {"success": True, "user": directory.user_view(user, current_user)}


@router.put("/users/{user_id}/settings")
async def update_settings(
    user_id: int,
    data: SettingsUpdate,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    user = await directory.update_settings(
        session, current_user, user_id,
        allowance_amount=data.allowance_amount,
        interest_rate=data.interest_rate,
    )
    return {"success": True, "user": directory.user_view(user, current_user)}


@router.post("/users/{user_id}/approve")
async def approve_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    user = await directory.approve_user(session, current_user, user_id)
    return {"success": True, "user": directory.user_view(user, current_user)}


@router.get("/group/members")
async def read_members(
    group_id: Optional[int] = Query(default=None, alias="groupId"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    members = await directory.list_members(session, current_user, group_id or current_user.group_id)
    return {"success": True, "members": members}


@router.get("/group/pending")
async def read_pending(
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    pending = await directory.list_pending(session, current_user)
    return {"success": True, "pending": [directory.user_view(user, current_user) for user in pending]}
