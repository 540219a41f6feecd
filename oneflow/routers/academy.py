from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.deps import get_current_admin, get_current_user
from ..core.log import get_logger
from ..core.schemas import CamelModel
from ..database import get_session
from ..models import QuizBundle, QuizType, User, UserRole
from ..services import academy

logger = get_logger(__name__)

router = APIRouter(prefix="/api/academy", tags=["Academy"])


class AssignRequest(CamelModel):
    user_id: int = Field(alias="userId")
    bundle_id: int = Field(alias="bundleId")
    custom_reward: Optional[Decimal] = Field(default=None, ge=0, alias="customReward")
    deadline: Optional[datetime] = None


class SubmitRequest(CamelModel):
    bundle_id: int = Field(alias="bundleId")
    answers: Optional[List[int]] = None
    score: Optional[int] = Field(default=None, ge=0, le=100)
    assignment_id: Optional[int] = Field(default=None, alias="assignmentId")

    @model_validator(mode="after")
    def check_payload(self):
        if self.answers is None and self.score is None:
            raise ValueError("Either answers or score is required")
        return self


def bundle_view(bundle: QuizBundle, viewer: User) -> dict:
    data = bundle.model_dump()
    if viewer.role != UserRole.ADMIN:
        data["questions"] = [
            {key: value for key, value in question.items() if key != "correct"}
            for question in bundle.questions or []
        ]
    return data


@router.get("/bundles")
async def read_bundles(
    type: Optional[QuizType] = None,
    age_group: Optional[str] = Query(default=None, alias="ageGroup"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    try:
        bundles = await academy.list_bundles(session, type=type, age_group=age_group)
    except SQLAlchemyError as exc:
        logger.error("bundle_listing_failed", error=str(exc))
        bundles = []
    return {"success": True, "bundles": [bundle_view(b, current_user) for b in bundles]}


@router.get("/bundles/{bundle_id}")
async def read_bundle(
    bundle_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    bundle = await academy.get_bundle(session, bundle_id)
    return {"success": True, "bundle": bundle_view(bundle, current_user)}


@router.post("/assign")
async def assign_bundle(
    data: AssignRequest,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    assignment = await academy.assign_bundle(
        session, current_user,
        user_id=data.user_id,
        bundle_id=data.bundle_id,
        custom_reward=data.custom_reward,
        deadline=data.deadline,
    )
    return {"success": True, "assignment": assignment}


@router.post("/submit")
async def submit_quiz(
    data: SubmitRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    result = await academy.submit_quiz(
        session, current_user,
        bundle_id=data.bundle_id,
        answers=data.answers,
        score=data.score,
        assignment_id=data.assignment_id,
    )
    assignment = result.entity
    return {
        "success": True,
        "status": assignment.status,
        "score": assignment.score,
        "reward": result.credited,
        "newBalance": current_user.balance,
        "assignment": assignment,
    }
