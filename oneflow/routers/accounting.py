from dataclasses import asdict
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.deps import get_current_admin, get_current_user
from ..core.errors import AuthorizationError
from ..core.log import get_logger
from ..core.schemas import CamelModel
from ..database import get_session
from ..models import BudgetCategory, TransactionCategory, TransactionType, User
from ..services import accounting, ledger, payday
from ..services.directory import get_user

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Accounting"])


class GoalCreate(CamelModel):
    title: str = Field(min_length=1)
    target_amount: Decimal = Field(gt=0, alias="targetAmount")
    user_id: Optional[int] = Field(default=None, alias="userId")


class GoalDeposit(BaseModel):
    amount: Decimal = Field(gt=0)


class PaydayRequest(CamelModel):
    group_id: int = Field(alias="groupId")


class BudgetUpdate(CamelModel):
    category: BudgetCategory
    limit_amount: Decimal = Field(ge=0, alias="limit")
    target: str = "all"


class ManualTransaction(BaseModel):
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1)
    category: TransactionCategory
    type: TransactionType


@router.post("/goals")
async def create_goal(
    data: GoalCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    goal = await accounting.create_goal(
        session, current_user,
        title=data.title,
        target_amount=data.target_amount,
        user_id=data.user_id,
    )
    return {"success": True, "goal": goal}


@router.get("/goals")
async def read_goals(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    subject = await get_user(session, current_user, user_id or current_user.id)
    return {"success": True, "goals": await accounting.list_goals(session, subject.id)}


@router.post("/goals/{goal_id}/deposit")
async def deposit_to_goal(
    goal_id: int,
    data: GoalDeposit,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    goal = await accounting.deposit_to_goal(session, goal_id, current_user, data.amount)
    return {"success": True, "goal": goal}


@router.post("/payday")
async def run_payday(
    data: PaydayRequest,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    if data.group_id != current_user.group_id:
        raise AuthorizationError("Forbidden")
    report = await payday.run_payday(session, data.group_id)
    return {
        "success": True,
        "total": report.total,
        "report": [asdict(line) for line in report.lines],
    }


@router.get("/data/{user_id}")
async def read_dashboard(
    user_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    try:
        data = await accounting.dashboard(session, current_user, user_id)
    except SQLAlchemyError as exc:
        logger.error("dashboard_failed", user_id=user_id, error=str(exc))
        data = {
            "user": None,
            "tasks": [],
            "shopping_list": [],
            "loans": [],
            "goals": [],
            "weekly_stats": {"spent": 0, "limit": 0},
            "academy": {"assignments": [], "history": []},
        }
    return {"success": True, **data}


@router.get("/budgets")
async def read_budgets(
    target: str = "all",
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    try:
        budgets = await accounting.budget_status(session, current_user, target)
    except SQLAlchemyError as exc:
        logger.error("budget_status_failed", group_id=current_user.group_id, error=str(exc))
        budgets = []
    return {"success": True, "target": target, "budgets": budgets}


@router.put("/budgets")
async def update_budget(
    data: BudgetUpdate,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    budget = await accounting.update_budget(
        session, current_user,
        category=data.category,
        limit_amount=data.limit_amount,
        target=data.target,
    )
    return {"success": True, "budget": budget}


@router.post("/transactions")
async def create_transaction(
    data: ManualTransaction,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    transaction = await accounting.record_manual(
        session, current_user,
        amount=data.amount,
        description=data.description,
        category=data.category,
        type=data.type,
    )
    return {"success": True, "transaction": transaction, "balance": current_user.balance}


@router.get("/transactions")
async def read_transactions(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    limit: int = Query(default=50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    subject = await get_user(session, current_user, user_id or current_user.id)
    transactions = await ledger.history(session, subject.id, limit)
    return {"success": True, "transactions": transactions}
