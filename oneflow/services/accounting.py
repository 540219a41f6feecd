"""Goals, budgets and spending reports derived from the ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import AuthorizationError, NotFoundError, ValidationError
from ..core.log import get_logger
from ..database import unit_of_work
from ..models import (
    ALLOCATION_CATEGORIES,
    AssignmentStatus,
    Budget,
    BudgetCategory,
    Goal,
    GoalStatus,
    Transaction,
    TransactionCategory,
    TransactionType,
    User,
    UserRole,
)
from ..money import ZERO, to_decimal
from . import academy, directory, ledger, loans, shopping, tasks
from .payday import LOOKBACK, eligibility

logger = get_logger(__name__)

ALL = "all"
BudgetTarget = Union[int, str]

MANUAL_TYPES = (TransactionType.INCOME, TransactionType.EXPENSE)


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------

async def create_goal(session: AsyncSession, actor: User, *, title: str, target_amount: Decimal,
                      user_id: Optional[int] = None) -> Goal:
    target = to_decimal(target_amount)
    if target <= ZERO:
        raise ValidationError("Target amount must be greater than zero")

    async with unit_of_work(session):
        owner = actor
        if user_id is not None and user_id != actor.id:
            if actor.role != UserRole.ADMIN:
                raise AuthorizationError("Only admins can create goals for others")
            owner = await session.get(User, user_id)
            if not owner:
                raise NotFoundError("User not found")
            if owner.group_id != actor.group_id:
                raise AuthorizationError("This is not your group member!")

        goal = Goal(
            user_id=owner.id,
            group_id=owner.group_id,
            title=title,
            target_amount=target,
            current_amount=ZERO,
        )
        session.add(goal)

    await session.refresh(goal)
    return goal


async def list_goals(session: AsyncSession, user_id: int) -> list[Goal]:
    result = await session.exec(select(Goal).where(Goal.user_id == user_id).order_by(Goal.id))
    return list(result.all())


async def deposit_to_goal(session: AsyncSession, goal_id: int, depositor: User, amount: Decimal) -> Goal:
    """Add money to a goal.

    The owner pays from their own balance (``transfer_out/savings``); anyone
    else funds the owner directly (``income/bonus``) without being debited.
    """

    value = to_decimal(amount)
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero")

    async with unit_of_work(session):
        goal = await session.get(Goal, goal_id, with_for_update=True, populate_existing=True)
        if not goal:
            raise NotFoundError("Goal not found")
        if goal.group_id != depositor.group_id:
            raise AuthorizationError("Not your group's goal")

        if depositor.id == goal.user_id:
            await ledger.record(
                session, goal.user_id, value,
                description=f"Saved toward goal: {goal.title}",
                category=TransactionCategory.SAVINGS,
                type=TransactionType.TRANSFER_OUT,
            )
        else:
            if depositor.role != UserRole.ADMIN:
                raise AuthorizationError("Only admins can fund someone else's goal")
            await ledger.credit(
                session, goal.user_id, value,
                description=f"Goal funded by {depositor.nickname}: {goal.title}",
                category=TransactionCategory.BONUS,
            )

        goal.current_amount = to_decimal(goal.current_amount) + value
        if goal.current_amount >= to_decimal(goal.target_amount):
            goal.status = GoalStatus.COMPLETED
        session.add(goal)

    logger.info("goal_deposit", goal_id=goal.id, depositor_id=depositor.id, amount=str(value))
    return goal


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------

def _budget_owner(target: BudgetTarget) -> Optional[int]:
    if target == ALL:
        return None
    try:
        return int(target)
    except (TypeError, ValueError):
        raise ValidationError("Target must be 'all' or a user id")


async def _ensure_budgets(session: AsyncSession, group_id: int, user_id: Optional[int]) -> dict:
    stmt = select(Budget).where(Budget.group_id == group_id)
    stmt = stmt.where(Budget.user_id.is_(None)) if user_id is None else stmt.where(Budget.user_id == user_id)
    rows = {budget.category: budget for budget in (await session.exec(stmt)).all()}

    for category in BudgetCategory:
        if category not in rows:
            budget = Budget(group_id=group_id, user_id=user_id, category=category, limit_amount=ZERO)
            session.add(budget)
            rows[category] = budget
    await session.flush()
    return rows


async def _check_target(session: AsyncSession, actor: User, target: BudgetTarget) -> Optional[int]:
    user_id = _budget_owner(target)
    if user_id is None:
        return None
    if actor.role != UserRole.ADMIN and user_id != actor.id:
        raise AuthorizationError("Forbidden")
    member = await session.get(User, user_id)
    if not member or member.group_id != actor.group_id:
        raise NotFoundError("User not found")
    return user_id


async def budget_status(session: AsyncSession, actor: User, target: BudgetTarget = ALL,
                        now: Optional[datetime] = None) -> list[dict]:
    """Month-to-date spending per category against its limit.

    Missing budget rows are created with a zero limit. For the whole group an
    extra ``allocations`` line sums allowance/salary/bonus paid to members.
    """

    since = month_start(now or datetime.utcnow())

    async with unit_of_work(session):
        user_id = await _check_target(session, actor, target)
        rows = await _ensure_budgets(session, actor.group_id, user_id)

        status = []
        for category in BudgetCategory:
            spent = await ledger.sum_expenses(
                session,
                user_id=user_id,
                group_id=actor.group_id if user_id is None else None,
                since=since,
                category=TransactionCategory(category.value),
            )
            status.append({
                "category": category.value,
                "limit": to_decimal(rows[category].limit_amount),
                "spent": spent,
            })

        if user_id is None:
            allocations = await ledger.sum_income(
                session,
                group_id=actor.group_id,
                since=since,
                categories=ALLOCATION_CATEGORIES,
                is_manual=False,
                exclude_admins=True,
            )
            status.append({"category": "allocations", "limit": ZERO, "spent": allocations})

    return status


async def update_budget(session: AsyncSession, admin: User, *, category: BudgetCategory,
                        limit_amount: Decimal, target: BudgetTarget = ALL) -> Budget:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can change budgets")
    limit_value = to_decimal(limit_amount)
    if limit_value < ZERO:
        raise ValidationError("Limit cannot be negative")

    async with unit_of_work(session):
        user_id = await _check_target(session, admin, target)
        rows = await _ensure_budgets(session, admin.group_id, user_id)
        budget = rows[category]
        budget.limit_amount = limit_value
        session.add(budget)

    return budget


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

async def weekly_stats(session: AsyncSession, user: User, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    check = await eligibility(session, user, now)
    return {
        "spent": check.expenses_last_week,
        "limit": to_decimal(check.allowed_spending),
        "since": now - LOOKBACK,
    }


async def record_manual(session: AsyncSession, user: User, *, amount: Decimal, description: str,
                        category: TransactionCategory, type: TransactionType) -> Transaction:
    if type not in MANUAL_TYPES:
        raise ValidationError("Manual entries must be income or expense")
    async with unit_of_work(session):
        transaction = await ledger.record(
            session, user.id, amount,
            description=description,
            category=category,
            type=type,
            is_manual=True,
        )
    return transaction


async def dashboard(session: AsyncSession, viewer: User, user_id: int,
                    now: Optional[datetime] = None) -> dict:
    """Everything the home screen shows for ``user_id``, recomputed on every call."""

    subject = await directory.get_user(session, viewer, user_id)
    assignments = await academy.list_assignments(session, subject.id)

    return {
        "user": directory.user_view(subject, viewer),
        "tasks": await tasks.list_tasks(session, subject),
        "shopping_list": await shopping.list_items(session, subject.group_id),
        "loans": await loans.list_loans(session, subject),
        "goals": await list_goals(session, subject.id),
        "weekly_stats": await weekly_stats(session, subject, now),
        "academy": {
            "assignments": [a for a in assignments if a.status == AssignmentStatus.ASSIGNED],
            "history": [a for a in assignments if a.status != AssignmentStatus.ASSIGNED],
        },
    }
