"""Payday settlement: allowance plus interest for every active member of a group.

Interest is only payable when last week's spending stayed within 20% of what
the member had available before spending::

    approx_available = balance + goals_total + expenses_last_week
    allowed_spending = approx_available * 0.20

The whole run is one unit of work. It is not idempotent: running it twice pays
twice.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import NotFoundError
from ..core.log import get_logger
from ..database import unit_of_work
from ..models import Goal, GoalStatus, Group, TransactionCategory, User, UserRole, UserStatus
from ..money import ZERO, round2, to_decimal
from . import ledger

logger = get_logger(__name__)

SPENDING_SHARE = Decimal("0.20")
LOOKBACK = timedelta(days=7)
OVERSPENT_NOTE = "spent over 20%"


@dataclass
class Eligibility:
    expenses_last_week: Decimal
    goals_total: Decimal
    approx_available: Decimal
    allowed_spending: Decimal

    @property
    def interest_payable(self) -> bool:
        return self.expenses_last_week <= self.allowed_spending


@dataclass
class PaydayLine:
    user_id: int
    nickname: str
    allowance: Decimal
    interest: Decimal
    note: Optional[str] = None


@dataclass
class PaydayReport:
    group_id: int
    lines: List[PaydayLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.allowance + line.interest for line in self.lines), ZERO)


def compute_interest(balance: Decimal, rate: Decimal, eligibility: Eligibility) -> Decimal:
    if not eligibility.interest_payable:
        return ZERO
    if balance <= ZERO or rate <= ZERO:
        return ZERO
    return round2(balance * rate / 100)


async def goals_total(session: AsyncSession, user_id: int) -> Decimal:
    stmt = select(func.coalesce(func.sum(Goal.current_amount), 0)).where(
        Goal.user_id == user_id, Goal.status == GoalStatus.ACTIVE
    )
    return to_decimal((await session.exec(stmt)).one())


async def eligibility(session: AsyncSession, user: User, now: Optional[datetime] = None) -> Eligibility:
    now = now or datetime.utcnow()
    expenses = await ledger.sum_expenses(session, user_id=user.id, since=now - LOOKBACK)
    goals = await goals_total(session, user.id)
    available = to_decimal(user.balance) + goals + expenses
    return Eligibility(
        expenses_last_week=expenses,
        goals_total=goals,
        approx_available=available,
        allowed_spending=available * SPENDING_SHARE,
    )


async def run_payday(session: AsyncSession, group_id: int, now: Optional[datetime] = None) -> PaydayReport:
    now = now or datetime.utcnow()
    report = PaydayReport(group_id=group_id)

    async with unit_of_work(session):
        if await session.get(Group, group_id) is None:
            raise NotFoundError("Group not found")

        stmt = (
            select(User)
            .where(
                User.group_id == group_id,
                User.role == UserRole.MEMBER,
                User.status == UserStatus.ACTIVE,
            )
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        members = list((await session.exec(stmt)).all())

        for member in members:
            balance = to_decimal(member.balance)
            rate = to_decimal(member.interest_rate)
            allowance = to_decimal(member.allowance_amount)

            check = await eligibility(session, member, now)
            interest = compute_interest(balance, rate, check)
            note = None if check.interest_payable else OVERSPENT_NOTE

            if allowance > ZERO:
                await ledger.credit(
                    session, member.id, allowance,
                    description="Weekly allowance",
                    category=TransactionCategory.ALLOWANCE,
                )
            if interest > ZERO:
                await ledger.credit(
                    session, member.id, interest,
                    description=f"Interest {rate}%",
                    category=TransactionCategory.BONUS,
                )

            report.lines.append(PaydayLine(
                user_id=member.id,
                nickname=member.nickname,
                allowance=allowance,
                interest=interest,
                note=note,
            ))

    logger.info(
        "payday_completed",
        group_id=group_id,
        members=len(report.lines),
        total=str(report.total),
    )
    return report
