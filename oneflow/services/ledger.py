"""Ledger store: the only place a user's balance is changed.

Every balance change is paired with an immutable :class:`Transaction` row in
the caller's session, so both land in the same commit. Aggregates are plain
``SUM`` queries over the transaction table and are never cached.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import InsufficientFundsError, NotFoundError, ValidationError
from ..core.log import get_logger
from ..models import Transaction, TransactionCategory, TransactionType, User, UserRole
from ..money import ZERO, AmountLike, to_decimal

logger = get_logger(__name__)

DEBIT_TYPES = (TransactionType.EXPENSE, TransactionType.TRANSFER_OUT)


def signed(amount: Decimal, type_: TransactionType) -> Decimal:
    return -amount if type_ in DEBIT_TYPES else amount


async def lock_user(session: AsyncSession, user_id: int) -> User:
    """Load ``user_id`` with a row lock, refreshing any stale copy in the session."""

    user = await session.get(User, user_id, with_for_update=True, populate_existing=True)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def record(
    session: AsyncSession,
    user_id: int,
    amount: AmountLike,
    *,
    description: str,
    category: TransactionCategory,
    type: TransactionType,
    is_manual: bool = False,
) -> Transaction:
    """Insert a ledger entry and apply it to the user's balance.

    Nothing is committed here; the caller's unit of work decides.
    """

    value = to_decimal(amount)
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero")

    user = await lock_user(session, user_id)
    balance = to_decimal(user.balance)

    if type in DEBIT_TYPES and balance < value:
        raise InsufficientFundsError("Not enough money on balance")

    user.balance = balance + signed(value, type)

    transaction = Transaction(
        user_id=user_id,
        amount=value,
        description=description,
        category=category,
        type=type,
        is_manual=is_manual,
    )
    session.add(user)
    session.add(transaction)
    await session.flush()

    logger.info(
        "ledger_recorded",
        user_id=user_id,
        transaction_id=transaction.id,
        type=type.value,
        category=category.value,
        amount=str(value),
        balance=str(user.balance),
    )
    return transaction


async def credit(session: AsyncSession, user_id: int, amount: AmountLike, *,
                 description: str, category: TransactionCategory) -> Transaction:
    return await record(
        session, user_id, amount,
        description=description, category=category, type=TransactionType.INCOME,
    )


def _scoped(stmt, *, user_id: Optional[int], group_id: Optional[int], exclude_admins: bool = False):
    if user_id is not None:
        stmt = stmt.where(Transaction.user_id == user_id)
    if group_id is not None or exclude_admins:
        stmt = stmt.join(User, User.id == Transaction.user_id)
        if group_id is not None:
            stmt = stmt.where(User.group_id == group_id)
        if exclude_admins:
            stmt = stmt.where(User.role != UserRole.ADMIN)
    return stmt


async def _sum(session: AsyncSession, types: Iterable[TransactionType], *,
               user_id: Optional[int] = None,
               group_id: Optional[int] = None,
               since: Optional[datetime] = None,
               until: Optional[datetime] = None,
               categories: Optional[Iterable[TransactionCategory]] = None,
               is_manual: Optional[bool] = None,
               exclude_admins: bool = False) -> Decimal:
    stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
        Transaction.type.in_(list(types))
    )
    stmt = _scoped(stmt, user_id=user_id, group_id=group_id, exclude_admins=exclude_admins)
    if since is not None:
        stmt = stmt.where(Transaction.timestamp >= since)
    if until is not None:
        stmt = stmt.where(Transaction.timestamp < until)
    if categories is not None:
        stmt = stmt.where(Transaction.category.in_(list(categories)))
    if is_manual is not None:
        stmt = stmt.where(Transaction.is_manual == is_manual)

    result = await session.exec(stmt)
    return to_decimal(result.one())


async def sum_expenses(session: AsyncSession, *, user_id: Optional[int] = None,
                       group_id: Optional[int] = None,
                       since: Optional[datetime] = None,
                       until: Optional[datetime] = None,
                       category: Optional[TransactionCategory] = None) -> Decimal:
    return await _sum(
        session, [TransactionType.EXPENSE],
        user_id=user_id, group_id=group_id, since=since, until=until,
        categories=[category] if category is not None else None,
    )


async def sum_income(session: AsyncSession, *, user_id: Optional[int] = None,
                     group_id: Optional[int] = None,
                     since: Optional[datetime] = None,
                     categories: Optional[Iterable[TransactionCategory]] = None,
                     is_manual: Optional[bool] = None,
                     exclude_admins: bool = False) -> Decimal:
    return await _sum(
        session, [TransactionType.INCOME],
        user_id=user_id, group_id=group_id, since=since,
        categories=categories, is_manual=is_manual, exclude_admins=exclude_admins,
    )


async def ledger_balance(session: AsyncSession, user_id: int) -> Decimal:
    """Signed sum of every entry for ``user_id``; equals ``User.balance``."""

    signed_amount = case(
        (Transaction.type == TransactionType.INCOME, Transaction.amount),
        else_=-Transaction.amount,
    )
    stmt = select(func.coalesce(func.sum(signed_amount), 0)).where(Transaction.user_id == user_id)
    result = await session.exec(stmt)
    return to_decimal(result.one())


async def history(session: AsyncSession, user_id: int, limit: int = 50) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .limit(limit)
    )
    result = await session.exec(stmt)
    return list(result.all())
