from datetime import datetime
from decimal import Decimal

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import AuthorizationError, ValidationError
from ..database import unit_of_work
from ..models import Loan, LoanStatus, TransactionCategory, TransactionType, User, UserRole
from ..money import ZERO, to_decimal
from . import ledger
from .workflow import LOAN_WORKFLOW, TransitionResult, advance, load_for_update

ACTIONS = {
    "approve": LoanStatus.ACTIVE,
    "reject": LoanStatus.REJECTED,
}


async def request_loan(session: AsyncSession, user: User, *, amount: Decimal, reason: str) -> Loan:
    if user.role != UserRole.MEMBER:
        raise AuthorizationError("Only members can request loans")
    value = to_decimal(amount)
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero")

    async with unit_of_work(session):
        loan = Loan(
            user_id=user.id,
            group_id=user.group_id,
            original_amount=value,
            remaining_amount=value,
            reason=reason,
            status=LoanStatus.PENDING,
        )
        session.add(loan)

    await session.refresh(loan)
    return loan


async def list_loans(session: AsyncSession, user: User) -> list[Loan]:
    if user.role == UserRole.MEMBER:
        stmt = select(Loan).where(Loan.user_id == user.id)
    else:
        stmt = select(Loan).where(Loan.group_id == user.group_id)
    result = await session.exec(stmt.order_by(Loan.id))
    return list(result.all())


async def handle_loan(session: AsyncSession, admin: User, loan_id: int, action: str) -> TransitionResult:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins handle loans")
    target = ACTIONS.get(action)
    if target is None:
        raise ValidationError("Action must be 'approve' or 'reject'")

    async with unit_of_work(session):
        loan = await load_for_update(session, LOAN_WORKFLOW, loan_id)
        if loan.group_id != admin.group_id:
            raise AuthorizationError("This is not your group's loan request")

        result = await advance(session, LOAN_WORKFLOW, loan, target)
        if result.changed:
            loan.decided_at = datetime.utcnow()
            session.add(loan)

    return result


async def repay_loan(session: AsyncSession, user: User, loan_id: int, amount: Decimal) -> Loan:
    value = to_decimal(amount)
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero")

    async with unit_of_work(session):
        loan = await load_for_update(session, LOAN_WORKFLOW, loan_id)
        if loan.user_id != user.id:
            raise AuthorizationError("Not your loan")
        if loan.status != LoanStatus.ACTIVE:
            raise ValidationError("Loan is not active")

        remaining = to_decimal(loan.remaining_amount)
        if value > remaining:
            raise ValidationError(f"Only {remaining} left to repay")

        await ledger.record(
            session, user.id, value,
            description=f"Loan repayment #{loan.id}",
            category=TransactionCategory.LOANS,
            type=TransactionType.TRANSFER_OUT,
        )
        loan.remaining_amount = remaining - value
        session.add(loan)

        if loan.remaining_amount <= ZERO:
            await advance(session, LOAN_WORKFLOW, loan, LoanStatus.PAID)

    return loan
