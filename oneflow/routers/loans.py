from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession
from pydantic import BaseModel, Field
from typing import Literal
from decimal import Decimal

from ..database import get_session
from ..models import User
from ..core.deps import get_current_admin, get_current_user
from ..services import loans

router = APIRouter(prefix="/api/loans", tags=["Loans"])

class LoanRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    reason: str = ""

class LoanDecision(BaseModel):
    action: Literal["approve", "reject"]

class LoanRepayment(BaseModel):
    amount: Decimal = Field(gt=0)

@router.post("")
async def request_loan(
    data: LoanRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    loan = await loans.request_loan(session, current_user, amount=data.amount, reason=data.reason)
    return {"success": True, "loan": loan}

@router.get("")
async def get_loans(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    return {"success": True, "loans": await loans.list_loans(session, current_user)}

@router.post("/{loan_id}/handle")
async def handle_loan(
    loan_id: int,
    data: LoanDecision,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    result = await loans.handle_loan(session, current_user, loan_id, data.action)
    return {"success": True, "loan": result.entity, "credited": result.credited}

@router.post("/{loan_id}/repay")
async def repay_loan(
    loan_id: int,
    data: LoanRepayment,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    loan = await loans.repay_loan(session, current_user, loan_id, data.amount)
    return {"success": True, "loan": loan, "balance": current_user.balance}
