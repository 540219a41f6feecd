"""Terminal-transition-with-credit state machines.

Tasks, loans and quiz assignments all move through a small set of states and
pay into the ledger exactly once, when they enter their crediting state. A
:class:`RewardWorkflow` describes one such entity; :func:`advance` applies a
transition and the credit inside the caller's unit of work.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Type

from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.log import get_logger
from ..models import (
    AssignmentStatus,
    Loan,
    LoanStatus,
    Task,
    TaskStatus,
    TransactionCategory,
    UserAssignment,
)
from ..money import ZERO, to_decimal
from . import ledger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RewardWorkflow:
    name: str
    model: Type[SQLModel]
    transitions: Mapping[Enum, frozenset]
    credit_status: Enum
    category: TransactionCategory
    amount: Callable[[Any], Decimal]
    beneficiary: Callable[[Any], int]
    description: Callable[[Any], str]
    # lets an entity redirect a requested state (e.g. zero-reward tasks skip review)
    resolve: Callable[[Any, Enum], Enum] = lambda entity, target: target

    @property
    def terminal(self) -> frozenset:
        return frozenset(state for state, targets in self.transitions.items() if not targets)

    def allows(self, current: Enum, target: Enum) -> bool:
        return target in self.transitions.get(current, frozenset())


@dataclass
class TransitionResult:
    entity: Any
    previous: Enum
    status: Enum
    credited: Decimal
    transaction_id: Optional[int] = None

    @property
    def changed(self) -> bool:
        return self.previous != self.status


async def load_for_update(session: AsyncSession, workflow: RewardWorkflow, entity_id: int):
    entity = await session.get(workflow.model, entity_id, with_for_update=True, populate_existing=True)
    if entity is None:
        raise NotFoundError(f"{workflow.name.capitalize()} not found")
    return entity


async def advance(session: AsyncSession, workflow: RewardWorkflow, entity: Any, target: Enum) -> TransitionResult:
    """Move ``entity`` to ``target`` and credit the ledger if it enters the credit state.

    ``entity`` must have been loaded with :func:`load_for_update` in the same
    session. Repeating a transition into the credit state is a no-op.
    """

    previous = entity.status
    target = workflow.resolve(entity, target)

    if previous == target and target == workflow.credit_status:
        return TransitionResult(entity, previous, previous, ZERO)

    if not workflow.allows(previous, target):
        raise ValidationError(
            f"Cannot move {workflow.name} from {previous.value} to {target.value}"
        )

    entity.status = target
    if hasattr(entity, "updated_at"):
        entity.updated_at = datetime.utcnow()
    session.add(entity)

    credited = ZERO
    transaction_id = None
    if target == workflow.credit_status:
        amount = to_decimal(workflow.amount(entity))
        if amount > ZERO:
            transaction = await ledger.credit(
                session,
                workflow.beneficiary(entity),
                amount,
                description=workflow.description(entity),
                category=workflow.category,
            )
            credited = amount
            transaction_id = transaction.id
            logger.info(
                "reward_credited",
                workflow=workflow.name,
                entity_id=entity.id,
                amount=str(amount),
                transaction_id=transaction_id,
            )

    await session.flush()
    return TransitionResult(entity, previous, target, credited, transaction_id)


def _resolve_task(task: Task, target: TaskStatus) -> TaskStatus:
    if target in (TaskStatus.DONE, TaskStatus.COMPLETED_SELF) and to_decimal(task.reward) <= ZERO:
        return TaskStatus.APPROVED
    return target


TASK_WORKFLOW = RewardWorkflow(
    name="task",
    model=Task,
    transitions={
        TaskStatus.PENDING: frozenset({TaskStatus.DONE, TaskStatus.COMPLETED_SELF, TaskStatus.APPROVED}),
        TaskStatus.DONE: frozenset({TaskStatus.APPROVED, TaskStatus.PENDING}),
        TaskStatus.COMPLETED_SELF: frozenset({TaskStatus.APPROVED, TaskStatus.PENDING}),
        TaskStatus.APPROVED: frozenset(),
    },
    credit_status=TaskStatus.APPROVED,
    category=TransactionCategory.SALARY,
    amount=lambda task: task.reward,
    beneficiary=lambda task: task.assigned_to,
    description=lambda task: f"Payment for task: {task.title}",
    resolve=_resolve_task,
)

LOAN_WORKFLOW = RewardWorkflow(
    name="loan",
    model=Loan,
    transitions={
        LoanStatus.PENDING: frozenset({LoanStatus.ACTIVE, LoanStatus.REJECTED}),
        LoanStatus.ACTIVE: frozenset({LoanStatus.PAID}),
        LoanStatus.REJECTED: frozenset(),
        LoanStatus.PAID: frozenset(),
    },
    credit_status=LoanStatus.ACTIVE,
    category=TransactionCategory.LOANS,
    amount=lambda loan: loan.original_amount,
    beneficiary=lambda loan: loan.user_id,
    description=lambda loan: f"Loan issued: {loan.reason}" if loan.reason else "Loan issued",
)

ASSIGNMENT_WORKFLOW = RewardWorkflow(
    name="assignment",
    model=UserAssignment,
    transitions={
        AssignmentStatus.ASSIGNED: frozenset(
            {AssignmentStatus.COMPLETED, AssignmentStatus.FAILED, AssignmentStatus.LATE}
        ),
        AssignmentStatus.COMPLETED: frozenset(),
        AssignmentStatus.FAILED: frozenset(),
        AssignmentStatus.LATE: frozenset(),
    },
    credit_status=AssignmentStatus.COMPLETED,
    category=TransactionCategory.BONUS,
    amount=lambda assignment: assignment.reward_earned,
    beneficiary=lambda assignment: assignment.user_id,
    description=lambda assignment: f"Academy reward (assignment #{assignment.id})",
)
