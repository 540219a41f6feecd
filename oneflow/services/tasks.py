from decimal import Decimal
from typing import Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import AuthorizationError, NotFoundError, ValidationError
from ..database import unit_of_work
from ..models import Task, TaskStatus, User, UserRole, UserStatus
from ..money import ZERO, to_decimal
from .workflow import TASK_WORKFLOW, TransitionResult, advance, load_for_update

MEMBER_STATUSES = (TaskStatus.DONE, TaskStatus.COMPLETED_SELF)


async def create_task(session: AsyncSession, admin: User, *, title: str,
                      reward: Decimal, assigned_to: int) -> Task:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can create tasks")
    if to_decimal(reward) < ZERO:
        raise ValidationError("Reward cannot be negative")

    async with unit_of_work(session):
        assignee = await session.get(User, assigned_to)
        if not assignee:
            raise NotFoundError("User not found")
        if assignee.group_id != admin.group_id:
            raise AuthorizationError("This is not your group member!")
        if assignee.status != UserStatus.ACTIVE:
            raise ValidationError("Tasks can only be assigned to active members")

        task = Task(
            group_id=admin.group_id,
            title=title,
            reward=to_decimal(reward),
            assigned_to=assignee.id,
            created_by=admin.id,
            status=TaskStatus.PENDING,
        )
        session.add(task)

    await session.refresh(task)
    return task


async def list_tasks(session: AsyncSession, user: User) -> list[Task]:
    if user.role == UserRole.ADMIN:
        stmt = select(Task).where(Task.group_id == user.group_id)
    else:
        stmt = select(Task).where(Task.assigned_to == user.id)
    result = await session.exec(stmt.order_by(Task.id))
    return list(result.all())


async def update_task(session: AsyncSession, actor: User, task_id: int, *,
                      title: Optional[str] = None,
                      reward: Optional[Decimal] = None,
                      status: Optional[TaskStatus] = None) -> TransitionResult:
    """Edit a task and/or move it along its workflow in one unit of work."""

    async with unit_of_work(session):
        task = await load_for_update(session, TASK_WORKFLOW, task_id)
        if task.group_id != actor.group_id:
            raise AuthorizationError("Not your group's task")

        is_admin = actor.role == UserRole.ADMIN

        if title is not None or reward is not None:
            if not is_admin:
                raise AuthorizationError("Only admins can edit tasks")
            if task.status == TaskStatus.APPROVED:
                raise ValidationError("Task is already paid")
            if title is not None:
                task.title = title
            if reward is not None:
                if to_decimal(reward) < ZERO:
                    raise ValidationError("Reward cannot be negative")
                task.reward = to_decimal(reward)
            session.add(task)

        if status is None:
            result = TransitionResult(task, task.status, task.status, ZERO)
        else:
            if not is_admin:
                if task.assigned_to != actor.id:
                    raise AuthorizationError("Not your task!")
                if status not in MEMBER_STATUSES:
                    raise AuthorizationError("Only admins can approve tasks")
            result = await advance(session, TASK_WORKFLOW, task, status)

    return result
