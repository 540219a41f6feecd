# oneflow/routers/tasks.py
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import Optional
from decimal import Decimal

from ..core.schemas import CamelModel
from ..database import get_session
from ..models import TaskStatus, User
from ..core.deps import get_current_admin, get_current_user
from ..services import tasks

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])

class TaskCreate(CamelModel):
    title: str = Field(min_length=1)
    reward: Decimal = Field(default=Decimal("0.00"), ge=0)
    assigned_to: int = Field(alias="assignedTo")

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    reward: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[TaskStatus] = None

@router.post("")
async def create_task(
    task_data: TaskCreate,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session)
):
    task = await tasks.create_task(
        session, current_user,
        title=task_data.title,
        reward=task_data.reward,
        assigned_to=task_data.assigned_to,
    )
    return {"success": True, "task": task}

@router.get("")
async def get_tasks(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    return {"success": True, "tasks": await tasks.list_tasks(session, current_user)}

@router.put("/{task_id}")
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    result = await tasks.update_task(
        session, current_user, task_id,
        title=task_data.title,
        reward=task_data.reward,
        status=task_data.status,
    )
    return {"success": True, "task": result.entity, "credited": result.credited}
