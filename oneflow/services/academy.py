"""Quiz bundles, assignments and graded submissions."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..database import unit_of_work
from ..models import AssignmentStatus, QuizBundle, QuizType, User, UserAssignment, UserRole
from ..money import ZERO, to_decimal
from . import ledger
from .workflow import ASSIGNMENT_WORKFLOW, TransitionResult, advance, load_for_update


def naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def score_answers(bundle: QuizBundle, answers: Sequence[int]) -> int:
    questions = bundle.questions or []
    if not questions:
        return 0
    correct = sum(
        1 for question, answer in zip(questions, answers)
        if answer == question.get("correct")
    )
    return round(correct * 100 / len(questions))


def effective_reward(assignment: UserAssignment, bundle: QuizBundle) -> Decimal:
    if assignment.custom_reward is not None:
        return to_decimal(assignment.custom_reward)
    return to_decimal(bundle.reward)


def grade(assignment: UserAssignment, bundle: QuizBundle, score: int, now: datetime) -> tuple[AssignmentStatus, Decimal]:
    """Outcome and reward for a submission; past the deadline is always late and unpaid."""

    if assignment.deadline is not None and now > assignment.deadline:
        return AssignmentStatus.LATE, ZERO
    if score >= bundle.threshold:
        return AssignmentStatus.COMPLETED, effective_reward(assignment, bundle)
    return AssignmentStatus.FAILED, ZERO


async def list_bundles(session: AsyncSession, *, type: Optional[QuizType] = None,
                       age_group: Optional[str] = None) -> list[QuizBundle]:
    stmt = select(QuizBundle)
    if type is not None:
        stmt = stmt.where(QuizBundle.type == type)
    if age_group:
        stmt = stmt.where(QuizBundle.age_group == age_group)
    result = await session.exec(stmt.order_by(QuizBundle.id))
    return list(result.all())


async def get_bundle(session: AsyncSession, bundle_id: int) -> QuizBundle:
    bundle = await session.get(QuizBundle, bundle_id)
    if not bundle:
        raise NotFoundError("Bundle not found")
    return bundle


async def assign_bundle(session: AsyncSession, admin: User, *, user_id: int, bundle_id: int,
                        custom_reward: Optional[Decimal] = None,
                        deadline: Optional[datetime] = None) -> UserAssignment:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can assign bundles")
    if custom_reward is not None and to_decimal(custom_reward) < ZERO:
        raise ValidationError("Reward cannot be negative")

    async with unit_of_work(session):
        await get_bundle(session, bundle_id)
        member = await session.get(User, user_id)
        if not member:
            raise NotFoundError("User not found")
        if member.group_id != admin.group_id:
            raise AuthorizationError("This is not your group member!")

        assignment = UserAssignment(
            user_id=member.id,
            bundle_id=bundle_id,
            status=AssignmentStatus.ASSIGNED,
            custom_reward=to_decimal(custom_reward) if custom_reward is not None else None,
            deadline=naive_utc(deadline),
            assigned_by=admin.id,
        )
        session.add(assignment)

    await session.refresh(assignment)
    return assignment


async def list_assignments(session: AsyncSession, user_id: int) -> list[UserAssignment]:
    stmt = (
        select(UserAssignment)
        .where(UserAssignment.user_id == user_id)
        .order_by(UserAssignment.assigned_at.desc(), UserAssignment.id.desc())
    )
    result = await session.exec(stmt)
    return list(result.all())


async def _open_assignment(session: AsyncSession, user: User, bundle_id: int,
                           assignment_id: Optional[int]) -> UserAssignment:
    if assignment_id is not None:
        assignment = await load_for_update(session, ASSIGNMENT_WORKFLOW, assignment_id)
        if assignment.user_id != user.id:
            raise AuthorizationError("Not your assignment")
        if assignment.bundle_id != bundle_id:
            raise ValidationError("Assignment is for a different bundle")
        return assignment

    stmt = (
        select(UserAssignment)
        .where(UserAssignment.user_id == user.id, UserAssignment.bundle_id == bundle_id)
        .order_by(UserAssignment.id)
        .with_for_update()
    )
    existing = list((await session.exec(stmt)).all())
    for assignment in existing:
        if assignment.status == AssignmentStatus.ASSIGNED:
            return assignment
    if any(a.status == AssignmentStatus.COMPLETED for a in existing):
        raise ConflictError("Bundle already completed")

    # self-study attempt without an admin assignment
    assignment = UserAssignment(user_id=user.id, bundle_id=bundle_id, status=AssignmentStatus.ASSIGNED)
    session.add(assignment)
    await session.flush()
    return assignment


async def submit_quiz(session: AsyncSession, user: User, *, bundle_id: int,
                      answers: Optional[Sequence[int]] = None,
                      score: Optional[int] = None,
                      assignment_id: Optional[int] = None,
                      now: Optional[datetime] = None) -> TransitionResult:
    if answers is None and score is None:
        raise ValidationError("Either answers or score is required")
    if score is not None and not 0 <= score <= 100:
        raise ValidationError("Score must be between 0 and 100")
    now = now or datetime.utcnow()

    async with unit_of_work(session):
        bundle = await get_bundle(session, bundle_id)
        # serialises a member's submissions while no assignment row exists to lock
        await ledger.lock_user(session, user.id)
        assignment = await _open_assignment(session, user, bundle_id, assignment_id)
        if assignment.status != AssignmentStatus.ASSIGNED:
            raise ConflictError("Assignment already submitted")

        final_score = score_answers(bundle, answers) if answers is not None else score
        status, reward = grade(assignment, bundle, final_score, now)

        assignment.score = final_score
        assignment.reward_earned = reward
        assignment.submitted_at = now
        result = await advance(session, ASSIGNMENT_WORKFLOW, assignment, status)

    return result
