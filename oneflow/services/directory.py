"""Groups, memberships and who may see whose money."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import (
    AuthError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..core.log import get_logger
from ..core.security import get_password_hash, verify_password
from ..database import unit_of_work
from ..models import Budget, BudgetCategory, Group, GroupType, User, UserRole, UserStatus
from ..money import ZERO, to_decimal

logger = get_logger(__name__)

MONEY_FIELDS = ("balance", "allowance_amount", "interest_rate")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def can_see_money(viewer: User, subject: User) -> bool:
    return viewer.role == UserRole.ADMIN or viewer.id == subject.id


def user_view(user: User, viewer: Optional[User] = None) -> dict:
    """Public shape of a user; money fields only for admins and the user themself."""

    data = {
        "id": user.id,
        "group_id": user.group_id,
        "nickname": user.nickname,
        "role": user.role,
        "status": user.status,
        "birth_year": user.birth_year,
        "balance": to_decimal(user.balance),
        "allowance_amount": to_decimal(user.allowance_amount),
        "interest_rate": to_decimal(user.interest_rate),
    }
    if viewer is not None and not can_see_money(viewer, user):
        for key in MONEY_FIELDS:
            data[key] = None
    return data


def group_view(group: Group) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "admin_email": group.admin_email,
        "type": group.type,
    }


async def _group_by_email(session: AsyncSession, email: str) -> Optional[Group]:
    stmt = select(Group).where(Group.admin_email == normalize_email(email))
    return (await session.exec(stmt)).first()


async def _nickname_taken(session: AsyncSession, group_id: int, nickname: str,
                          exclude_id: Optional[int] = None) -> bool:
    stmt = select(User).where(
        User.group_id == group_id,
        func.lower(User.nickname) == nickname.strip().lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return (await session.exec(stmt)).first() is not None


async def create_group(session: AsyncSession, *, group_name: str, admin_email: str,
                       admin_nickname: str, password: str,
                       type: GroupType = GroupType.FAMILY,
                       birth_year: Optional[int] = None) -> tuple[Group, User]:
    async with unit_of_work(session):
        if await _group_by_email(session, admin_email):
            raise ConflictError("Email exists")

        group = Group(name=group_name, admin_email=normalize_email(admin_email), type=type)
        session.add(group)
        await session.flush()

        admin = User(
            group_id=group.id,
            nickname=admin_nickname.strip(),
            password_hash=get_password_hash(password),
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
            birth_year=birth_year,
            balance=ZERO,
        )
        session.add(admin)

        for category in BudgetCategory:
            session.add(Budget(group_id=group.id, user_id=None, category=category, limit_amount=ZERO))

    logger.info("group_created", group_id=group.id, admin_id=admin.id)
    return group, admin


async def join_group(session: AsyncSession, *, group_email: str, nickname: str, password: str,
                     birth_year: Optional[int] = None) -> User:
    async with unit_of_work(session):
        group = await _group_by_email(session, group_email)
        if not group:
            raise NotFoundError("Group not found")
        if await _nickname_taken(session, group.id, nickname):
            raise ConflictError("Nickname taken")

        user = User(
            group_id=group.id,
            nickname=nickname.strip(),
            password_hash=get_password_hash(password),
            role=UserRole.MEMBER,
            status=UserStatus.PENDING,
            birth_year=birth_year,
            balance=ZERO,
        )
        session.add(user)

    logger.info("member_joined", group_id=group.id, user_id=user.id)
    return user


async def login(session: AsyncSession, *, group_email: str, nickname: str, password: str) -> tuple[Group, User]:
    async with unit_of_work(session):
        group = await _group_by_email(session, group_email)
        if not group:
            raise AuthError("Group not found")

        stmt = select(User).where(
            User.group_id == group.id,
            func.lower(User.nickname) == nickname.strip().lower(),
        )
        user = (await session.exec(stmt)).first()
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        if user.status != UserStatus.ACTIVE:
            raise AuthorizationError("Account pending")

        user.last_login = datetime.utcnow()
        session.add(user)

    return group, user


async def get_user(session: AsyncSession, viewer: User, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user or user.group_id != viewer.group_id:
        raise NotFoundError("User not found")
    if not can_see_money(viewer, user):
        raise AuthorizationError("Forbidden")
    return user


async def update_user(session: AsyncSession, actor: User, user_id: int, *,
                      nickname: Optional[str] = None,
                      birth_year: Optional[int] = None,
                      password: Optional[str] = None) -> User:
    if nickname is None and birth_year is None and not password:
        raise ValidationError("Nothing to update")

    async with unit_of_work(session):
        user = await get_user(session, actor, user_id)
        if nickname is not None:
            if await _nickname_taken(session, user.group_id, nickname, exclude_id=user.id):
                raise ConflictError("Nickname taken")
            user.nickname = nickname.strip()
        if birth_year is not None:
            user.birth_year = birth_year
        if password:
            user.password_hash = get_password_hash(password)
        session.add(user)

    return user


async def update_settings(session: AsyncSession, admin: User, user_id: int, *,
                          allowance_amount: Optional[Decimal] = None,
                          interest_rate: Optional[Decimal] = None) -> User:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can change allowance settings")
    if allowance_amount is None and interest_rate is None:
        raise ValidationError("Nothing to update")

    async with unit_of_work(session):
        user = await get_user(session, admin, user_id)
        if allowance_amount is not None:
            if to_decimal(allowance_amount) < ZERO:
                raise ValidationError("Allowance cannot be negative")
            user.allowance_amount = to_decimal(allowance_amount)
        if interest_rate is not None:
            if to_decimal(interest_rate) < ZERO:
                raise ValidationError("Interest rate cannot be negative")
            user.interest_rate = to_decimal(interest_rate)
        session.add(user)

    return user


async def approve_user(session: AsyncSession, admin: User, user_id: int) -> User:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Only admins can approve members")

    async with unit_of_work(session):
        user = await session.get(User, user_id, with_for_update=True)
        if not user or user.group_id != admin.group_id:
            raise NotFoundError("User not found")
        user.status = UserStatus.ACTIVE
        session.add(user)

    logger.info("member_approved", group_id=admin.group_id, user_id=user.id)
    return user


async def list_members(session: AsyncSession, viewer: User, group_id: int) -> list[dict]:
    if group_id != viewer.group_id:
        raise AuthorizationError("Forbidden")
    stmt = (
        select(User)
        .where(User.group_id == group_id, User.status == UserStatus.ACTIVE)
        .order_by(User.id)
    )
    return [user_view(user, viewer) for user in (await session.exec(stmt)).all()]


async def list_pending(session: AsyncSession, admin: User) -> list[User]:
    if admin.role != UserRole.ADMIN:
        raise AuthorizationError("Forbidden")
    stmt = (
        select(User)
        .where(User.group_id == admin.group_id, User.status == UserStatus.PENDING)
        .order_by(User.id)
    )
    return list((await session.exec(stmt)).all())
