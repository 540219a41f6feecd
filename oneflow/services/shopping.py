from decimal import Decimal
from typing import Iterable, Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.errors import AuthorizationError, NotFoundError, ValidationError
from ..core.log import get_logger
from ..database import unit_of_work
from ..models import (
    ShoppingItem,
    ShoppingItemStatus,
    ShoppingTrip,
    ShoppingTripItem,
    TransactionCategory,
    TransactionType,
    User,
)
from ..money import ZERO, to_decimal
from . import ledger

logger = get_logger(__name__)

DEFAULT_STORE = "Supermarket"


async def list_items(session: AsyncSession, group_id: int) -> list[ShoppingItem]:
    stmt = (
        select(ShoppingItem)
        .where(ShoppingItem.group_id == group_id, ShoppingItem.status != ShoppingItemStatus.BOUGHT)
        .order_by(ShoppingItem.id.desc())
    )
    return list((await session.exec(stmt)).all())


async def add_item(session: AsyncSession, user: User, *, item_name: str, quantity: int = 1,
                   est_price: Optional[Decimal] = None) -> ShoppingItem:
    if not item_name.strip():
        raise ValidationError("Item name is required")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    async with unit_of_work(session):
        item = ShoppingItem(
            group_id=user.group_id,
            item_name=item_name.strip(),
            quantity=quantity,
            requester_id=user.id,
            requester_name=user.nickname,
            status=ShoppingItemStatus.PENDING,
            est_price=to_decimal(est_price) if est_price is not None else None,
        )
        session.add(item)

    await session.refresh(item)
    return item


async def update_item(session: AsyncSession, user: User, item_id: int, *,
                      status: Optional[ShoppingItemStatus] = None, delete: bool = False) -> Optional[ShoppingItem]:
    async with unit_of_work(session):
        item = await session.get(ShoppingItem, item_id, with_for_update=True)
        if not item:
            raise NotFoundError("Item not found")
        if item.group_id != user.group_id:
            raise AuthorizationError("Not your group's list")

        if delete:
            await session.delete(item)
            return None
        if status is None:
            raise ValidationError("Status is required")
        item.status = status
        session.add(item)

    return item


async def checkout(session: AsyncSession, user: User, *, total_amount: Decimal,
                   store_name: str = DEFAULT_STORE,
                   missing_item_ids: Iterable[int] = ()) -> tuple[ShoppingTrip, list[ShoppingTripItem]]:
    """Close a shopping trip.

    In-cart items of the group are marked bought, missing ones return to the
    list, and the total is debited from the shopper as one grocery expense.
    """

    total = to_decimal(total_amount)
    if total <= ZERO:
        raise ValidationError("Total amount must be greater than zero")
    missing = {int(item_id) for item_id in missing_item_ids}

    async with unit_of_work(session):
        stmt = (
            select(ShoppingItem)
            .where(ShoppingItem.group_id == user.group_id, ShoppingItem.status == ShoppingItemStatus.IN_CART)
            .order_by(ShoppingItem.id)
            .with_for_update()
        )
        in_cart = list((await session.exec(stmt)).all())
        bought = [item for item in in_cart if item.id not in missing]

        transaction = await ledger.record(
            session, user.id, total,
            description=f"Shopping at {store_name}",
            category=TransactionCategory.GROCERIES,
            type=TransactionType.EXPENSE,
        )

        trip = ShoppingTrip(
            group_id=user.group_id,
            user_id=user.id,
            nickname=user.nickname,
            store_name=store_name,
            total_amount=total,
            transaction_id=transaction.id,
        )
        session.add(trip)
        await session.flush()

        trip_items = []
        for item in bought:
            item.status = ShoppingItemStatus.BOUGHT
            session.add(item)
            trip_item = ShoppingTripItem(
                trip_id=trip.id,
                item_name=item.item_name,
                quantity=item.quantity,
                price=item.est_price,
            )
            session.add(trip_item)
            trip_items.append(trip_item)

        if missing:
            stmt = select(ShoppingItem).where(
                ShoppingItem.group_id == user.group_id, ShoppingItem.id.in_(missing)
            )
            for item in (await session.exec(stmt)).all():
                item.status = ShoppingItemStatus.PENDING
                session.add(item)

    logger.info("shopping_checkout", trip_id=trip.id, user_id=user.id, total=str(total), items=len(bought))
    return trip, trip_items


async def trip_history(session: AsyncSession, group_id: int) -> list[ShoppingTrip]:
    stmt = (
        select(ShoppingTrip)
        .where(ShoppingTrip.group_id == group_id)
        .order_by(ShoppingTrip.trip_date.desc(), ShoppingTrip.id.desc())
    )
    return list((await session.exec(stmt)).all())


async def copy_trip(session: AsyncSession, user: User, trip_id: int) -> list[ShoppingItem]:
    async with unit_of_work(session):
        trip = await session.get(ShoppingTrip, trip_id)
        if not trip or trip.group_id != user.group_id:
            raise NotFoundError("Trip not found")

        stmt = select(ShoppingTripItem).where(ShoppingTripItem.trip_id == trip.id).order_by(ShoppingTripItem.id)
        added = []
        for past in (await session.exec(stmt)).all():
            item = ShoppingItem(
                group_id=user.group_id,
                item_name=past.item_name,
                quantity=past.quantity or 1,
                requester_id=user.id,
                requester_name=user.nickname,
                status=ShoppingItemStatus.PENDING,
                est_price=past.price,
            )
            session.add(item)
            added.append(item)

    return added
