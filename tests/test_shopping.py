from decimal import Decimal

import pytest
from sqlmodel import select

from oneflow.core.errors import InsufficientFundsError, NotFoundError
from oneflow.database import unit_of_work
from oneflow.models import ShoppingItem, ShoppingItemStatus, Transaction, TransactionCategory, User
from oneflow.services import ledger, shopping


async def _list_with_cart(session, kid):
    async with unit_of_work(session):
        await ledger.credit(session, kid.id, 20, description="Gift", category=TransactionCategory.BONUS)
    milk = await shopping.add_item(session, kid, item_name="Milk", quantity=2, est_price=Decimal("1.20"))
    bread = await shopping.add_item(session, kid, item_name="Bread")
    eggs = await shopping.add_item(session, kid, item_name="Eggs", quantity=12)
    for item in (milk, bread, eggs):
        await shopping.update_item(session, kid, item.id, status=ShoppingItemStatus.IN_CART)
    return milk, bread, eggs


def test_checkout_buys_cart_and_returns_missing_items(run, make_family) -> None:
    async def scenario(session):
        _, _, (kid,) = await make_family(session)
        milk, bread, eggs = await _list_with_cart(session, kid)

        trip, trip_items = await shopping.checkout(
            session, kid, total_amount=Decimal("6.40"), store_name="Corner shop", missing_item_ids=[eggs.id]
        )
        remaining = await shopping.list_items(session, kid.group_id)
        groceries = (await session.exec(
            select(Transaction).where(Transaction.category == TransactionCategory.GROCERIES)
        )).all()
        return trip, trip_items, remaining, groceries, kid.balance

    trip, trip_items, remaining, groceries, balance = run(scenario)

    assert trip.store_name == "Corner shop"
    assert trip.total_amount == Decimal("6.40")
    assert sorted(item.item_name for item in trip_items) == ["Bread", "Milk"]
    assert [(item.item_name, item.status) for item in remaining] == [("Eggs", ShoppingItemStatus.PENDING)]
    assert len(groceries) == 1
    assert groceries[0].id == trip.transaction_id
    assert balance == Decimal("13.60")


def test_checkout_without_money_keeps_the_cart(run, make_family) -> None:
    async def scenario(session):
        _, _, (kid,) = await make_family(session)
        await _list_with_cart(session, kid)
        kid_id, group_id = kid.id, kid.group_id

        with pytest.raises(InsufficientFundsError):
            await shopping.checkout(session, kid, total_amount=Decimal("25"))

        items = (await session.exec(
            select(ShoppingItem).where(ShoppingItem.group_id == group_id)
            .execution_options(populate_existing=True)
        )).all()
        kid = await session.get(User, kid_id, populate_existing=True)
        return {item.status for item in items}, kid.balance, await shopping.trip_history(session, group_id)

    statuses, balance, trips = run(scenario)

    assert statuses == {ShoppingItemStatus.IN_CART}
    assert balance == Decimal("20.00")
    assert trips == []


def test_copy_trip_re_adds_items(run, make_family) -> None:
    async def scenario(session):
        _, admin, (kid,) = await make_family(session)
        await _list_with_cart(session, kid)
        trip, _ = await shopping.checkout(session, kid, total_amount=Decimal("9"))

        copied = await shopping.copy_trip(session, admin, trip.id)
        history = await shopping.trip_history(session, admin.group_id)
        return copied, [past.id for past in history], trip.id

    copied, history_ids, trip_id = run(scenario)

    assert sorted(item.item_name for item in copied) == ["Bread", "Eggs", "Milk"]
    assert all(item.status == ShoppingItemStatus.PENDING for item in copied)
    assert history_ids == [trip_id]


def test_deleted_items_leave_the_list(run, make_family) -> None:
    async def scenario(session):
        _, _, (kid,) = await make_family(session)
        item = await shopping.add_item(session, kid, item_name="Juice")
        item_id = item.id
        await shopping.update_item(session, kid, item_id, delete=True)
        with pytest.raises(NotFoundError):
            await shopping.update_item(session, kid, item_id, status=ShoppingItemStatus.IN_CART)

    run(scenario)
