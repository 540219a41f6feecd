from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.deps import get_current_user
from ..core.log import get_logger
from ..core.schemas import CamelModel
from ..database import get_session
from ..models import ShoppingItemStatus, ShoppingTrip, User
from ..services import shopping

logger = get_logger(__name__)

router = APIRouter(prefix="/api/shopping", tags=["Shopping"])


class ItemCreate(CamelModel):
    item_name: str = Field(alias="itemName", min_length=1)
    quantity: int = Field(default=1, ge=1)
    est_price: Optional[Decimal] = Field(default=None, ge=0, alias="estPrice")


class ItemUpdate(CamelModel):
    item_id: int = Field(alias="itemId")
    # "deleted" removes the item
    status: str

    @model_validator(mode="after")
    def check_status(self):
        if self.status != "deleted":
            ShoppingItemStatus(self.status)
        return self


class Checkout(CamelModel):
    total_amount: Decimal = Field(gt=0, alias="totalAmount")
    store_name: str = Field(default=shopping.DEFAULT_STORE, alias="storeName")
    missing_item_ids: List[int] = Field(default_factory=list, alias="missingItemIds")


class TripCopy(CamelModel):
    trip_id: int = Field(alias="tripId")


def trip_view(trip: ShoppingTrip, items=None) -> dict:
    items = trip.items if items is None else items
    return {
        "id": trip.id,
        "group_id": trip.group_id,
        "store_name": trip.store_name,
        "trip_date": trip.trip_date,
        "nickname": trip.nickname,
        "total_amount": trip.total_amount,
        "transaction_id": trip.transaction_id,
        "items": [
            {"item_name": item.item_name, "quantity": item.quantity, "price": item.price}
            for item in items
        ],
    }


@router.get("/list")
async def read_list(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    return {"success": True, "items": await shopping.list_items(session, current_user.group_id)}


@router.post("/add")
async def add_item(
    data: ItemCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    item = await shopping.add_item(
        session, current_user,
        item_name=data.item_name,
        quantity=data.quantity,
        est_price=data.est_price,
    )
    return {"success": True, "item": item}


@router.post("/update")
async def update_item(
    data: ItemUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    if data.status == "deleted":
        await shopping.update_item(session, current_user, data.item_id, delete=True)
        return {"success": True}
    item = await shopping.update_item(
        session, current_user, data.item_id, status=ShoppingItemStatus(data.status)
    )
    return {"success": True, "item": item}


@router.post("/checkout")
async def checkout(
    data: Checkout,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    trip, items = await shopping.checkout(
        session, current_user,
        total_amount=data.total_amount,
        store_name=data.store_name,
        missing_item_ids=data.missing_item_ids,
    )
    return {"success": True, "trip": trip_view(trip, items), "balance": current_user.balance}


@router.get("/history")
async def read_history(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    try:
        trips = [trip_view(trip) for trip in await shopping.trip_history(session, current_user.group_id)]
    except SQLAlchemyError as exc:
        logger.error("trip_history_failed", group_id=current_user.group_id, error=str(exc))
        trips = []
    return {"success": True, "trips": trips}


@router.post("/copy")
async def copy_trip(
    data: TripCopy,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    items = await shopping.copy_trip(session, current_user, data.trip_id)
    return {"success": True, "added": len(items)}
