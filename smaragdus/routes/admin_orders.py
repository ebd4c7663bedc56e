# smaragdus/routes/admin_orders.py
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..constants import ORDER_STATUSES
from ..db import get_db
from ..deps import require_admin
from ..errors import NotFound, ValidationFailed, ok
from ..models import UserProfile
from ..services import exports, notifications, orders
from ..services.catalog import split_csv

router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"])

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class StatusIn(BaseModel):
    new_status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class AdminCancelIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class BulkStatusIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    order_ids: List[str] = Field(min_length=1, max_length=100)
    new_status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderFilters(BaseModel):
    statuses: List[str] = []
    user_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


def order_filters(status: Optional[str] = Query(None),
                  user_id: Optional[str] = Query(None),
                  date_from: Optional[datetime] = Query(None),
                  date_to: Optional[datetime] = Query(None),
                  search: Optional[str] = Query(None, max_length=200)) -> OrderFilters:
    statuses = split_csv(status)
    for s in statuses:
        if s not in ORDER_STATUSES:
            raise ValidationFailed(f"Unknown status: {s}")
    return OrderFilters(statuses=statuses, user_id=user_id, date_from=date_from, date_to=date_to, search=search)


async def _get_order_or_404(db: AsyncSession, order_id: str):
    order = await crud.get_order(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


@router.get("")
async def list_orders(filters: OrderFilters = Depends(order_filters),
                      page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await orders.list_admin_orders(db, page=page, limit=limit, **filters.model_dump()))


@router.get("/export")
async def export_orders(filters: OrderFilters = Depends(order_filters),
                        admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    data = await orders.list_admin_orders(db, paginate=False, **filters.model_dump())
    return Response(
        content=exports.orders_csv(data["orders"]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{exports.export_filename("orders")}"'},
    )


@router.put("/bulk-status")
async def bulk_status(payload: BulkStatusIn, background: BackgroundTasks,
                      admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    result = await orders.bulk_update_status(db, payload.order_ids, payload.new_status, admin.user_id, payload.notes)
    if result["updatedCount"] == 0:
        raise ValidationFailed("No orders were updated", details=result)
    for order_id in result["updatedOrders"]:
        background.add_task(notifications.on_order_status_changed, order_id)
    return ok(result, f"Updated {result['updatedCount']} orders")


@router.get("/{order_id}")
async def get_order(order_id: str, admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    order = await _get_order_or_404(db, order_id)
    data = await orders.serialize_order(db, order, with_events=True, include_internal=True)
    customer = await crud.get_user_by_id(db, order.user_id)
    data["customer"] = {"name": customer.name, "email": customer.email} if customer else None
    return ok(data)


@router.put("/{order_id}/status")
async def update_status(order_id: str, payload: StatusIn, background: BackgroundTasks,
                        admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    order = await _get_order_or_404(db, order_id)
    order = await orders.change_status(db, order, payload.new_status, admin.user_id, notes=payload.notes)
    background.add_task(notifications.on_order_status_changed, order.id)
    return ok(await orders.serialize_order(db, order, with_events=True, include_internal=True), "Order status updated")


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, payload: AdminCancelIn, background: BackgroundTasks,
                       admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    order = await _get_order_or_404(db, order_id)
    order = await orders.change_status(db, order, "cancelled", admin.user_id, notes=payload.reason)
    background.add_task(notifications.on_order_status_changed, order.id)
    return ok(await orders.serialize_order(db, order, with_events=True, include_internal=True), "Order cancelled")
