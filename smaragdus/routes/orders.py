# smaragdus/routes/orders.py
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CART_MAX_ITEMS, CART_MAX_QUANTITY, CURRENCY_CODES, PAYMENT_TYPES
from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationFailed, ok
from ..models import UserProfile
from ..services import notifications, orders

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderItemIn(BaseModel):
    gemstone_id: str
    quantity: int = Field(default=1, ge=1, le=CART_MAX_QUANTITY)


class CheckoutIn(BaseModel):
    items: Optional[List[OrderItemIn]] = Field(default=None, max_length=CART_MAX_ITEMS)
    payment_type: str = "bank_transfer"
    currency_code: Optional[str] = None
    delivery_address: Optional[Dict] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CancelIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


@router.post("", status_code=status.HTTP_201_CREATED)
async def checkout(payload: CheckoutIn, user: UserProfile = Depends(get_current_user),
                   db: AsyncSession = Depends(get_db)):
    if payload.payment_type not in PAYMENT_TYPES:
        raise ValidationFailed(f"Unsupported payment type: {payload.payment_type}")
    if payload.currency_code and payload.currency_code not in CURRENCY_CODES:
        raise ValidationFailed(f"Unsupported currency: {payload.currency_code}")
    items = [i.model_dump() for i in payload.items] if payload.items is not None else None
    order = await orders.checkout(
        db, user, payload.payment_type, items,
        currency_code=payload.currency_code,
        delivery_address=payload.delivery_address,
        notes=payload.notes,
    )
    return ok(order, "Order created")


@router.get("")
async def list_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await orders.list_user_orders(db, user.user_id, page, limit))


@router.get("/{order_id}")
async def get_order(order_id: str, user: UserProfile = Depends(get_current_user),
                    db: AsyncSession = Depends(get_db)):
    order = await orders.get_user_order(db, user.user_id, order_id)
    return ok(await orders.serialize_order(db, order, with_events=True))


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, background: BackgroundTasks, payload: Optional[CancelIn] = None,
                       user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    order = await orders.cancel_by_user(db, user, order_id, payload.reason if payload else None)
    background.add_task(notifications.on_order_status_changed, order.id)
    return ok(await orders.serialize_order(db, order, with_events=True), "Order cancelled")
