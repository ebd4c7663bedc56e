# smaragdus/services/orders.py
import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime
from math import ceil
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, update, delete, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..constants import ORDER_STATUS_TRANSITIONS, USER_CANCELLABLE_STATUSES
from ..db import utcnow
from ..errors import NotFound, ValidationFailed
from ..models import CartItem, Gemstone, Order, OrderItem, UserProfile
from . import currency
from .cart import _price_of

logger = logging.getLogger(__name__)

STATUS_TITLES = {
    "pending": "Order placed",
    "confirmed": "Order confirmed",
    "processing": "Order is being prepared",
    "shipped": "Order shipped",
    "delivered": "Order delivered",
    "cancelled": "Order cancelled",
}


class InvalidStatusTransition(ValidationFailed):
    def __init__(self, current: str, new: str):
        super().__init__(
            f"Cannot change order status from {current} to {new}",
            details={"code": "INVALID_STATUS_TRANSITION", "from": current, "to": new},
        )


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_STATUS_TRANSITIONS.get(current, ())


def new_order_number() -> str:
    return "ORD-" + uuid.uuid4().hex[:8].upper()


def payment_reference(order_id: str) -> str:
    return f"PAY-{order_id[:8].upper()}-{int(time.time() * 1000)}"


def _money(v) -> float:
    return round(float(v or 0), 2)


async def checkout(db: AsyncSession, user: UserProfile, payment_type: str,
                   items: Optional[List[Dict[str, Any]]] = None,
                   currency_code: Optional[str] = None,
                   delivery_address: Optional[Dict] = None,
                   notes: Optional[str] = None) -> Dict[str, Any]:
    if items is None:
        cart = await crud.get_cart_items(db, user.user_id)
        items = [{"gemstone_id": i.gemstone_id, "quantity": i.quantity} for i in cart]
    if not items:
        raise ValidationFailed("Cart is empty")

    wanted: "OrderedDict[str, int]" = OrderedDict()
    for it in items:
        wanted[it["gemstone_id"]] = wanted.get(it["gemstone_id"], 0) + int(it.get("quantity") or 1)

    gems = await crud.get_gemstones_by_ids(db, list(wanted))
    lines = []
    for gid, qty in wanted.items():
        g = gems.get(gid)
        if g is None:
            raise NotFound(f"Gemstone {gid} not found")
        if not g.in_stock or (g.quantity or 0) < qty:
            raise ValidationFailed(f"Gemstone {g.serial_number} is out of stock",
                                   details={"gemstone_id": gid})
        amount, line_currency = _price_of(g, user)
        lines.append((g, qty, amount, line_currency))

    order_currency = currency_code or lines[0][3]
    rates: Dict[str, float] = {}
    if any(line_currency != order_currency for _, _, _, line_currency in lines):
        rates = (await currency.get_rates(db))["rates"]

    subtotal = 0.0
    priced = []
    for g, qty, amount, line_currency in lines:
        try:
            unit = currency.convert(amount, line_currency, order_currency, rates)
        except currency.CurrencyError as e:
            raise ValidationFailed(str(e))
        line_total = round(unit * qty, 2)
        subtotal += line_total
        priced.append((g, qty, unit, line_total))
    subtotal = round(subtotal, 2)
    discount_pct = float(user.discount_percentage or 0)
    discount = round(subtotal * discount_pct / 100, 2) if discount_pct > 0 else 0.0
    total = round(subtotal - discount, 2)

    order_id = str(uuid.uuid4())
    order_number = new_order_number()
    await db.execute(insert(Order).values(
        id=order_id,
        order_number=order_number,
        user_id=user.user_id,
        status="pending",
        payment_type=payment_type,
        currency_code=order_currency,
        subtotal_amount=subtotal,
        discount_amount=discount,
        total_amount=total,
        delivery_address=delivery_address,
        notes=notes,
    ))
    for g, qty, unit, line_total in priced:
        await db.execute(insert(OrderItem).values(
            order_id=order_id, gemstone_id=g.id, quantity=qty, unit_price=unit, line_total=line_total,
        ))
        remaining = max((g.quantity or 0) - qty, 0)
        await db.execute(update(Gemstone).where(Gemstone.id == g.id).values(
            quantity=remaining, in_stock=remaining > 0, updated_at=utcnow(),
        ))
    await db.execute(delete(CartItem).where(
        CartItem.user_id == user.user_id, CartItem.gemstone_id.in_(list(wanted))
    ))
    await crud.add_order_event(
        db, order_id, "created", STATUS_TITLES["pending"],
        description=f"{len(priced)} item(s), total {total:.2f} {order_currency}",
        performed_by=user.user_id, meta={"payment_type": payment_type},
    )
    await db.commit()
    logger.info("order created order=%s user=%s total=%.2f %s", order_number, user.user_id, total, order_currency)

    order = await crud.get_order(db, order_id)
    data = await serialize_order(db, order)
    data["payment_reference"] = payment_reference(order_id)
    return data


async def serialize_order(db: AsyncSession, order: Order, with_events: bool = False,
                          include_internal: bool = False) -> Dict[str, Any]:
    items = await crud.get_order_items(db, order.id)
    gems = await crud.get_gemstones_by_ids(db, [i.gemstone_id for i in items if i.gemstone_id])
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_type": order.payment_type,
        "currency_code": order.currency_code,
        "subtotal_amount": _money(order.subtotal_amount),
        "discount_amount": _money(order.discount_amount),
        "total_amount": _money(order.total_amount),
        "delivery_address": order.delivery_address,
        "notes": order.notes,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        "items": [
            {
                "id": i.id,
                "gemstone_id": i.gemstone_id,
                "serial_number": gems[i.gemstone_id].serial_number if i.gemstone_id in gems else None,
                "name": gems[i.gemstone_id].name if i.gemstone_id in gems else None,
                "quantity": i.quantity,
                "unit_price": _money(i.unit_price),
                "line_total": _money(i.line_total),
            }
            for i in items
        ],
    }
    if with_events:
        events = await crud.get_order_events(db, order.id, include_internal=include_internal)
        data["events"] = [
            {
                "id": e.id,
                "event_type": e.event_type,
                "title": e.title,
                "description": e.description,
                "performed_by": e.performed_by,
                "metadata": e.meta,
                "is_internal": e.is_internal,
                "created_at": e.created_at.isoformat(),
            }
            for e in events
        ]
    return data


async def _restore_stock(db: AsyncSession, order_id: str):
    for item in await crud.get_order_items(db, order_id):
        if not item.gemstone_id:
            continue
        await db.execute(update(Gemstone).where(Gemstone.id == item.gemstone_id).values(
            quantity=Gemstone.quantity + item.quantity, in_stock=True, updated_at=utcnow(),
        ))


async def change_status(db: AsyncSession, order: Order, new_status: str, performed_by: str,
                        notes: Optional[str] = None) -> Order:
    """Move an order along the status graph, recording an event; commits."""
    current = order.status
    if not can_transition(current, new_status):
        raise InvalidStatusTransition(current, new_status)

    await db.execute(update(Order).where(Order.id == order.id).values(status=new_status, updated_at=utcnow()))
    if new_status == "cancelled":
        await _restore_stock(db, order.id)
    await crud.add_order_event(
        db, order.id,
        "cancelled" if new_status == "cancelled" else "status_changed",
        STATUS_TITLES[new_status],
        description=notes,
        performed_by=performed_by,
        meta={"from": current, "to": new_status},
    )
    await db.commit()
    await db.refresh(order)
    logger.info("order %s status %s -> %s by %s", order.order_number, current, new_status, performed_by)
    return order


async def get_user_order(db: AsyncSession, user_id: str, order_id: str) -> Order:
    order = await crud.get_order(db, order_id)
    if order is None or order.user_id != user_id:
        raise NotFound("Order not found")
    return order


async def cancel_by_user(db: AsyncSession, user: UserProfile, order_id: str,
                         reason: Optional[str] = None) -> Order:
    order = await get_user_order(db, user.user_id, order_id)
    if order.status not in USER_CANCELLABLE_STATUSES:
        raise ValidationFailed(f"Order cannot be cancelled in status {order.status}")
    return await change_status(db, order, "cancelled", user.user_id, notes=reason or "Cancelled by customer")


async def list_user_orders(db: AsyncSession, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    total = await crud.count_orders_for_user(db, user_id)
    q = (
        select(Order).where(Order.user_id == user_id)
        .order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    orders = (await db.execute(q)).scalars().all()
    return {
        "orders": [await serialize_order(db, o) for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }


def _admin_conditions(statuses: List[str], user_id: Optional[str], date_from: Optional[datetime],
                      date_to: Optional[datetime], search: Optional[str]) -> list:
    conds = []
    if statuses:
        conds.append(Order.status.in_(statuses))
    if user_id:
        conds.append(Order.user_id == user_id)
    if date_from:
        conds.append(Order.created_at >= date_from)
    if date_to:
        conds.append(Order.created_at <= date_to)
    if search:
        like = f"%{search.strip().lower()}%"
        conds.append(or_(
            func.lower(Order.order_number).like(like),
            Order.user_id.in_(select(UserProfile.user_id).where(or_(
                func.lower(UserProfile.name).like(like),
                func.lower(UserProfile.email).like(like),
            ))),
        ))
    return conds


async def list_admin_orders(db: AsyncSession, statuses: Optional[List[str]] = None,
                            user_id: Optional[str] = None, date_from: Optional[datetime] = None,
                            date_to: Optional[datetime] = None, search: Optional[str] = None,
                            page: int = 1, limit: int = 20, paginate: bool = True) -> Dict[str, Any]:
    conds = _admin_conditions(statuses or [], user_id, date_from, date_to, search)
    where = and_(*conds) if conds else None
    count_q = select(func.count()).select_from(Order)
    q = select(Order, UserProfile.name, UserProfile.email).outerjoin(
        UserProfile, UserProfile.user_id == Order.user_id
    )
    if where is not None:
        count_q = count_q.where(where)
        q = q.where(where)
    total = (await db.execute(count_q)).scalar_one()
    q = q.order_by(Order.created_at.desc())
    if paginate:
        q = q.offset((page - 1) * limit).limit(limit)
    rows = (await db.execute(q)).all()
    orders = []
    for order, name, email in rows:
        data = await serialize_order(db, order)
        data["customer"] = {"name": name, "email": email}
        orders.append(data)
    return {
        "orders": orders,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }


async def bulk_update_status(db: AsyncSession, order_ids: List[str], new_status: str,
                             performed_by: str, notes: Optional[str] = None) -> Dict[str, Any]:
    updated, failed = [], []
    for oid in order_ids:
        try:
            order = await crud.get_order(db, oid)
            if order is None:
                raise NotFound("Order not found")
            await change_status(db, order, new_status, performed_by, notes=notes)
            updated.append(oid)
        except ValidationFailed as e:
            await db.rollback()
            failed.append({"orderId": oid, "error": e.message})
        except NotFound as e:
            failed.append({"orderId": oid, "error": e.message})
    return {
        "updatedCount": len(updated),
        "failedCount": len(failed),
        "updatedOrders": updated,
        "failedOrders": failed,
    }
