# smaragdus/services/statistics.py
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import ORDER_STATUSES
from ..db import utcnow
from ..models import Gemstone, Order, OrderItem, UserProfile

RECENT_LIMIT = 5


async def _scalar(db: AsyncSession, q):
    return (await db.execute(q)).scalar_one()


async def dashboard(db: AsyncSession) -> Dict[str, Any]:
    total_gems = await _scalar(db, select(func.count()).select_from(Gemstone))
    in_stock = await _scalar(db, select(func.count()).select_from(Gemstone).where(Gemstone.in_stock.is_(True)))
    avg_price = await _scalar(db, select(func.avg(Gemstone.price_amount)))
    active_users = await _scalar(db, select(func.count()).select_from(UserProfile).where(UserProfile.is_active.is_(True)))
    total_orders = await _scalar(db, select(func.count()).select_from(Order))
    revenue = await _scalar(db, select(func.coalesce(func.sum(Order.total_amount), 0)).where(Order.status != "cancelled"))

    r = await db.execute(select(Order.status, func.count()).group_by(Order.status))
    by_status = {s: 0 for s in ORDER_STATUSES}
    by_status.update(dict(r.all()))

    recent_orders = (await db.execute(
        select(Order).order_by(Order.created_at.desc()).limit(RECENT_LIMIT)
    )).scalars().all()
    recent_gems = (await db.execute(
        select(Gemstone).order_by(Gemstone.created_at.desc()).limit(RECENT_LIMIT)
    )).scalars().all()

    top = await db.execute(
        select(OrderItem.gemstone_id, Gemstone.serial_number, Gemstone.name, func.sum(OrderItem.quantity).label("sold"))
        .join(Gemstone, Gemstone.id == OrderItem.gemstone_id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.status != "cancelled")
        .group_by(OrderItem.gemstone_id, Gemstone.serial_number, Gemstone.name)
        .order_by(func.sum(OrderItem.quantity).desc())
        .limit(RECENT_LIMIT)
    )

    return {
        "totalGemstones": total_gems,
        "inStock": in_stock,
        "outOfStock": total_gems - in_stock,
        "avgGemstonePrice": round(float(avg_price or 0), 2),
        "activeUsers": active_users,
        "totalOrders": total_orders,
        "totalRevenue": round(float(revenue or 0), 2),
        "ordersByStatus": by_status,
        "topSelling": [
            {"gemstone_id": gid, "serial_number": serial, "name": name, "sold": int(sold)}
            for gid, serial, name, sold in top.all()
        ],
        "recentOrders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "status": o.status,
                "total_amount": round(float(o.total_amount), 2),
                "currency_code": o.currency_code,
                "created_at": o.created_at.isoformat(),
            }
            for o in recent_orders
        ],
        "recentGemstones": [
            {
                "id": g.id,
                "serial_number": g.serial_number,
                "name": g.name,
                "price_amount": round(float(g.price_amount), 2),
                "created_at": g.created_at.isoformat(),
            }
            for g in recent_gems
        ],
    }


async def sales(db: AsyncSession, days: int = 30) -> Dict[str, Any]:
    since = (utcnow() - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    rows = (await db.execute(
        select(Order.created_at, Order.total_amount)
        .where(Order.created_at >= since, Order.status != "cancelled")
    )).all()

    daily: Dict[str, Dict[str, Any]] = {}
    for i in range(days):
        day = (since + timedelta(days=i)).date().isoformat()
        daily[day] = {"date": day, "revenue": 0.0, "orders": 0}
    for created_at, amount in rows:
        bucket = daily.get(created_at.date().isoformat())
        if bucket is None:
            continue
        bucket["revenue"] = round(bucket["revenue"] + float(amount or 0), 2)
        bucket["orders"] += 1

    total_revenue = round(sum(d["revenue"] for d in daily.values()), 2)
    total_orders = sum(d["orders"] for d in daily.values())
    return {
        "days": days,
        "totalRevenue": total_revenue,
        "totalOrders": total_orders,
        "averageOrderValue": round(total_revenue / total_orders, 2) if total_orders else 0.0,
        "daily": list(daily.values()),
    }
