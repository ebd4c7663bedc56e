# smaragdus/services/cart.py
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..constants import CART_MAX_ITEMS, CART_MAX_QUANTITY
from ..db import utcnow
from ..errors import NotFound, ValidationFailed
from ..models import CartItem, Gemstone, UserProfile


def _price_of(g: Gemstone, user: Optional[UserProfile] = None) -> Tuple[float, str]:
    """Unit price and its currency as the gemstone lists it for ``user``."""
    if user is not None and user.role == "premium_customer" and g.premium_price_amount is not None:
        return float(g.premium_price_amount), g.premium_price_currency or g.price_currency or "USD"
    return float(g.price_amount or 0), g.price_currency or "USD"


def _check_quantity(quantity: int):
    if quantity < 1 or quantity > CART_MAX_QUANTITY:
        raise ValidationFailed(f"Quantity must be between 1 and {CART_MAX_QUANTITY}")


async def get_cart_summary(db: AsyncSession, user: UserProfile) -> Dict[str, Any]:
    items = await crud.get_cart_items(db, user.user_id)
    gems = await crud.get_gemstones_by_ids(db, [i.gemstone_id for i in items])
    out_items = []
    subtotal = 0.0
    for i in items:
        g = gems.get(i.gemstone_id)
        if g is None:
            continue
        price, price_currency = _price_of(g, user)
        line_total = round(price * i.quantity, 2)
        if g.in_stock:
            subtotal += line_total
        out_items.append({
            "id": i.id,
            "gemstone_id": g.id,
            "quantity": i.quantity,
            "unit_price": price,
            "line_total": line_total,
            "currency": price_currency,
            "gemstone": {
                "serial_number": g.serial_number,
                "name": g.name,
                "color": g.color,
                "cut": g.cut,
                "clarity": g.clarity,
                "weight_carats": float(g.weight_carats),
                "in_stock": bool(g.in_stock),
            },
            "available": bool(g.in_stock),
            "added_at": i.added_at.isoformat() if i.added_at else None,
        })
    return {
        "items": out_items,
        "item_count": sum(i["quantity"] for i in out_items),
        "subtotal": round(subtotal, 2),
        "currency": out_items[0]["currency"] if out_items else "USD",
    }


async def add_item(db: AsyncSession, user: UserProfile, gemstone_id: str, quantity: int = 1,
                   meta: Optional[Dict] = None) -> Dict[str, Any]:
    _check_quantity(quantity)
    g = await crud.get_gemstone(db, gemstone_id)
    if g is None:
        raise NotFound("Gemstone not found")
    if not g.in_stock:
        raise ValidationFailed("Gemstone is out of stock")

    items = await crud.get_cart_items(db, user.user_id)
    existing = next((i for i in items if i.gemstone_id == gemstone_id), None)
    if existing:
        new_qty = min(existing.quantity + quantity, CART_MAX_QUANTITY)
        await db.execute(
            update(CartItem).where(CartItem.id == existing.id).values(quantity=new_qty, updated_at=utcnow())
        )
    else:
        if len(items) >= CART_MAX_ITEMS:
            raise ValidationFailed(f"Cart cannot contain more than {CART_MAX_ITEMS} items")
        await db.execute(insert(CartItem).values(
            user_id=user.user_id, gemstone_id=gemstone_id, quantity=quantity, meta=meta or {"source": "catalog"}
        ))
    await db.commit()
    return await get_cart_summary(db, user)


async def set_quantity(db: AsyncSession, user: UserProfile, item_id: str, quantity: int) -> Dict[str, Any]:
    _check_quantity(quantity)
    item = await crud.get_cart_item(db, user.user_id, item_id)
    if item is None:
        raise NotFound("Cart item not found")
    await db.execute(update(CartItem).where(CartItem.id == item_id).values(quantity=quantity, updated_at=utcnow()))
    await db.commit()
    return await get_cart_summary(db, user)


async def remove_item(db: AsyncSession, user: UserProfile, item_id: str) -> Dict[str, Any]:
    removed = await crud.remove_cart_item(db, user.user_id, item_id)
    if not removed:
        raise NotFound("Cart item not found")
    return await get_cart_summary(db, user)


async def clear(db: AsyncSession, user: UserProfile) -> Dict[str, Any]:
    await crud.clear_cart(db, user.user_id)
    return await get_cart_summary(db, user)
