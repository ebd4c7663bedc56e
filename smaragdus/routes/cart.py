# smaragdus/routes/cart.py
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CART_MAX_QUANTITY
from ..db import get_db
from ..deps import get_current_user
from ..errors import ok
from ..models import UserProfile
from ..services import cart

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartItemIn(BaseModel):
    gemstone_id: str
    quantity: int = Field(default=1, ge=1, le=CART_MAX_QUANTITY)
    metadata: Optional[Dict] = None


class QuantityIn(BaseModel):
    quantity: int = Field(ge=1, le=CART_MAX_QUANTITY)


@router.get("")
async def get_cart(user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await cart.get_cart_summary(db, user))


@router.post("/items")
async def add_item(payload: CartItemIn, user: UserProfile = Depends(get_current_user),
                   db: AsyncSession = Depends(get_db)):
    summary = await cart.add_item(db, user, payload.gemstone_id, payload.quantity, payload.metadata)
    return ok(summary, "Item added to cart")


@router.put("/items/{item_id}")
async def update_item(item_id: str, payload: QuantityIn, user: UserProfile = Depends(get_current_user),
                      db: AsyncSession = Depends(get_db)):
    return ok(await cart.set_quantity(db, user, item_id, payload.quantity))


@router.delete("/items/{item_id}")
async def remove_item(item_id: str, user: UserProfile = Depends(get_current_user),
                      db: AsyncSession = Depends(get_db)):
    return ok(await cart.remove_item(db, user, item_id), "Item removed from cart")


@router.delete("")
async def clear_cart(user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await cart.clear(db, user), "Cart cleared")
