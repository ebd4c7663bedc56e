# smaragdus/crud.py
from typing import Dict, List, Optional

from passlib.context import CryptContext
from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .db import utcnow
from .models import (
    UserProfile, UserPreferences, Gemstone, CartItem, Order, OrderItem, OrderEvent,
    Certification, GemstoneImage, GemstoneEnrichment, Origin, gen_uuid,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PREFERENCE_FIELDS = (
    "email_notifications", "order_updates", "marketing_emails",
    "cart_updates", "chat_notifications", "theme",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


# users

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserProfile]:
    q = select(UserProfile).where(func.lower(UserProfile.email) == email.strip().lower())
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[UserProfile]:
    q = select(UserProfile).where(UserProfile.user_id == user_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def create_user(db: AsyncSession, name: str, email: str, password: str,
                      phone: Optional[str] = None, role: str = "regular_customer",
                      preferred_currency: str = "USD", language_preference: str = "en",
                      commit: bool = True) -> UserProfile:
    user_id = gen_uuid()
    stmt = insert(UserProfile).values(
        user_id=user_id,
        name=name,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        phone=phone,
        role=role,
        preferred_currency=preferred_currency,
        language_preference=language_preference,
    )
    await db.execute(stmt)
    await db.execute(insert(UserPreferences).values(user_id=user_id))
    if commit:
        await db.commit()
    return await get_user_by_id(db, user_id)


async def update_user(db: AsyncSession, user_id: str, patch: Dict) -> Optional[UserProfile]:
    if patch:
        stmt = update(UserProfile).where(UserProfile.user_id == user_id).values(**patch, updated_at=utcnow())
        await db.execute(stmt)
        await db.commit()
    user = await get_user_by_id(db, user_id)
    if user is not None:
        await db.refresh(user)
    return user


async def set_password(db: AsyncSession, user_id: str, password: str):
    stmt = update(UserProfile).where(UserProfile.user_id == user_id).values(
        password_hash=hash_password(password), updated_at=utcnow()
    )
    await db.execute(stmt)
    await db.commit()


async def touch_last_sign_in(db: AsyncSession, user_id: str):
    stmt = update(UserProfile).where(UserProfile.user_id == user_id).values(last_sign_in_at=utcnow())
    await db.execute(stmt)
    await db.commit()


async def delete_user(db: AsyncSession, user_id: str, commit: bool = True):
    await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.execute(delete(UserPreferences).where(UserPreferences.user_id == user_id))
    await db.execute(delete(UserProfile).where(UserProfile.user_id == user_id))
    if commit:
        await db.commit()


async def get_admin_emails(db: AsyncSession) -> List[str]:
    q = select(UserProfile.email).where(UserProfile.role == "admin", UserProfile.is_active.is_(True))
    r = await db.execute(q)
    return [e for e in r.scalars().all() if e]


async def count_admins(db: AsyncSession) -> int:
    q = select(func.count()).select_from(UserProfile).where(UserProfile.role == "admin")
    return (await db.execute(q)).scalar_one()


def serialize_user(user: UserProfile) -> Dict:
    return {
        "user_id": user.user_id,
        "email": user.email,
        "name": user.name,
        "phone": user.phone,
        "role": user.role,
        "preferred_currency": user.preferred_currency,
        "language_preference": user.language_preference,
        "discount_percentage": float(user.discount_percentage or 0),
        "is_active": bool(user.is_active),
        "last_sign_in_at": user.last_sign_in_at.isoformat() if user.last_sign_in_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# preferences

async def get_or_create_preferences(db: AsyncSession, user_id: str) -> UserPreferences:
    q = select(UserPreferences).where(UserPreferences.user_id == user_id)
    r = await db.execute(q)
    prefs = r.scalar_one_or_none()
    if prefs:
        return prefs
    await db.execute(insert(UserPreferences).values(user_id=user_id))
    await db.commit()
    r = await db.execute(q)
    return r.scalar_one()


async def update_preferences(db: AsyncSession, user_id: str, patch: Dict) -> UserPreferences:
    await get_or_create_preferences(db, user_id)
    if patch:
        stmt = update(UserPreferences).where(UserPreferences.user_id == user_id).values(**patch, updated_at=utcnow())
        await db.execute(stmt)
        await db.commit()
    prefs = await get_or_create_preferences(db, user_id)
    await db.refresh(prefs)
    return prefs


def serialize_preferences(prefs: UserPreferences) -> Dict:
    return {k: getattr(prefs, k) for k in PREFERENCE_FIELDS}


# gemstones

async def get_gemstone(db: AsyncSession, gemstone_id: str) -> Optional[Gemstone]:
    q = select(Gemstone).where(Gemstone.id == gemstone_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_gemstones_by_ids(db: AsyncSession, ids: List[str]) -> Dict[str, Gemstone]:
    if not ids:
        return {}
    r = await db.execute(select(Gemstone).where(Gemstone.id.in_(ids)))
    return {g.id: g for g in r.scalars().all()}


async def get_gemstone_by_serial(db: AsyncSession, serial_number: str) -> Optional[Gemstone]:
    q = select(Gemstone).where(Gemstone.serial_number == serial_number)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def delete_gemstone(db: AsyncSession, gemstone_id: str):
    for model in (CartItem, Certification, GemstoneImage, GemstoneEnrichment):
        await db.execute(delete(model).where(model.gemstone_id == gemstone_id))
    await db.execute(update(OrderItem).where(OrderItem.gemstone_id == gemstone_id).values(gemstone_id=None))
    await db.execute(delete(Gemstone).where(Gemstone.id == gemstone_id))
    await db.commit()


async def get_or_create_origin(db: AsyncSession, name: str, country: Optional[str] = None) -> Origin:
    r = await db.execute(select(Origin).where(Origin.name == name))
    origin = r.scalar_one_or_none()
    if origin:
        return origin
    origin = Origin(name=name, country=country)
    db.add(origin)
    await db.flush()
    return origin


# cart

async def get_cart_items(db: AsyncSession, user_id: str) -> List[CartItem]:
    q = select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.added_at)
    r = await db.execute(q)
    return r.scalars().all()


async def get_cart_item(db: AsyncSession, user_id: str, item_id: str) -> Optional[CartItem]:
    q = select(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def remove_cart_item(db: AsyncSession, user_id: str, item_id: str) -> bool:
    r = await db.execute(delete(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id))
    await db.commit()
    return r.rowcount > 0


async def clear_cart(db: AsyncSession, user_id: str):
    await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.commit()


# orders

async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    q = select(Order).where(Order.id == order_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_order_items(db: AsyncSession, order_id: str) -> List[OrderItem]:
    q = select(OrderItem).where(OrderItem.order_id == order_id)
    r = await db.execute(q)
    return r.scalars().all()


async def get_order_events(db: AsyncSession, order_id: str, include_internal: bool = False) -> List[OrderEvent]:
    q = select(OrderEvent).where(OrderEvent.order_id == order_id)
    if not include_internal:
        q = q.where(OrderEvent.is_internal.is_(False))
    r = await db.execute(q.order_by(OrderEvent.created_at))
    return r.scalars().all()


async def add_order_event(db: AsyncSession, order_id: str, event_type: str, title: str,
                          description: Optional[str] = None, performed_by: Optional[str] = None,
                          meta: Optional[Dict] = None, is_internal: bool = False):
    db.add(OrderEvent(
        order_id=order_id,
        event_type=event_type,
        title=title,
        description=description,
        performed_by=performed_by,
        meta=meta,
        is_internal=is_internal,
    ))


async def count_orders_for_user(db: AsyncSession, user_id: str) -> int:
    q = select(func.count()).select_from(Order).where(Order.user_id == user_id)
    return (await db.execute(q)).scalar_one()
