# smaragdus/services/notifications.py
"""Email fan-out after chat, order and account events.

Entry points here run as background tasks: they open their own session and
log failures instead of raising, so the request that triggered them is never
affected.
"""
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config, crud, emails
from ..db import AsyncSessionLocal, utcnow
from ..models import ChatMessage

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200

ORDER_STATUS_LABELS = {
    "en": {
        "pending": "pending", "confirmed": "confirmed", "processing": "processing",
        "shipped": "shipped", "delivered": "delivered", "cancelled": "cancelled",
    },
    "ru": {
        "pending": "ожидает", "confirmed": "подтверждён", "processing": "в обработке",
        "shipped": "отправлен", "delivered": "доставлен", "cancelled": "отменён",
    },
}


def format_wait_time(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60} hours"


def _locale(lang: Optional[str]) -> str:
    return "ru" if lang == "ru" else "en"


async def should_send_chat_notification(db: AsyncSession, user_id: str) -> bool:
    prefs = await crud.get_or_create_preferences(db, user_id)
    return bool(prefs.email_notifications and prefs.chat_notifications)


async def notify_admins_of_user_message(db: AsyncSession, client: emails.EmailClient,
                                        user_id: str, message_id: str, content: str) -> bool:
    admin_emails = await crud.get_admin_emails(db)
    if not admin_emails:
        logger.warning("no admin emails found, skipping chat notification")
        return False
    user = await crud.get_user_by_id(db, user_id)
    rendered = emails.render(
        "new_user_message_to_admin", "en",
        quote=content[:PREVIEW_CHARS],
        button_url=f"{config.SITE_URL}/admin/dashboard?tab=chat&userId={user_id}",
        user_name=user.name if user else "User",
        user_email=user.email if user else None,
    )
    result = await client.send(admin_emails, rendered["subject"], rendered["html"], tags={
        "notification_type": "new_user_message_to_admin",
        "chat_message_id": message_id,
        "user_id": user_id,
    })
    if not result.success:
        logger.error("admin chat notification failed user=%s message=%s: %s", user_id, message_id, result.error)
    return result.success


async def notify_user_of_admin_reply(db: AsyncSession, client: emails.EmailClient, user_id: str,
                                     admin_id: str, message_id: str, content: str) -> bool:
    if not await should_send_chat_notification(db, user_id):
        logger.info("user %s has chat notifications disabled", user_id)
        return False
    user = await crud.get_user_by_id(db, user_id)
    if user is None or not user.email:
        logger.warning("user email not found, skipping notification user=%s", user_id)
        return False
    admin = await crud.get_user_by_id(db, admin_id)
    rendered = emails.render(
        "admin_response_to_user", _locale(user.language_preference),
        quote=content,
        button_url=f"{config.SITE_URL}/profile?tab=chat",
        user_name=user.name or "User",
        admin_name=admin.name if admin else "Support Team",
    )
    result = await client.send(user.email, rendered["subject"], rendered["html"], tags={
        "notification_type": "admin_response_to_user",
        "chat_message_id": message_id,
        "user_id": user_id,
    })
    if not result.success:
        logger.error("user chat notification failed user=%s message=%s: %s", user_id, message_id, result.error)
    return result.success


async def find_unattended_messages(db: AsyncSession, threshold_minutes: int) -> List[ChatMessage]:
    """Newest user message per conversation that is older than the threshold and has no later admin reply."""
    cutoff = utcnow() - timedelta(minutes=threshold_minutes)
    q = (
        select(ChatMessage)
        .where(ChatMessage.sender_type == "user", ChatMessage.created_at < cutoff)
        .order_by(ChatMessage.created_at.desc())
    )
    latest: Dict[str, ChatMessage] = {}
    for msg in (await db.execute(q)).scalars().all():
        latest.setdefault(msg.user_id, msg)

    out = []
    for user_id, msg in latest.items():
        reply = await db.execute(
            select(ChatMessage.id).where(
                ChatMessage.user_id == user_id,
                ChatMessage.sender_type == "admin",
                ChatMessage.created_at > msg.created_at,
            ).limit(1)
        )
        if reply.first() is None:
            out.append(msg)
    return out


async def check_unattended_messages(db: AsyncSession, client: emails.EmailClient,
                                    threshold_minutes: int = config.UNATTENDED_ALERT_THRESHOLD_MINUTES) -> Dict:
    messages = await find_unattended_messages(db, threshold_minutes)
    if not messages:
        logger.info("no unattended messages found")
        return {"unattended": 0, "alertsSent": 0}
    admin_emails = await crud.get_admin_emails(db)
    if not admin_emails:
        logger.warning("no admin emails found, skipping unattended alerts")
        return {"unattended": len(messages), "alertsSent": 0}

    sent = 0
    now = utcnow()
    for msg in messages:
        wait_minutes = int((now - msg.created_at).total_seconds() // 60)
        user = await crud.get_user_by_id(db, msg.user_id)
        wait_time = format_wait_time(wait_minutes)
        rendered = emails.render(
            "unattended_message_alert", "en",
            quote=msg.content[:PREVIEW_CHARS],
            button_url=f"{config.SITE_URL}/admin/dashboard?tab=chat&userId={msg.user_id}",
            user_name=user.name if user else "User",
            user_email=user.email if user else None,
            wait_time=wait_time,
        )
        result = await client.send(admin_emails, rendered["subject"], rendered["html"], tags={
            "notification_type": "unattended_message_alert",
            "chat_message_id": msg.id,
            "user_id": msg.user_id,
        })
        if result.success:
            sent += 1
        else:
            logger.error("unattended alert failed user=%s: %s", msg.user_id, result.error)
    logger.info("unattended check done: %d conversations, %d alerts", len(messages), sent)
    return {"unattended": len(messages), "alertsSent": sent}


async def send_order_status_email(db: AsyncSession, client: emails.EmailClient, order_id: str) -> bool:
    order = await crud.get_order(db, order_id)
    if order is None:
        return False
    prefs = await crud.get_or_create_preferences(db, order.user_id)
    if not (prefs.email_notifications and prefs.order_updates):
        return False
    user = await crud.get_user_by_id(db, order.user_id)
    if user is None or not user.email:
        return False
    locale = _locale(user.language_preference)
    rendered = emails.render(
        "order_status_update", locale,
        button_url=f"{config.SITE_URL}/orders/{order.id}",
        user_name=user.name,
        order_number=order.order_number,
        status_label=ORDER_STATUS_LABELS[locale].get(order.status, order.status),
    )
    result = await client.send(user.email, rendered["subject"], rendered["html"], tags={
        "notification_type": "order_status_update",
        "user_id": user.user_id,
    })
    return result.success


async def send_password_reset_email(client: emails.EmailClient, email: str, name: str,
                                    language: Optional[str], token: str) -> bool:
    rendered = emails.render(
        "password_reset", _locale(language),
        button_url=f"{config.SITE_URL}/reset-password?token={token}",
        user_name=name,
        expires_minutes=config.PASSWORD_RESET_EXPIRE_MINUTES,
    )
    result = await client.send(email, rendered["subject"], rendered["html"], tags={
        "notification_type": "password_reset",
    })
    return result.success


# background task entry points

async def on_user_message(user_id: str, message_id: str, content: str):
    client = emails.get_email_client()
    if client is None:
        return
    try:
        async with AsyncSessionLocal() as db:
            await notify_admins_of_user_message(db, client, user_id, message_id, content)
    except SQLAlchemyError:
        logger.exception("chat notification for user message %s failed", message_id)


async def on_admin_message(user_id: str, admin_id: str, message_id: str, content: str):
    client = emails.get_email_client()
    if client is None:
        return
    try:
        async with AsyncSessionLocal() as db:
            await notify_user_of_admin_reply(db, client, user_id, admin_id, message_id, content)
    except SQLAlchemyError:
        logger.exception("chat notification for admin message %s failed", message_id)


async def on_order_status_changed(order_id: str):
    client = emails.get_email_client()
    if client is None:
        return
    try:
        async with AsyncSessionLocal() as db:
            await send_order_status_email(db, client, order_id)
    except SQLAlchemyError:
        logger.exception("order status email for %s failed", order_id)


async def on_password_reset(email: str, name: str, language: Optional[str], token: str):
    client = emails.get_email_client()
    if client is None:
        logger.warning("password reset email skipped for %s: email disabled", email)
        return
    await send_password_reset_email(client, email, name, language, token)
