# smaragdus/services/contact.py
import logging
from math import ceil
from typing import Any, Dict, Optional

from sqlalchemy import select, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config, crud, emails
from ..constants import CONTACT_STATUS_TRANSITIONS
from ..db import AsyncSessionLocal, utcnow
from ..errors import NotFound, ValidationFailed
from ..models import ContactMessage

logger = logging.getLogger(__name__)

URGENCY_BADGES = {
    "en": {"low": "LOW", "medium": "MEDIUM", "high": "HIGH", "urgent": "URGENT"},
    "ru": {"low": "НИЗКИЙ", "medium": "СРЕДНИЙ", "high": "ВЫСОКИЙ", "urgent": "СРОЧНО"},
}
INQUIRY_LABELS = {
    "en": {
        "general": "General Inquiry", "purchase": "Purchase", "wholesale": "Wholesale",
        "certification": "Certification", "support": "Support", "partnership": "Partnership",
    },
    "ru": {
        "general": "Общий вопрос", "purchase": "Покупка", "wholesale": "Оптовые закупки",
        "certification": "Сертификация", "support": "Поддержка", "partnership": "Партнёрство",
    },
}
RESPONSE_MESSAGES = {
    "en": {
        "default": "Thank you for contacting us! We have received your message and will get back to you within 24 hours.",
        "high": "Thank you for contacting us! We have received your urgent message and will prioritize your inquiry.",
        "urgent": "Thank you for contacting us! We have received your urgent message and will contact you as soon as possible.",
    },
    "ru": {
        "default": "Спасибо за обращение! Мы получили ваше сообщение и свяжемся с вами в течение 24 часов.",
        "high": "Спасибо за обращение! Мы получили ваше срочное сообщение и обработаем его приоритетно.",
        "urgent": "Спасибо за обращение! Мы получили ваше срочное сообщение и свяжемся с вами как можно скорее.",
    },
}


def response_message(locale: str, urgency: str) -> str:
    messages = RESPONSE_MESSAGES.get(locale, RESPONSE_MESSAGES["en"])
    return messages.get(urgency, messages["default"])


async def create_message(db: AsyncSession, data: Dict[str, Any]) -> ContactMessage:
    msg = ContactMessage(status="unread", is_spam=False, **data)
    db.add(msg)
    await db.commit()
    await db.refresh(msg)
    return msg


def serialize(msg: ContactMessage) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "name": msg.name,
        "email": msg.email,
        "phone": msg.phone,
        "company": msg.company,
        "subject": msg.subject,
        "message": msg.message,
        "inquiry_type": msg.inquiry_type,
        "preferred_contact_method": msg.preferred_contact_method,
        "urgency_level": msg.urgency_level,
        "status": msg.status,
        "is_spam": msg.is_spam,
        "admin_notes": msg.admin_notes,
        "responded_at": msg.responded_at.isoformat() if msg.responded_at else None,
        "responded_by": msg.responded_by,
        "locale": msg.locale,
        "ip_address": msg.ip_address,
        "user_agent": msg.user_agent,
        "referrer_url": msg.referrer_url,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
    }


async def list_messages(db: AsyncSession, status: Optional[str] = None, include_spam: bool = False,
                        page: int = 1, limit: int = 20) -> Dict[str, Any]:
    conds = []
    if status:
        conds.append(ContactMessage.status == status)
    if not include_spam:
        conds.append(ContactMessage.is_spam.is_(False))
    total = (await db.execute(select(func.count()).select_from(ContactMessage).where(*conds))).scalar_one()
    q = (
        select(ContactMessage).where(*conds)
        .order_by(ContactMessage.created_at.desc())
        .offset((page - 1) * limit).limit(limit)
    )
    rows = (await db.execute(q)).scalars().all()
    return {
        "messages": [serialize(m) for m in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }


async def update_message(db: AsyncSession, message_id: str, admin_id: str, status: Optional[str] = None,
                         admin_notes: Optional[str] = None, is_spam: Optional[bool] = None) -> ContactMessage:
    msg = (await db.execute(select(ContactMessage).where(ContactMessage.id == message_id))).scalar_one_or_none()
    if msg is None:
        raise NotFound("Contact message not found")
    patch: Dict[str, Any] = {}
    if status and status != msg.status:
        if status not in CONTACT_STATUS_TRANSITIONS.get(msg.status, ()):
            raise ValidationFailed(f"Cannot change status from {msg.status} to {status}")
        patch["status"] = status
        if status == "resolved":
            patch["responded_at"] = utcnow()
            patch["responded_by"] = admin_id
    if admin_notes is not None:
        patch["admin_notes"] = admin_notes
    if is_spam is not None:
        patch["is_spam"] = is_spam
    if patch:
        await db.execute(update(ContactMessage).where(ContactMessage.id == message_id).values(**patch, updated_at=utcnow()))
        await db.commit()
        await db.refresh(msg)
    return msg


async def send_admin_notification(db: AsyncSession, client: emails.EmailClient, msg: ContactMessage) -> bool:
    recipients = await crud.get_admin_emails(db) or [config.ADMIN_FALLBACK_EMAIL]
    locale = msg.locale if msg.locale in URGENCY_BADGES else "en"
    rendered = emails.render(
        "contact_admin_notification", locale,
        quote=msg.message,
        button_url=f"mailto:{msg.email}",
        urgency_badge=URGENCY_BADGES[locale].get(msg.urgency_level, msg.urgency_level),
        inquiry_label=INQUIRY_LABELS[locale].get(msg.inquiry_type, msg.inquiry_type),
        subject=msg.subject,
        name=msg.name,
        email=msg.email,
        contact_method=msg.preferred_contact_method,
    )
    result = await client.send(recipients, rendered["subject"], rendered["html"], tags={
        "notification_type": "contact_admin_notification",
        "contact_id": msg.id,
    })
    return result.success


async def send_auto_response(client: emails.EmailClient, msg: ContactMessage) -> bool:
    locale = msg.locale if msg.locale in URGENCY_BADGES else "en"
    rendered = emails.render(
        "contact_auto_response", locale,
        button_url=config.SITE_URL,
        name=msg.name,
        subject=msg.subject,
    )
    result = await client.send(msg.email, rendered["subject"], rendered["html"], tags={
        "notification_type": "contact_auto_response",
        "contact_id": msg.id,
    })
    return result.success


async def on_contact_submitted(message_id: str):
    """Background task: admin alert plus auto-reply, both best effort."""
    client = emails.get_email_client()
    if client is None:
        logger.info("contact notifications skipped for %s: email disabled", message_id)
        return
    try:
        async with AsyncSessionLocal() as db:
            msg = (await db.execute(select(ContactMessage).where(ContactMessage.id == message_id))).scalar_one_or_none()
            if msg is None:
                return
            admin_sent = auto_sent = False
            if config.CONTACT_ADMIN_NOTIFICATION_ENABLED:
                admin_sent = await send_admin_notification(db, client, msg)
            if config.CONTACT_AUTO_RESPONSE_ENABLED:
                auto_sent = await send_auto_response(client, msg)
    except SQLAlchemyError:
        logger.exception("contact notifications for %s failed", message_id)
        return
    logger.info("contact %s processed admin_notified=%s auto_reply=%s urgency=%s",
                message_id, admin_sent, auto_sent, msg.urgency_level)
