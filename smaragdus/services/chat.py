# smaragdus/services/chat.py
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ChatMessage, UserProfile


def serialize(msg: ChatMessage) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "user_id": msg.user_id,
        "admin_id": msg.admin_id,
        "sender_type": msg.sender_type,
        "content": msg.content,
        "attachments": msg.attachments or [],
        "is_auto_response": msg.is_auto_response,
        "is_read": msg.is_read,
        "created_at": msg.created_at.isoformat(),
    }


async def add_message(db: AsyncSession, user_id: str, sender_type: str, content: str,
                      attachments: Optional[List[Dict]] = None, admin_id: Optional[str] = None) -> ChatMessage:
    msg = ChatMessage(
        user_id=user_id,
        sender_type=sender_type,
        admin_id=admin_id,
        content=content,
        attachments=attachments or [],
    )
    db.add(msg)
    await db.commit()
    await db.refresh(msg)
    return msg


async def list_messages(db: AsyncSession, user_id: str, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    q = (
        select(ChatMessage).where(ChatMessage.user_id == user_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id)
        .offset(offset).limit(limit + 1)
    )
    rows = (await db.execute(q)).scalars().all()
    return {
        "messages": [serialize(m) for m in rows[:limit]],
        "hasMore": len(rows) > limit,
    }


async def mark_read(db: AsyncSession, user_id: str, sender_type: str) -> int:
    """Mark every unread message from ``sender_type`` in the conversation as read."""
    r = await db.execute(
        update(ChatMessage)
        .where(ChatMessage.user_id == user_id, ChatMessage.sender_type == sender_type, ChatMessage.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return r.rowcount


async def conversation(db: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
    q = select(ChatMessage).where(ChatMessage.user_id == user_id).order_by(ChatMessage.created_at, ChatMessage.id)
    return [serialize(m) for m in (await db.execute(q)).scalars().all()]


async def conversations(db: AsyncSession) -> List[Dict[str, Any]]:
    """One row per user conversation, most recent activity first."""
    last = (
        select(ChatMessage.user_id, func.max(ChatMessage.created_at).label("last_at"))
        .group_by(ChatMessage.user_id)
        .subquery()
    )
    unread = (
        select(ChatMessage.user_id, func.count().label("unread"))
        .where(ChatMessage.sender_type == "user", ChatMessage.is_read.is_(False))
        .group_by(ChatMessage.user_id)
        .subquery()
    )
    q = (
        select(last.c.user_id, last.c.last_at, unread.c.unread, UserProfile.name, UserProfile.email)
        .outerjoin(unread, unread.c.user_id == last.c.user_id)
        .outerjoin(UserProfile, UserProfile.user_id == last.c.user_id)
        .order_by(last.c.last_at.desc())
    )
    out = []
    for user_id, last_at, unread_count, name, email in (await db.execute(q)).all():
        msg = (await db.execute(
            select(ChatMessage).where(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id).limit(1)
        )).scalar_one()
        out.append({
            "user_id": user_id,
            "user_name": name,
            "user_email": email,
            "last_message": serialize(msg),
            "last_message_at": last_at.isoformat() if last_at else None,
            "unread_count": int(unread_count or 0),
        })
    return out
