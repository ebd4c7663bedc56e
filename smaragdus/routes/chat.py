# smaragdus/routes/chat.py
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..deps import get_current_user
from ..errors import ok
from ..models import UserProfile
from ..services import chat, notifications

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ChatMessageIn(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    attachments: Optional[List[Dict]] = Field(default=None, max_length=10)


@router.get("")
async def list_messages(limit: int = Query(50, ge=1, le=100), offset: int = Query(0, ge=0),
                        user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await chat.list_messages(db, user.user_id, limit, offset))


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(payload: ChatMessageIn, background: BackgroundTasks,
                       user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    msg = await chat.add_message(db, user.user_id, "user", payload.content.strip(), payload.attachments)
    background.add_task(notifications.on_user_message, user.user_id, msg.id, msg.content)
    return ok(chat.serialize(msg), "Message sent")


@router.post("/read")
async def mark_read(user: UserProfile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    count = await chat.mark_read(db, user.user_id, "admin")
    return ok({"marked": count})
