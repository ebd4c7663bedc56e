# smaragdus/routes/admin_chat.py
import logging
import secrets
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config, crud, emails
from ..db import get_db
from ..deps import get_optional_user, require_admin, security
from ..errors import Forbidden, NotFound, Unauthenticated, ok
from ..models import UserProfile
from ..services import chat, notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/chat", tags=["admin-chat"])


class AdminMessageIn(BaseModel):
    user_id: str
    content: str = Field(min_length=1, max_length=2000)
    attachments: Optional[List[Dict]] = Field(default=None, max_length=10)


async def authorize_checker(credentials: HTTPAuthorizationCredentials = Depends(security),
                            user: Optional[UserProfile] = Depends(get_optional_user)) -> str:
    """Cron callers present CHAT_CHECKER_API_KEY as a bearer token; admins may also trigger the check."""
    token = credentials.credentials if credentials else None
    if token and config.CHAT_CHECKER_API_KEY and secrets.compare_digest(token, config.CHAT_CHECKER_API_KEY):
        return "cron"
    if user is None:
        raise Unauthenticated("Unauthorized")
    if user.role != "admin":
        raise Forbidden("Admin access required")
    return user.user_id


@router.get("/conversations")
async def conversations(admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok({"conversations": await chat.conversations(db)})


async def _check_unattended(caller: str, db: AsyncSession):
    client = emails.get_email_client()
    if client is None:
        return ok({"unattended": 0, "alertsSent": 0}, "Email notifications disabled")
    logger.info("unattended message check triggered by %s", caller)
    result = await notifications.check_unattended_messages(db, client, config.UNATTENDED_ALERT_THRESHOLD_MINUTES)
    return ok(result, "Unattended message check complete")


@router.get("/check-unattended")
async def check_unattended_get(caller: str = Depends(authorize_checker), db: AsyncSession = Depends(get_db)):
    return await _check_unattended(caller, db)


@router.post("/check-unattended")
async def check_unattended_post(caller: str = Depends(authorize_checker), db: AsyncSession = Depends(get_db)):
    return await _check_unattended(caller, db)


@router.post("/send", status_code=status.HTTP_201_CREATED)
async def send_message(payload: AdminMessageIn, background: BackgroundTasks,
                       admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    if await crud.get_user_by_id(db, payload.user_id) is None:
        raise NotFound("User not found")
    msg = await chat.add_message(
        db, payload.user_id, "admin", payload.content.strip(), payload.attachments, admin_id=admin.user_id,
    )
    background.add_task(notifications.on_admin_message, payload.user_id, admin.user_id, msg.id, msg.content)
    return ok(chat.serialize(msg), "Message sent")


@router.get("/{user_id}")
async def conversation(user_id: str, admin: UserProfile = Depends(require_admin),
                       db: AsyncSession = Depends(get_db)):
    user = await crud.get_user_by_id(db, user_id)
    if user is None:
        raise NotFound("User not found")
    await chat.mark_read(db, user_id, "user")
    return ok({
        "user": {"user_id": user.user_id, "name": user.name, "email": user.email},
        "messages": await chat.conversation(db, user_id),
    })
