# smaragdus/routes/contact.py
import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CONTACT_STATUSES
from ..db import get_db
from ..deps import get_client_ip, get_user_agent, require_admin
from ..errors import ValidationFailed, ok
from ..models import UserProfile
from ..services import contact

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["contact"])


class ContactIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    company: Optional[str] = Field(default=None, max_length=100)
    subject: str = Field(min_length=5, max_length=200)
    message: str = Field(min_length=20, max_length=5000)
    inquiry_type: Literal["general", "purchase", "wholesale", "certification", "support", "partnership"]
    preferred_contact_method: Literal["email", "phone", "whatsapp", "telegram"] = "email"
    urgency_level: Literal["low", "medium", "high", "urgent"] = "medium"
    locale: Literal["en", "ru"] = "en"

    @field_validator("phone")
    @classmethod
    def phone_length(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not 10 <= len(v) <= 20:
            raise ValueError("Phone must be between 10 and 20 characters")
        return v

    @field_validator("name", "subject", "message", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class ContactUpdateIn(BaseModel):
    status: Optional[str] = None
    admin_notes: Optional[str] = Field(default=None, max_length=5000)
    is_spam: Optional[bool] = None


@router.post("/contact", status_code=status.HTTP_201_CREATED)
async def submit(payload: ContactIn, request: Request, background: BackgroundTasks,
                 db: AsyncSession = Depends(get_db)):
    data = payload.model_dump()
    data.update({
        "email": data["email"].lower(),
        "ip_address": get_client_ip(request),
        "user_agent": get_user_agent(request),
        "referrer_url": request.headers.get("referer"),
    })
    msg = await contact.create_message(db, data)
    logger.info("contact message %s received inquiry=%s urgency=%s", msg.id, msg.inquiry_type, msg.urgency_level)
    background.add_task(contact.on_contact_submitted, msg.id)
    return ok({"id": msg.id}, contact.response_message(payload.locale, payload.urgency_level))


@router.get("/admin/contact")
async def list_messages(status_filter: Optional[str] = Query(None, alias="status"),
                        include_spam: bool = Query(False),
                        page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                        admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    if status_filter and status_filter not in CONTACT_STATUSES:
        raise ValidationFailed(f"Unknown status: {status_filter}")
    return ok(await contact.list_messages(db, status_filter, include_spam, page, limit))


@router.put("/admin/contact/{message_id}")
async def update_message(message_id: str, payload: ContactUpdateIn,
                         admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    if payload.status and payload.status not in CONTACT_STATUSES:
        raise ValidationFailed(f"Unknown status: {payload.status}")
    msg = await contact.update_message(
        db, message_id, admin.user_id, payload.status, payload.admin_notes, payload.is_spam,
    )
    return ok(contact.serialize(msg), "Contact message updated")
