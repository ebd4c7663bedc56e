# smaragdus/auth.py
import logging
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from jose import jwt
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from . import cache, config, crud
from .db import get_db
from .deps import REVOKED_TOKEN_PREFIX, decode_token, get_current_user, get_token_payload
from .errors import Conflict, Forbidden, NotFound, Unauthenticated, ValidationFailed, ok
from .models import UserProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def password_problem(password: str) -> Optional[str]:
    if len(password) < 8:
        return "Password must be at least 8 characters"
    if not re.search(r"[a-z]", password) or not re.search(r"[A-Z]", password) or not re.search(r"\d", password):
        return "Password must contain uppercase, lowercase and a digit"
    return None


class SignupIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        problem = password_problem(v)
        if problem:
            raise ValueError(problem)
        return v


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        problem = password_problem(v)
        if problem:
            raise ValueError(problem)
        return v


def create_access_token(data: dict, expires_delta: int = config.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta)
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_password_reset_token(user_id: str) -> str:
    return create_access_token(
        {"sub": user_id, "purpose": "password_reset"},
        expires_delta=config.PASSWORD_RESET_EXPIRE_MINUTES,
    )


def _token_response(user: UserProfile) -> dict:
    token = create_access_token({"sub": user.user_id, "role": user.role})
    return {"access_token": token, "token_type": "bearer", "user": crud.serialize_user(user)}


@router.post("/signup", status_code=201)
async def signup(payload: SignupIn, db: AsyncSession = Depends(get_db)):
    existing = await crud.get_user_by_email(db, payload.email)
    if existing:
        raise Conflict("Email already registered")
    phone = payload.phone.strip() if payload.phone else None
    user = await crud.create_user(db, payload.name.strip(), payload.email, payload.password, phone)
    logger.info("user signed up user_id=%s", user.user_id)
    return ok(_token_response(user))


@router.post("/login")
async def login(payload: LoginIn, db: AsyncSession = Depends(get_db)):
    user = await crud.get_user_by_email(db, payload.email)
    if not user or not crud.verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    if not user.is_active:
        raise Forbidden("Account is suspended")
    await crud.touch_last_sign_in(db, user.user_id)
    return ok(_token_response(user))


@router.post("/logout")
async def logout(payload: dict = Depends(get_token_payload)):
    jti = payload.get("jti")
    if jti:
        ttl = max(int(payload.get("exp", 0) - time.time()), 1)
        await cache.set_json(REVOKED_TOKEN_PREFIX + jti, True, ttl)
    return ok(None, message="Logged out")


@router.get("/session")
async def session(user: UserProfile = Depends(get_current_user)):
    return ok({"user": crud.serialize_user(user)})


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordIn, db: AsyncSession = Depends(get_db)):
    claims = decode_token(payload.token, purpose="password_reset")
    user = await crud.get_user_by_id(db, claims["sub"])
    if user is None:
        raise NotFound("User not found")
    if crud.verify_password(payload.new_password, user.password_hash):
        raise ValidationFailed("New password must differ from the current one")
    await crud.set_password(db, user.user_id, payload.new_password)
    logger.info("password reset completed user_id=%s", user.user_id)
    return ok(None, message="Password updated")
