# smaragdus/deps.py
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from . import cache, config, crud
from .db import get_db
from .errors import Forbidden, Unauthenticated
from .models import UserProfile

security = HTTPBearer(auto_error=False)

REVOKED_TOKEN_PREFIX = "revoked_token:"


def decode_token(token: str, purpose: str = "access") -> dict:
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid token")
    if payload.get("purpose", "access") != purpose or not payload.get("sub"):
        raise Unauthenticated("Invalid token")
    return payload


async def get_token_payload(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if credentials is None:
        raise Unauthenticated("Authentication required")
    payload = decode_token(credentials.credentials)
    jti = payload.get("jti")
    if jti and await cache.exists(REVOKED_TOKEN_PREFIX + jti):
        raise Unauthenticated("Token has been revoked")
    return payload


async def get_user_from_token(payload: dict = Depends(get_token_payload)) -> str:
    return payload["sub"]


async def get_current_user(user_id: str = Depends(get_user_from_token),
                           db: AsyncSession = Depends(get_db)) -> UserProfile:
    user = await crud.get_user_by_id(db, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Forbidden("Account is suspended")
    return user


async def get_optional_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                            db: AsyncSession = Depends(get_db)) -> Optional[UserProfile]:
    if credentials is None:
        return None
    try:
        payload = decode_token(credentials.credentials)
    except Unauthenticated:
        return None
    jti = payload.get("jti")
    if jti and await cache.exists(REVOKED_TOKEN_PREFIX + jti):
        return None
    user = await crud.get_user_by_id(db, payload["sub"])
    if user is None or not user.is_active:
        return None
    return user


async def require_admin(user: UserProfile = Depends(get_current_user)) -> UserProfile:
    if user.role != "admin":
        raise Forbidden("Admin access required")
    return user


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")
