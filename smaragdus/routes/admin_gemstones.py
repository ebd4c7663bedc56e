# smaragdus/routes/admin_gemstones.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import (
    CURRENCY_CODES, GEM_CLARITIES, GEM_COLORS, GEM_CUTS, GEMSTONE_TYPES, METADATA_STATUSES,
)
from ..db import get_db
from ..deps import require_admin
from ..errors import NotFound, ok
from ..models import UserProfile
from ..services import admin_gemstones, catalog
from ..services.catalog import serialize_certification

router = APIRouter(prefix="/api/admin", tags=["admin-gemstones"])

ENUM_FIELDS = {
    "name": GEMSTONE_TYPES,
    "color": GEM_COLORS,
    "cut": GEM_CUTS,
    "clarity": GEM_CLARITIES,
    "price_currency": CURRENCY_CODES,
    "premium_price_currency": CURRENCY_CODES,
    "metadata_status": METADATA_STATUSES,
}

# columns a partial update may omit but never clear
REQUIRED_COLUMNS = (
    "serial_number", "name", "color", "cut", "clarity", "weight_carats",
    "price_amount", "price_currency", "in_stock", "quantity", "metadata_status",
)


def _check_enum(field: str, v: Optional[str]) -> Optional[str]:
    if v is not None and v not in ENUM_FIELDS[field]:
        raise ValueError(f"Invalid {field}: {v}")
    return v


class GemstoneFields(BaseModel):
    @field_validator(*ENUM_FIELDS, check_fields=False)
    @classmethod
    def known_value(cls, v, info):
        return _check_enum(info.field_name, v)


class GemstoneIn(GemstoneFields):
    serial_number: str = Field(min_length=1, max_length=50)
    name: str
    color: str
    cut: str
    clarity: str
    weight_carats: float = Field(gt=0)
    length_mm: Optional[float] = Field(default=None, gt=0)
    width_mm: Optional[float] = Field(default=None, gt=0)
    depth_mm: Optional[float] = Field(default=None, gt=0)
    price_amount: float = Field(ge=0)
    price_currency: str = "USD"
    premium_price_amount: Optional[float] = Field(default=None, ge=0)
    premium_price_currency: Optional[str] = None
    in_stock: bool = True
    quantity: int = Field(default=1, ge=0)
    delivery_days: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    promotional_text: Optional[str] = None
    marketing_highlights: Optional[List[str]] = None
    internal_code: Optional[str] = None
    origin: Optional[str] = Field(default=None, max_length=100)
    metadata_status: str = "needs_review"


class GemstoneUpdateIn(GemstoneFields):
    serial_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = None
    color: Optional[str] = None
    cut: Optional[str] = None
    clarity: Optional[str] = None
    weight_carats: Optional[float] = Field(default=None, gt=0)
    length_mm: Optional[float] = Field(default=None, gt=0)
    width_mm: Optional[float] = Field(default=None, gt=0)
    depth_mm: Optional[float] = Field(default=None, gt=0)
    price_amount: Optional[float] = Field(default=None, ge=0)
    price_currency: Optional[str] = None
    premium_price_amount: Optional[float] = Field(default=None, ge=0)
    premium_price_currency: Optional[str] = None
    in_stock: Optional[bool] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    delivery_days: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    promotional_text: Optional[str] = None
    marketing_highlights: Optional[List[str]] = None
    internal_code: Optional[str] = None
    origin: Optional[str] = Field(default=None, max_length=100)
    metadata_status: Optional[str] = None

    @field_validator(*REQUIRED_COLUMNS, mode="before")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class PriceUpdateIn(BaseModel):
    id: str
    price_amount: Optional[float] = Field(default=None, ge=0)
    premium_price_amount: Optional[float] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None


class PricingIn(BaseModel):
    updates: List[PriceUpdateIn] = Field(min_length=1, max_length=100)


class CertificationIn(BaseModel):
    gemstone_id: str
    certificate_type: str = Field(min_length=1, max_length=50)
    certificate_number: str = Field(min_length=1, max_length=100)
    certificate_url: Optional[str] = Field(default=None, max_length=500)
    issued_date: Optional[date] = None


class CertificationUpdateIn(BaseModel):
    certificate_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    certificate_number: Optional[str] = Field(default=None, min_length=1, max_length=100)
    certificate_url: Optional[str] = Field(default=None, max_length=500)
    issued_date: Optional[date] = None


async def _detailed(db: AsyncSession, gemstone_id: str):
    gem = await catalog.get_enriched(db, gemstone_id)
    if gem is None:
        raise NotFound("Gemstone not found")
    return gem


@router.get("/gemstones")
async def list_gemstones(search: Optional[str] = Query(None, max_length=100),
                         in_stock: Optional[bool] = Query(None),
                         page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                         admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await admin_gemstones.list_gemstones(db, search, in_stock, page, limit))


@router.post("/gemstones", status_code=status.HTTP_201_CREATED)
async def create_gemstone(payload: GemstoneIn, admin: UserProfile = Depends(require_admin),
                          db: AsyncSession = Depends(get_db)):
    g = await admin_gemstones.create_gemstone(db, payload.model_dump())
    return ok(await _detailed(db, g.id), "Gemstone created")


@router.put("/gemstones/pricing")
async def bulk_pricing(payload: PricingIn, admin: UserProfile = Depends(require_admin),
                       db: AsyncSession = Depends(get_db)):
    result = await admin_gemstones.bulk_pricing(db, [u.model_dump() for u in payload.updates])
    return ok(result, f"Updated {result['updated']} gemstones")


@router.get("/gemstones/{gemstone_id}")
async def get_gemstone(gemstone_id: str, admin: UserProfile = Depends(require_admin),
                       db: AsyncSession = Depends(get_db)):
    return ok(await _detailed(db, gemstone_id))


@router.put("/gemstones/{gemstone_id}")
async def update_gemstone(gemstone_id: str, payload: GemstoneUpdateIn,
                          admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await admin_gemstones.update_gemstone(db, gemstone_id, payload.model_dump(exclude_unset=True))
    return ok(await _detailed(db, gemstone_id), "Gemstone updated")


@router.delete("/gemstones/{gemstone_id}")
async def delete_gemstone(gemstone_id: str, admin: UserProfile = Depends(require_admin),
                          db: AsyncSession = Depends(get_db)):
    await admin_gemstones.delete_gemstone(db, gemstone_id)
    return ok(None, "Gemstone deleted")


@router.get("/certifications")
async def list_certifications(gemstone_id: Optional[str] = Query(None),
                              admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok({"certifications": await admin_gemstones.list_certifications(db, gemstone_id)})


@router.post("/certifications", status_code=status.HTTP_201_CREATED)
async def create_certification(payload: CertificationIn, admin: UserProfile = Depends(require_admin),
                               db: AsyncSession = Depends(get_db)):
    c = await admin_gemstones.create_certification(db, payload.model_dump())
    return ok(serialize_certification(c), "Certification created")


@router.put("/certifications/{cert_id}")
async def update_certification(cert_id: str, payload: CertificationUpdateIn,
                               admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    c = await admin_gemstones.update_certification(db, cert_id, payload.model_dump(exclude_unset=True))
    return ok(serialize_certification(c), "Certification updated")


@router.delete("/certifications/{cert_id}")
async def delete_certification(cert_id: str, admin: UserProfile = Depends(require_admin),
                               db: AsyncSession = Depends(get_db)):
    await admin_gemstones.delete_certification(db, cert_id)
    return ok(None, "Certification deleted")
