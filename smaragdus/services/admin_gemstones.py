# smaragdus/services/admin_gemstones.py
import logging
from math import ceil
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, or_, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..db import utcnow
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Certification, Gemstone
from .catalog import enrich, serialize_certification

logger = logging.getLogger(__name__)


async def list_gemstones(db: AsyncSession, search: Optional[str] = None, in_stock: Optional[bool] = None,
                         page: int = 1, limit: int = 20) -> Dict[str, Any]:
    conds = []
    if search:
        like = f"%{search.strip().lower()}%"
        conds.append(or_(
            func.lower(Gemstone.serial_number).like(like),
            func.lower(Gemstone.name).like(like),
            func.lower(func.coalesce(Gemstone.internal_code, "")).like(like),
        ))
    if in_stock is not None:
        conds.append(Gemstone.in_stock.is_(in_stock))
    total = (await db.execute(select(func.count()).select_from(Gemstone).where(*conds))).scalar_one()
    q = (
        select(Gemstone).where(*conds)
        .order_by(Gemstone.created_at.desc(), Gemstone.id)
        .offset((page - 1) * limit).limit(limit)
    )
    rows = (await db.execute(q)).scalars().all()
    return {
        "gemstones": await enrich(db, list(rows)),
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if limit else 0,
    }


async def _resolve_origin(db: AsyncSession, data: Dict[str, Any]):
    if "origin" in data:
        name = data.pop("origin")
        data["origin_id"] = (await crud.get_or_create_origin(db, name.strip())).id if name else None


async def get_gemstone_or_404(db: AsyncSession, gemstone_id: str) -> Gemstone:
    g = await crud.get_gemstone(db, gemstone_id)
    if g is None:
        raise NotFound("Gemstone not found")
    return g


async def create_gemstone(db: AsyncSession, data: Dict[str, Any]) -> Gemstone:
    if await crud.get_gemstone_by_serial(db, data["serial_number"]):
        raise Conflict(f"Gemstone with serial number {data['serial_number']} already exists")
    await _resolve_origin(db, data)
    if data.get("quantity", 1) <= 0:
        data["in_stock"] = False
    g = Gemstone(**data)
    db.add(g)
    await db.commit()
    await db.refresh(g)
    logger.info("gemstone created id=%s serial=%s", g.id, g.serial_number)
    return g


async def update_gemstone(db: AsyncSession, gemstone_id: str, patch: Dict[str, Any]) -> Gemstone:
    g = await get_gemstone_or_404(db, gemstone_id)
    serial = patch.get("serial_number")
    if serial and serial != g.serial_number and await crud.get_gemstone_by_serial(db, serial):
        raise Conflict(f"Gemstone with serial number {serial} already exists")
    await _resolve_origin(db, patch)
    if patch.get("quantity") is not None and patch["quantity"] <= 0:
        patch["in_stock"] = False
    if patch:
        await db.execute(update(Gemstone).where(Gemstone.id == gemstone_id).values(**patch, updated_at=utcnow()))
        await db.commit()
        await db.refresh(g)
    return g


async def delete_gemstone(db: AsyncSession, gemstone_id: str):
    await get_gemstone_or_404(db, gemstone_id)
    await crud.delete_gemstone(db, gemstone_id)
    logger.info("gemstone deleted id=%s", gemstone_id)


async def bulk_pricing(db: AsyncSession, updates: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Each entry is ``{id, price_amount?, premium_price_amount?, in_stock?}``; failures don't stop the batch."""
    results = []
    for entry in updates:
        gid = entry["id"]
        patch = {k: v for k, v in entry.items() if k != "id" and v is not None}
        try:
            if not patch:
                raise ValidationFailed("Nothing to update")
            await get_gemstone_or_404(db, gid)
            await db.execute(update(Gemstone).where(Gemstone.id == gid).values(**patch, updated_at=utcnow()))
            await db.commit()
            results.append({"id": gid, "success": True})
        except (ValidationFailed, NotFound) as e:
            results.append({"id": gid, "success": False, "error": e.message})
    updated = sum(1 for r in results if r["success"])
    return {"updated": updated, "failed": len(results) - updated, "results": results}


# certifications

async def list_certifications(db: AsyncSession, gemstone_id: Optional[str] = None) -> List[Dict[str, Any]]:
    q = select(Certification).order_by(Certification.created_at.desc())
    if gemstone_id:
        q = q.where(Certification.gemstone_id == gemstone_id)
    return [serialize_certification(c) for c in (await db.execute(q)).scalars().all()]


async def _get_certification_or_404(db: AsyncSession, cert_id: str) -> Certification:
    c = (await db.execute(select(Certification).where(Certification.id == cert_id))).scalar_one_or_none()
    if c is None:
        raise NotFound("Certification not found")
    return c


async def create_certification(db: AsyncSession, data: Dict[str, Any]) -> Certification:
    await get_gemstone_or_404(db, data["gemstone_id"])
    c = Certification(**data)
    db.add(c)
    await db.commit()
    await db.refresh(c)
    return c


async def update_certification(db: AsyncSession, cert_id: str, patch: Dict[str, Any]) -> Certification:
    c = await _get_certification_or_404(db, cert_id)
    if patch:
        await db.execute(update(Certification).where(Certification.id == cert_id).values(**patch))
        await db.commit()
        await db.refresh(c)
    return c


async def delete_certification(db: AsyncSession, cert_id: str):
    await _get_certification_or_404(db, cert_id)
    await db.execute(delete(Certification).where(Certification.id == cert_id))
    await db.commit()
