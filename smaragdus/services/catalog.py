# smaragdus/services/catalog.py
"""Catalog read model: gemstone rows merged with enrichment, media and certificates."""
from dataclasses import dataclass, field
from math import ceil
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Gemstone, GemstoneEnrichment, GemstoneImage, Certification, Origin

SORT_COLUMNS = {
    "created_at": Gemstone.created_at,
    "price_amount": Gemstone.price_amount,
    "weight_carats": Gemstone.weight_carats,
    "name": Gemstone.name,
}


@dataclass
class CatalogFilters:
    gemstone_types: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    cuts: List[str] = field(default_factory=list)
    clarities: List[str] = field(default_factory=list)
    origins: List[str] = field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_weight: Optional[float] = None
    max_weight: Optional[float] = None
    in_stock_only: bool = False
    has_certification: Optional[bool] = None
    has_images: Optional[bool] = None
    has_ai_analysis: Optional[bool] = None

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v not in (None, False, [])}


def _num(v) -> Optional[float]:
    return float(v) if v is not None else None


def split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def pagination(page: int, page_size: int, total: int) -> Dict[str, Any]:
    total_pages = ceil(total / page_size) if page_size else 0
    return {
        "page": page,
        "pageSize": page_size,
        "totalItems": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def _exists_flag(column, subquery, wanted: Optional[bool]):
    if wanted is None:
        return None
    return column.in_(subquery) if wanted else column.not_in(subquery)


def filter_conditions(filters: Optional[CatalogFilters]) -> list:
    if filters is None:
        return []
    conds = []
    if filters.gemstone_types:
        conds.append(Gemstone.name.in_(filters.gemstone_types))
    if filters.colors:
        conds.append(Gemstone.color.in_(filters.colors))
    if filters.cuts:
        conds.append(Gemstone.cut.in_(filters.cuts))
    if filters.clarities:
        conds.append(Gemstone.clarity.in_(filters.clarities))
    if filters.origins:
        conds.append(Gemstone.origin_id.in_(select(Origin.id).where(Origin.name.in_(filters.origins))))
    if filters.min_price is not None:
        conds.append(Gemstone.price_amount >= filters.min_price)
    if filters.max_price is not None:
        conds.append(Gemstone.price_amount <= filters.max_price)
    if filters.min_weight is not None:
        conds.append(Gemstone.weight_carats >= filters.min_weight)
    if filters.max_weight is not None:
        conds.append(Gemstone.weight_carats <= filters.max_weight)
    if filters.in_stock_only:
        conds.append(Gemstone.in_stock.is_(True))
    for cond in (
        _exists_flag(Gemstone.id, select(Certification.gemstone_id), filters.has_certification),
        _exists_flag(Gemstone.id, select(GemstoneImage.gemstone_id), filters.has_images),
        _exists_flag(Gemstone.id, select(GemstoneEnrichment.gemstone_id), filters.has_ai_analysis),
    ):
        if cond is not None:
            conds.append(cond)
    return conds


async def enrich(db: AsyncSession, gemstones: List[Gemstone], detailed: bool = False) -> List[Dict[str, Any]]:
    """Build the enriched projection for a batch of gemstones, preserving order."""
    if not gemstones:
        return []
    ids = [g.id for g in gemstones]

    r = await db.execute(select(GemstoneEnrichment).where(GemstoneEnrichment.gemstone_id.in_(ids)))
    enrichments = {e.gemstone_id: e for e in r.scalars().all()}

    r = await db.execute(
        select(GemstoneImage).where(GemstoneImage.gemstone_id.in_(ids)).order_by(GemstoneImage.image_order)
    )
    images: Dict[str, List[GemstoneImage]] = {}
    for img in r.scalars().all():
        images.setdefault(img.gemstone_id, []).append(img)

    r = await db.execute(select(Certification).where(Certification.gemstone_id.in_(ids)))
    certs: Dict[str, List[Certification]] = {}
    for c in r.scalars().all():
        certs.setdefault(c.gemstone_id, []).append(c)

    origin_ids = {g.origin_id for g in gemstones if g.origin_id}
    origins: Dict[str, Origin] = {}
    if origin_ids:
        r = await db.execute(select(Origin).where(Origin.id.in_(origin_ids)))
        origins = {o.id: o for o in r.scalars().all()}

    out = []
    for g in gemstones:
        ai = enrichments.get(g.id)
        imgs = images.get(g.id, [])
        primary = next((i for i in imgs if i.is_primary), imgs[0] if imgs else None)
        origin = origins.get(g.origin_id) if g.origin_id else None
        row = {
            "id": g.id,
            "serial_number": g.serial_number,
            "name": g.name,
            "color": g.color,
            "cut": g.cut,
            "clarity": g.clarity,
            "weight_carats": _num(g.weight_carats),
            "length_mm": _num(g.length_mm),
            "width_mm": _num(g.width_mm),
            "depth_mm": _num(g.depth_mm),
            "price_amount": _num(g.price_amount),
            "price_currency": g.price_currency,
            "premium_price_amount": _num(g.premium_price_amount),
            "premium_price_currency": g.premium_price_currency,
            "in_stock": bool(g.in_stock),
            "quantity": g.quantity,
            "delivery_days": g.delivery_days,
            # admin-authored copy wins over the generated one
            "description": g.description or (ai.description if ai else None),
            "promotional_text": g.promotional_text or (ai.promotional_text if ai else None),
            "marketing_highlights": g.marketing_highlights or (ai.marketing_highlights if ai else None),
            "metadata_status": g.metadata_status,
            "origin_name": origin.name if origin else None,
            "has_certification": g.id in certs,
            "has_ai_analysis": ai is not None,
            "ai_confidence_score": _num(ai.confidence_score) if ai else None,
            "has_images": bool(imgs),
            "image_count": len(imgs),
            "primary_image_url": primary.image_url if primary else None,
            "created_at": g.created_at.isoformat() if g.created_at else None,
            "updated_at": g.updated_at.isoformat() if g.updated_at else None,
        }
        if detailed:
            row["internal_code"] = g.internal_code
            row["images"] = [
                {"id": i.id, "image_url": i.image_url, "image_order": i.image_order, "is_primary": i.is_primary}
                for i in imgs
            ]
            row["certifications"] = [serialize_certification(c) for c in certs.get(g.id, [])]
            row["origin"] = (
                {"id": origin.id, "name": origin.name, "country": origin.country,
                 "region": origin.region, "mine_name": origin.mine_name}
                if origin else None
            )
        out.append(row)
    return out


def serialize_certification(c: Certification) -> Dict[str, Any]:
    return {
        "id": c.id,
        "gemstone_id": c.gemstone_id,
        "certificate_type": c.certificate_type,
        "certificate_number": c.certificate_number,
        "certificate_url": c.certificate_url,
        "issued_date": c.issued_date.isoformat() if c.issued_date else None,
    }


async def list_catalog(db: AsyncSession, filters: Optional[CatalogFilters] = None,
                       sort_by: str = "created_at", sort_direction: str = "desc",
                       page: int = 1, page_size: int = 24) -> Dict[str, Any]:
    conds = filter_conditions(filters)
    where = and_(*conds) if conds else None

    count_q = select(func.count()).select_from(Gemstone)
    if where is not None:
        count_q = count_q.where(where)
    total = (await db.execute(count_q)).scalar_one()

    column = SORT_COLUMNS.get(sort_by, Gemstone.created_at)
    order = column.asc() if sort_direction == "asc" else column.desc()
    q = select(Gemstone)
    if where is not None:
        q = q.where(where)
    q = q.order_by(order, Gemstone.id).offset((page - 1) * page_size).limit(page_size)
    rows = (await db.execute(q)).scalars().all()

    return {
        "gemstones": await enrich(db, list(rows)),
        "pagination": pagination(page, page_size, total),
    }


async def get_enriched(db: AsyncSession, gemstone_id: str) -> Optional[Dict[str, Any]]:
    r = await db.execute(select(Gemstone).where(Gemstone.id == gemstone_id))
    g = r.scalar_one_or_none()
    if g is None:
        return None
    return (await enrich(db, [g], detailed=True))[0]


async def _group_counts(db: AsyncSession, column) -> Dict[str, int]:
    r = await db.execute(select(column, func.count()).group_by(column))
    return {k: n for k, n in r.all() if k is not None}


async def filter_counts(db: AsyncSession) -> Dict[str, Any]:
    r = await db.execute(
        select(Origin.name, func.count(Gemstone.id))
        .join(Gemstone, Gemstone.origin_id == Origin.id)
        .group_by(Origin.name)
    )
    in_stock = (await db.execute(
        select(func.count()).select_from(Gemstone).where(Gemstone.in_stock.is_(True))
    )).scalar_one()
    total = (await db.execute(select(func.count()).select_from(Gemstone))).scalar_one()
    return {
        "gemstoneTypes": await _group_counts(db, Gemstone.name),
        "colors": await _group_counts(db, Gemstone.color),
        "cuts": await _group_counts(db, Gemstone.cut),
        "clarities": await _group_counts(db, Gemstone.clarity),
        "origins": {name: n for name, n in r.all()},
        "inStock": in_stock,
        "total": total,
    }
