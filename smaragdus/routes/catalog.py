# smaragdus/routes/catalog.py
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CURRENCY_CODES, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..db import get_db
from ..errors import NotFound, ValidationFailed, ok
from ..services import catalog, currency
from ..services.catalog import CatalogFilters, split_csv

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/catalog")
async def list_catalog(
    gemstone_types: Optional[str] = Query(None),
    colors: Optional[str] = Query(None),
    cuts: Optional[str] = Query(None),
    clarities: Optional[str] = Query(None),
    origins: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    min_weight: Optional[float] = Query(None, ge=0),
    max_weight: Optional[float] = Query(None, ge=0),
    in_stock_only: bool = Query(False),
    has_certification: Optional[bool] = Query(None),
    has_images: Optional[bool] = Query(None),
    has_ai_analysis: Optional[bool] = Query(None),
    sort_by: Literal["created_at", "price_amount", "weight_carats", "name"] = Query("created_at"),
    sort_direction: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationFailed("min_price cannot exceed max_price")
    filters = CatalogFilters(
        gemstone_types=split_csv(gemstone_types),
        colors=split_csv(colors),
        cuts=split_csv(cuts),
        clarities=split_csv(clarities),
        origins=split_csv(origins),
        min_price=min_price,
        max_price=max_price,
        min_weight=min_weight,
        max_weight=max_weight,
        in_stock_only=in_stock_only,
        has_certification=has_certification,
        has_images=has_images,
        has_ai_analysis=has_ai_analysis,
    )
    return ok(await catalog.list_catalog(db, filters, sort_by, sort_direction, page, page_size))


@router.get("/catalog/filter-counts")
async def filter_counts(db: AsyncSession = Depends(get_db)):
    return ok(await catalog.filter_counts(db))


@router.get("/gemstones/{gemstone_id}")
async def get_gemstone(gemstone_id: str,
                       currency_code: Optional[str] = Query(None, alias="currency"),
                       db: AsyncSession = Depends(get_db)):
    gem = await catalog.get_enriched(db, gemstone_id)
    if gem is None:
        raise NotFound("Gemstone not found")
    gem.pop("internal_code", None)
    if currency_code:
        if currency_code not in CURRENCY_CODES:
            raise ValidationFailed(f"Unsupported currency: {currency_code}")
        rates = (await currency.get_rates(db))["rates"]
        gem["display_currency"] = currency_code
        gem["display_price"] = currency.convert(gem["price_amount"], gem["price_currency"], currency_code, rates)
        if gem["premium_price_amount"] is not None:
            gem["display_premium_price"] = currency.convert(
                gem["premium_price_amount"], gem["premium_price_currency"] or gem["price_currency"],
                currency_code, rates,
            )
    return ok(gem)
