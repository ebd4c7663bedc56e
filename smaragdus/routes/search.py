# smaragdus/routes/search.py
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..db import get_db
from ..deps import get_current_user, get_optional_user, require_admin
from ..errors import ok
from ..models import UserProfile
from ..services import search, search_analytics
from ..services.catalog import CatalogFilters

router = APIRouter(prefix="/api/search", tags=["search"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchFiltersIn(CamelModel):
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    min_weight: Optional[float] = Field(default=None, ge=0)
    max_weight: Optional[float] = Field(default=None, ge=0)
    gemstone_types: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    cuts: List[str] = Field(default_factory=list)
    clarities: List[str] = Field(default_factory=list)
    origins: List[str] = Field(default_factory=list)
    in_stock_only: bool = False
    has_images: Optional[bool] = None
    has_certification: Optional[bool] = None
    has_ai_analysis: Optional[bool] = Field(default=None, alias="hasAIAnalysis")

    @model_validator(mode="after")
    def ranges(self):
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("minPrice cannot exceed maxPrice")
        if self.min_weight is not None and self.max_weight is not None and self.min_weight > self.max_weight:
            raise ValueError("minWeight cannot exceed maxWeight")
        return self

    def to_filters(self) -> CatalogFilters:
        return CatalogFilters(**self.model_dump())


class SearchIn(CamelModel):
    query: Optional[str] = Field(default=None, min_length=1, max_length=500)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    filters: Optional[SearchFiltersIn] = None
    search_descriptions: bool = False
    locale: Optional[Literal["en", "ru"]] = None
    session_id: Optional[str] = Field(default=None, max_length=100)


class TrackSearchIn(CamelModel):
    query: str = Field(min_length=1, max_length=500)
    filters: Optional[Dict[str, Any]] = None
    results_count: int = Field(ge=0)
    used_fuzzy_search: bool = False
    session_id: Optional[str] = Field(default=None, max_length=100)


async def _run_search(payload: SearchIn, background: BackgroundTasks, db: AsyncSession,
                      user: Optional[UserProfile]):
    filters = payload.filters.to_filters() if payload.filters else None
    result = await search.search_gemstones(
        db, payload.query, filters, payload.page, payload.page_size, payload.search_descriptions,
    )
    if payload.query and payload.query.strip():
        background.add_task(
            search_analytics.track_search,
            payload.query,
            result["pagination"]["totalItems"],
            result["usedFuzzySearch"],
            filters.as_dict() if filters else None,
            user.user_id if user else None,
            payload.session_id,
        )
    return ok(result)


@router.post("")
async def search_post(payload: SearchIn, background: BackgroundTasks,
                      db: AsyncSession = Depends(get_db),
                      user: Optional[UserProfile] = Depends(get_optional_user)):
    return await _run_search(payload, background, db, user)


@router.get("")
async def search_get(background: BackgroundTasks,
                     query: Optional[str] = Query(None, min_length=1, max_length=500),
                     page: int = Query(1, ge=1),
                     page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, alias="pageSize"),
                     db: AsyncSession = Depends(get_db),
                     user: Optional[UserProfile] = Depends(get_optional_user)):
    payload = SearchIn(query=query, page=page, page_size=page_size)
    return await _run_search(payload, background, db, user)


@router.get("/suggestions")
async def suggestions(query: str = Query(..., min_length=1, max_length=100),
                      limit: int = Query(10, ge=1, le=20),
                      db: AsyncSession = Depends(get_db)):
    return ok({"suggestions": await search.get_suggestions(db, query, limit)})


@router.get("/fuzzy-suggestions")
async def fuzzy_suggestions(query: str = Query(..., min_length=1, max_length=100),
                            limit: int = Query(5, ge=1, le=20)):
    return ok({"suggestions": search.get_fuzzy_suggestions(query, limit)})


@router.post("/analytics")
async def track(payload: TrackSearchIn, background: BackgroundTasks,
                user: Optional[UserProfile] = Depends(get_optional_user)):
    background.add_task(
        search_analytics.track_search,
        payload.query,
        payload.results_count,
        payload.used_fuzzy_search,
        payload.filters,
        user.user_id if user else None,
        payload.session_id,
    )
    return ok(None)


@router.get("/analytics")
async def analytics_metrics(days_back: int = Query(30, ge=1, le=365, alias="daysBack"),
                            admin: UserProfile = Depends(require_admin),
                            db: AsyncSession = Depends(get_db)):
    return ok(await search_analytics.get_metrics(db, days_back))


@router.get("/analytics/trends")
async def analytics_trends(days_back: int = Query(30, ge=1, le=365, alias="daysBack"),
                           bucket: Literal["hour", "day", "week"] = Query("day"),
                           admin: UserProfile = Depends(require_admin),
                           db: AsyncSession = Depends(get_db)):
    return ok({"trends": await search_analytics.get_trends(db, days_back, bucket)})


@router.get("/history")
async def history(limit: int = Query(50, ge=1, le=100),
                  user: UserProfile = Depends(get_current_user),
                  db: AsyncSession = Depends(get_db)):
    return ok({"history": await search_analytics.get_user_history(db, user.user_id, limit)})
