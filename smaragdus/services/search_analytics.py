# smaragdus/services/search_analytics.py
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import AsyncSessionLocal, utcnow
from ..models import SearchAnalytics

logger = logging.getLogger(__name__)

TOP_QUERIES_LIMIT = 50
ZERO_RESULT_QUERIES_LIMIT = 20


async def record_search(db: AsyncSession, query: str, results_count: int, used_fuzzy_search: bool,
                        filters: Optional[Dict] = None, user_id: Optional[str] = None,
                        session_id: Optional[str] = None):
    stmt = insert(SearchAnalytics).values(
        search_query=query.lower().strip(),
        filters=filters or None,
        results_count=results_count,
        used_fuzzy_search=used_fuzzy_search,
        user_id=user_id,
        session_id=session_id,
    )
    await db.execute(stmt)
    await db.commit()


async def track_search(query: str, results_count: int, used_fuzzy_search: bool,
                       filters: Optional[Dict] = None, user_id: Optional[str] = None,
                       session_id: Optional[str] = None):
    """Background-task entry point: opens its own session and never raises."""
    if not query or not query.strip():
        return
    try:
        async with AsyncSessionLocal() as db:
            await record_search(db, query, results_count, used_fuzzy_search, filters, user_id, session_id)
    except SQLAlchemyError as e:
        logger.warning("search tracking failed for %r: %s", query, e)


async def get_summary(db: AsyncSession, days_back: int = 30) -> List[Dict[str, Any]]:
    since = utcnow() - timedelta(days=days_back)
    q = (
        select(
            SearchAnalytics.search_query,
            func.count().label("search_count"),
            func.avg(SearchAnalytics.results_count).label("avg_results"),
            func.sum(case((SearchAnalytics.results_count == 0, 1), else_=0)).label("zero_result_count"),
            func.sum(case((SearchAnalytics.used_fuzzy_search.is_(True), 1), else_=0)).label("fuzzy_usage_count"),
        )
        .where(SearchAnalytics.created_at >= since)
        .group_by(SearchAnalytics.search_query)
        .order_by(func.count().desc(), SearchAnalytics.search_query)
    )
    rows = (await db.execute(q)).all()
    return [
        {
            "search_query": r.search_query,
            "search_count": int(r.search_count),
            "avg_results": round(float(r.avg_results or 0), 2),
            "zero_result_count": int(r.zero_result_count or 0),
            "fuzzy_usage_count": int(r.fuzzy_usage_count or 0),
        }
        for r in rows
    ]


def _percent(part: float, whole: float) -> int:
    return round(part / whole * 100) if whole else 0


async def get_metrics(db: AsyncSession, days_back: int = 30) -> Dict[str, Any]:
    summary = await get_summary(db, days_back)
    total = sum(s["search_count"] for s in summary)
    total_results = sum(s["search_count"] * s["avg_results"] for s in summary)
    zero = sum(s["zero_result_count"] for s in summary)
    fuzzy = sum(s["fuzzy_usage_count"] for s in summary)
    zero_queries = sorted(
        ({"query": s["search_query"], "count": s["zero_result_count"]} for s in summary if s["zero_result_count"]),
        key=lambda x: -x["count"],
    )
    return {
        "totalSearches": total,
        "uniqueQueries": len(summary),
        "avgResultsPerSearch": round(total_results / total) if total else 0,
        "zeroResultPercentage": _percent(zero, total),
        "fuzzySearchUsage": _percent(fuzzy, total),
        "topQueries": summary[:TOP_QUERIES_LIMIT],
        "zeroResultQueries": zero_queries[:ZERO_RESULT_QUERIES_LIMIT],
    }


def _bucket_start(ts: datetime, bucket: str) -> datetime:
    if bucket == "hour":
        return ts.replace(minute=0, second=0, microsecond=0)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if bucket == "week":
        return day - timedelta(days=day.weekday())
    return day


async def get_trends(db: AsyncSession, days_back: int = 30, bucket: str = "day") -> List[Dict[str, Any]]:
    since = utcnow() - timedelta(days=days_back)
    q = select(
        SearchAnalytics.created_at, SearchAnalytics.results_count, SearchAnalytics.used_fuzzy_search
    ).where(SearchAnalytics.created_at >= since)
    buckets: Dict[datetime, Dict[str, Any]] = {}
    for created_at, results_count, fuzzy in (await db.execute(q)).all():
        key = _bucket_start(created_at, bucket)
        b = buckets.setdefault(key, {"count": 0, "results": 0, "zero": 0, "fuzzy": 0})
        b["count"] += 1
        b["results"] += results_count or 0
        b["zero"] += 1 if not results_count else 0
        b["fuzzy"] += 1 if fuzzy else 0
    return [
        {
            "time_bucket": key.isoformat(),
            "search_count": b["count"],
            "avg_results": round(b["results"] / b["count"], 2),
            "zero_result_count": b["zero"],
            "fuzzy_usage_count": b["fuzzy"],
        }
        for key, b in sorted(buckets.items())
    ]


async def get_user_history(db: AsyncSession, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    q = (
        select(SearchAnalytics)
        .where(SearchAnalytics.user_id == user_id)
        .order_by(SearchAnalytics.created_at.desc())
        .limit(limit)
    )
    rows = (await db.execute(q)).scalars().all()
    return [
        {
            "query": r.search_query,
            "resultsCount": r.results_count,
            "usedFuzzy": bool(r.used_fuzzy_search),
            "timestamp": r.created_at.isoformat(),
        }
        for r in rows
    ]
