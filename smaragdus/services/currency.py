# smaragdus/services/currency.py
"""USD-based exchange rates scraped from mig.kz (KZT quotes).

Lookup order: redis, then fresh ``currency_rates`` rows, then the live source.
When the source fails the static fallback table is used.
"""
import logging
import re
from datetime import timedelta
from typing import Dict, Optional

import httpx
from sqlalchemy import select, insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from .. import cache, config
from ..db import utcnow
from ..models import CurrencyRate

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"
ADJUSTMENT_FACTOR = 1.03
CACHE_KEY = "currency_rates:USD"

FALLBACK_RATES = {
    "RUB": 90.0,
    "EUR": 0.92,
    "KZT": 450.0,
    "GBP": 0.79,
    "CHF": 0.88,
    "JPY": 150.0,
}
# only these are quoted by the source; the rest come from the fallback table
SCRAPED_CURRENCIES = ("USD", "EUR", "RUB", "GBP")
ZERO_DECIMAL_CURRENCIES = ("JPY", "KZT")

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class CurrencyError(ValueError):
    pass


def fallback_rates() -> Dict[str, float]:
    return {code: round(rate * ADJUSTMENT_FACTOR, 6) for code, rate in FALLBACK_RATES.items()}


def _quote(page: str, code: str) -> Optional[float]:
    m = re.search(code + r".*?(\d+\.?\d*).*?(\d+\.?\d*)", page, re.I | re.S)
    if not m:
        return None
    buy, sell = float(m.group(1)), float(m.group(2))
    if buy <= 0 or sell <= 0:
        return None
    return (buy + sell) / 2


def parse_rates_page(page: str) -> Dict[str, float]:
    """KZT buy/sell quotes -> adjusted USD-based rates."""
    kzt = {code: _quote(page, code) for code in SCRAPED_CURRENCIES}
    usd_to_kzt = kzt["USD"]
    if not usd_to_kzt:
        raise CurrencyError("Could not find USD rate on source page")

    rates = fallback_rates()
    rates["KZT"] = round(usd_to_kzt * ADJUSTMENT_FACTOR, 6)
    for code in ("EUR", "RUB", "GBP"):
        if kzt[code]:
            rates[code] = round(usd_to_kzt / kzt[code] * ADJUSTMENT_FACTOR, 6)
    return rates


async def fetch_rates_from_source() -> Dict[str, float]:
    try:
        async with httpx.AsyncClient(timeout=15, follow_redirects=True) as client:
            r = await client.get(config.CURRENCY_SOURCE_URL, headers={"User-Agent": USER_AGENT})
            r.raise_for_status()
        rates = parse_rates_page(r.text)
        logger.info("fetched exchange rates from source: %s", rates)
        return rates
    except (httpx.HTTPError, CurrencyError) as e:
        logger.warning("exchange rate fetch failed, using fallback rates: %s", e)
        return fallback_rates()


async def store_rates(db: AsyncSession, rates: Dict[str, float]):
    now = utcnow()
    for target, rate in rates.items():
        r = await db.execute(select(CurrencyRate).where(
            CurrencyRate.base_currency == BASE_CURRENCY,
            CurrencyRate.target_currency == target,
        ))
        existing = r.scalar_one_or_none()
        if existing:
            stmt = update(CurrencyRate).where(CurrencyRate.id == existing.id).values(rate=rate, updated_at=now)
        else:
            stmt = insert(CurrencyRate).values(
                base_currency=BASE_CURRENCY, target_currency=target, rate=rate, updated_at=now
            )
        await db.execute(stmt)
    await db.commit()


async def _rates_from_db(db: AsyncSession) -> Optional[Dict]:
    threshold = utcnow() - timedelta(seconds=config.CURRENCY_CACHE_TTL_SECONDS)
    r = await db.execute(select(CurrencyRate).where(CurrencyRate.base_currency == BASE_CURRENCY))
    rows = r.scalars().all()
    if not rows or any(row.updated_at < threshold for row in rows):
        return None
    return {
        "rates": {row.target_currency: float(row.rate) for row in rows},
        "updatedAt": max(row.updated_at for row in rows).isoformat(),
    }


async def get_rates(db: AsyncSession, force_refresh: bool = False) -> Dict:
    if not force_refresh:
        cached = await cache.get_json(CACHE_KEY)
        if cached:
            return cached
        stored = await _rates_from_db(db)
        if stored:
            result = {"base": BASE_CURRENCY, **stored}
            result["rates"][BASE_CURRENCY] = 1.0
            await cache.set_json(CACHE_KEY, result, config.CURRENCY_CACHE_TTL_SECONDS)
            return result

    rates = await fetch_rates_from_source()
    await store_rates(db, rates)
    result = {
        "base": BASE_CURRENCY,
        "rates": {BASE_CURRENCY: 1.0, **rates},
        "updatedAt": utcnow().isoformat(),
    }
    await cache.set_json(CACHE_KEY, result, config.CURRENCY_CACHE_TTL_SECONDS)
    return result


def round_amount(amount: float, currency: str) -> float:
    if currency in ZERO_DECIMAL_CURRENCIES:
        return float(round(amount))
    return round(amount, 2)


def convert(amount: float, from_currency: str, to_currency: str, rates: Dict[str, float]) -> float:
    """Cross conversion through USD using USD-based ``rates``."""
    if from_currency == to_currency:
        return round_amount(amount, to_currency)
    for code in (from_currency, to_currency):
        if code not in rates:
            raise CurrencyError(f"Unsupported currency: {code}")
    usd = amount / rates[from_currency]
    return round_amount(usd * rates[to_currency], to_currency)
