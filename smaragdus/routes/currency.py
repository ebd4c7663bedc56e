# smaragdus/routes/currency.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CURRENCY_CODES
from ..db import get_db
from ..deps import require_admin
from ..errors import ValidationFailed, ok
from ..models import UserProfile
from ..services import currency

router = APIRouter(prefix="/api", tags=["currency"])


@router.get("/currency/rates")
async def rates(db: AsyncSession = Depends(get_db)):
    return ok(await currency.get_rates(db))


@router.get("/currency/convert")
async def convert(amount: float = Query(..., ge=0),
                  from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
                  to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
                  db: AsyncSession = Depends(get_db)):
    from_currency, to_currency = from_currency.upper(), to_currency.upper()
    for code in (from_currency, to_currency):
        if code not in CURRENCY_CODES:
            raise ValidationFailed(f"Unsupported currency: {code}")
    data = await currency.get_rates(db)
    try:
        converted = currency.convert(amount, from_currency, to_currency, data["rates"])
    except currency.CurrencyError as e:
        raise ValidationFailed(str(e))
    return ok({
        "amount": amount,
        "from": from_currency,
        "to": to_currency,
        "result": converted,
        "updatedAt": data["updatedAt"],
    })


@router.post("/admin/currency/refresh")
async def refresh(admin: UserProfile = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return ok(await currency.get_rates(db, force_refresh=True), "Exchange rates refreshed")
