# smaragdus/seed_db.py
import asyncio
import json
import logging
from pathlib import Path

from sqlalchemy import select, update

from . import config, crud
from .db import engine, AsyncSessionLocal, init_models
from .models import Gemstone, Origin, UserProfile

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
GEMSTONES_FILE = DATA_DIR / "gemstones.json"


async def seed(path: Path = GEMSTONES_FILE) -> dict:
    """Insert origins and gemstones that are not there yet; returns counts of new rows."""
    await init_models()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    added = {"origins": 0, "gemstones": 0, "admin_promoted": False}
    async with AsyncSessionLocal() as session:
        origin_ids = {}
        for rec in data.get("origins", []):
            origin = (await session.execute(select(Origin).where(Origin.name == rec["name"]))).scalar_one_or_none()
            if origin is None:
                origin = Origin(**rec)
                session.add(origin)
                await session.flush()
                added["origins"] += 1
            origin_ids[rec["name"]] = origin.id

        for rec in data.get("gemstones", []):
            if await crud.get_gemstone_by_serial(session, rec["serial_number"]):
                continue
            rec = dict(rec)
            origin_name = rec.pop("origin", None)
            if origin_name and origin_name not in origin_ids:
                origin_ids[origin_name] = (await crud.get_or_create_origin(session, origin_name)).id
            quantity = rec.get("quantity", 1)
            session.add(Gemstone(
                origin_id=origin_ids.get(origin_name),
                in_stock=quantity > 0,
                metadata_status="verified",
                **rec,
            ))
            added["gemstones"] += 1

        if config.SEED_ADMIN_EMAIL:
            r = await session.execute(
                update(UserProfile)
                .where(UserProfile.email == config.SEED_ADMIN_EMAIL.strip().lower())
                .values(role="admin")
            )
            added["admin_promoted"] = r.rowcount > 0

        await session.commit()
    logger.info("seeded %d origins, %d gemstones", added["origins"], added["gemstones"])
    return added


async def main():
    try:
        await seed()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
