# smaragdus/app.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import auth, cache, config
from .db import engine, init_models
from .errors import register_exception_handlers
from .routes import (
    admin_chat, admin_gemstones, admin_orders, admin_statistics, admin_users,
    cart, catalog, chat, contact, currency, orders, profile, search,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("database ready")
    yield
    await cache.close()
    await engine.dispose()


app = FastAPI(
    title="Smaragdus Viridi Gemstone Store API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(search.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(chat.router)
app.include_router(contact.router)
app.include_router(currency.router)
app.include_router(profile.router)
app.include_router(admin_users.router)
app.include_router(admin_orders.router)
app.include_router(admin_gemstones.router)
app.include_router(admin_statistics.router)
app.include_router(admin_chat.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(
        "smaragdus.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=True,
    )
