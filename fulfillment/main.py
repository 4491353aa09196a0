"""
Fulfillment Service — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from fulfillment.api import health, kitchen, orders, payments, products, stock
from fulfillment.core.config import get_settings
from fulfillment.core.errors import register_exception_handlers
from fulfillment.core.logging_config import setup_logging
from fulfillment.core.redis_client import close_redis
from fulfillment.db.database import engine, init_models
from fulfillment.middleware.auth import JWTAuthMiddleware
from fulfillment.middleware.idempotency import IdempotencyMiddleware

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_models()
    logger.info("%s %s ready", settings.SERVICE_NAME, settings.SERVICE_VERSION)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Order Fulfillment Service",
    description="Cart reservation, payment confirmation, kitchen workflow and the stock ledger.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Order matters: Auth is added last so it runs first; idempotency keys
# are scoped to the authenticated caller
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

register_exception_handlers(app)

app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(kitchen.router)
app.include_router(products.router)
app.include_router(stock.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
