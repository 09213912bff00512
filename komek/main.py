import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from komek.config import settings
from komek.db import PostgresOrderStore, close_pool, get_pool
from komek.deps import Services
from komek.errors import OrderServiceError, ValidationError
from komek.identity import PostgresUserDirectory
from komek.metrics import get_metrics_bytes, get_metrics_content_type
from komek.migrations import apply_migrations, verify_schema
from komek.redis_client import close_redis, get_token_store
from komek.routes import auth, orders
from komek.specialties import SPECIALTIES

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
    pool = await get_pool()
    if settings.apply_migrations_on_startup:
        await apply_migrations(pool)
    await verify_schema(pool)
    token_store = await get_token_store()
    app.state.services = Services.build(PostgresOrderStore(pool), PostgresUserDirectory(pool), token_store)
    logger.info("Order service ready")
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Komek Orders", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(auth.router)


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies get the same 400 envelope as errors raised by the core."""
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = ".".join(str(part) for part in loc if part != "body") or None
    message = f"Invalid value for {field}" if field else "Invalid request body"
    return await order_service_error_handler(request, ValidationError(message, field=field))


@app.get("/specialties")
async def specialties() -> dict:
    return {"specialties": SPECIALTIES}


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: lifecycle transitions, rejections, location reports."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
