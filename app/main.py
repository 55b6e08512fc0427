# app/main.py
"""
Application entrypoint: lifecycle, middleware, exception mapping, routers.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.helpers import DatabaseError
from app.db.pool import db_pool
from app.features.checkin.api import router as checkin_api
from app.features.delivery.api import router as delivery_api
from app.features.delivery.domain import DeliveryRuleValidationError
from app.features.delivery.services.message_service import MessageValidationError
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RateLimitHeadersMiddleware, RequestContextMiddleware, rate_limiter
from app.routes import admin, billing, cron, health, profile, protected
from app.services.plans import PlanLimitError

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Database pool up on startup; pool closed and rate limiter cleared on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
    rate_limiter.reset()
    logger.info("All services closed")


app = FastAPI(
    title="Carry my Words",
    description="Scheduled and check-in triggered message delivery",
    version="0.1.0",
    lifespan=lifespan,
)

# Added in reverse: RequestContext runs first so rate limiting sees the client IP
app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(protected.router)
app.include_router(profile.router)
app.include_router(checkin_api.router)
app.include_router(delivery_api.router)
app.include_router(admin.router)
app.include_router(cron.router)
app.include_router(billing.router)


@app.exception_handler(PlanLimitError)
async def plan_limit_handler(request: Request, exc: PlanLimitError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": exc.message, "error": "plan_limit", "limit": _jsonable_limit(exc.limit)},
    )


@app.exception_handler(DeliveryRuleValidationError)
async def rule_validation_handler(request: Request, exc: DeliveryRuleValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.reason, "error": "invalid_delivery_rule"},
    )


@app.exception_handler(MessageValidationError)
async def message_validation_handler(request: Request, exc: MessageValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "error": "invalid_message"},
    )


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError):
    logger.error(
        "Unhandled database error",
        path=request.url.path,
        operation=exc.operation,
        error=str(exc),
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": "database_error"},
    )


def _jsonable_limit(limit):
    if limit == float("inf"):
        return None
    return limit


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
