from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from starlette.exceptions import HTTPException as StarletteHTTPException

from beatbloom.config import settings
from beatbloom.api.admin import router as admin_router
from beatbloom.api.auth import router as auth_router
from beatbloom.api.beats import router as beats_router
from beatbloom.api.cart import router as cart_router
from beatbloom.api.genres import router as genres_router
from beatbloom.api.orders import router as orders_router
from beatbloom.api.payments import router as payments_router
from beatbloom.api.producers import router as producers_router
from beatbloom.api.responses import error_body
from beatbloom.api.settings import router as settings_router
from beatbloom.middleware.rate_limit import RateLimitMiddleware
from beatbloom.middleware.security import SecurityHeadersMiddleware
from beatbloom.services.settings_service import SettingsCache

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("starting_up", env=settings.APP_ENV)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except Exception as e:
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis

    yield

    # Shutdown
    log.info("shutting_down")
    await redis.close()


app = FastAPI(
    title="BeatBloom",
    lifespan=lifespan,
)

# One cache per process, shared by every request
app.state.settings_cache = SettingsCache(settings.SETTINGS_CACHE_TTL_SECONDS)

# CORS: the storefront runs on its own origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "development" else [settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Security headers (outermost, runs last on request and first on response)
app.add_middleware(SecurityHeadersMiddleware)

# Rate limiting (runs after security headers are already queued)
app.add_middleware(RateLimitMiddleware)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", errors),
    )


app.include_router(auth_router)
app.include_router(beats_router)
app.include_router(genres_router)
app.include_router(producers_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(settings_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
