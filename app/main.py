from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from app.core.cache import close_redis_pool, redis_healthy
from app.core.change_feed import change_feed
from app.core.config import settings
from app.core.exceptions import SwipeMatchError, RateLimited
from app.core.logging import configure_logging, bind_request_context
from app.api.v1 import swipes, matches, notifications, presence
from app.api.v1 import websocket

configure_logging(app_env=settings.app_env)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Swipe Match API starting (env={settings.app_env})")
    yield
    await close_redis_pool()


app = FastAPI(
    title="Swipe Match API",
    description="FastAPI backend for swiping, matching and real-time chat",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id to every log line of the request and echo it back."""
    request_id = bind_request_context(request.headers.get("X-Request-ID"), path=request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(SwipeMatchError)
async def swipe_match_error_handler(request: Request, exc: SwipeMatchError):
    """Typed engine errors become their status code with a machine-readable code."""
    if exc.status_code >= 500:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Include API routers
app.include_router(swipes.router, prefix="/api/v1/swipes", tags=["Swipes"])
app.include_router(matches.router, prefix="/api/v1/matches", tags=["Matches"])  # Matches and conversations
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(presence.router, prefix="/api/v1/presence", tags=["Presence"])
# WebSocket endpoint for real-time inbox and conversation delivery
app.include_router(websocket.router, tags=["WebSocket"])


@app.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": "1.0.0",
        "redis": "ok" if await redis_healthy() else "unavailable",
        "live_feed": change_feed.get_stats(),
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Swipe Match API", "docs": "/docs"}
