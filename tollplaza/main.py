# tollplaza/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from tollplaza.routers import detections, passages, gates, health
from tollplaza.database import create_tables
from tollplaza.config import settings
from tollplaza.exceptions import PassageIntegrityError
from tollplaza.services.fare_engine import get_fare_policy
from tollplaza.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="Toll Plaza API",
    description="Plate detections, passages, fares and gate occupancy.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (allow the operator console on the same LAN) ───────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to console IP in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth.
    The detection push endpoint and health check stay open for edge devices.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        open_endpoints = {("POST", "/api/v1/detections")}
        if (request.url.path in open_paths or (request.method, request.url.path) in open_endpoints
                or not settings.API_KEY):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(PassageIntegrityError)
async def passage_integrity_handler(request: Request, exc: PassageIntegrityError):
    logger.critical(f"🚨 Integrity failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": "Passage integrity violation; manual reconciliation required",
            "vehicle_id": exc.vehicle_id,
            "passage_ids": exc.passage_ids,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(detections.router, prefix="/api/v1", tags=["📡 Detections"])
app.include_router(passages.router,   prefix="/api/v1", tags=["🚗 Passages"])
app.include_router(gates.router,      prefix="/api/v1", tags=["🚧 Gates"])
app.include_router(health.router,     prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Toll Plaza backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"💰 Fare policy: {get_fare_policy().name}")
    logger.info(f"📡 Detection source: {settings.DETECTION_SOURCE_URL}")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")

    if settings.DETECTION_POLLING_ENABLED:
        from tollplaza.services.detection_ingestion import start_detection_polling
        app.state.poller = asyncio.create_task(start_detection_polling(), name="detection-poller")
        logger.info("📡 Detection polling started (pull mode)")


@app.on_event("shutdown")
async def shutdown():
    poller = getattr(app.state, "poller", None)
    if poller is not None:
        poller.cancel()
    logger.info("🛑 Toll Plaza backend shutting down...")
