"""
Marketplace: FastAPI Backend
Classified ads with a draft → active → stopped lifecycle and forked version history.
All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from marketplace.config import get_settings
from marketplace.database import init_db, check_db_connection
from marketplace.errors import ErrorCode, LifecycleError
from marketplace.routers import ads, auth, locations

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Marketplace API...")
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Marketplace API",
    description="Classified ads with lifecycle transitions and version lineage",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error contract: every failure is {"error": CODE, "message": text} ──

_STATUS_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
}


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    code = _STATUS_CODES.get(exc.status_code, ErrorCode.DB_ERROR if exc.status_code >= 500 else ErrorCode.BAD_REQUEST)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code.value, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "invalid request"
    return JSONResponse(status_code=400, content={"error": ErrorCode.BAD_REQUEST.value, "message": message})


# ── Routers ───────────────────────────────────────────────────────────
app.include_router(auth.router, prefix="/api")
app.include_router(locations.router, prefix="/api/locations", tags=["Locations"])
app.include_router(ads.router, prefix="/api/ads", tags=["Ads"])


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Marketplace API",
        "database": "connected" if db_ok else "disconnected",
    }
