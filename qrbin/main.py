"""
FastAPI QR Bin API Application.

Main application entry point that configures:
- CORS middleware
- API routers
- Database lifecycle
- Logging system
- Exception handlers
- Prometheus metrics
- Graceful shutdown
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qrbin.config import get_settings
from qrbin.database import close_db, init_db
from qrbin.middlewares import LoggingMiddleware, RequestTrackingMiddleware
from qrbin.middlewares.request_tracking_middleware import wait_for_requests
from qrbin.routers import (
    bins_router,
    health_router,
    locations_router,
    photos_router,
    portability_router,
)
from qrbin.utils.logger import get_request_id, log_error, log_info, setup_logging
from qrbin.utils.prometheus_metrics import exceptions_total, ready, setup_prometheus

settings = get_settings()
logger = logging.getLogger("qrbin")

# Python logging 설정
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan with graceful shutdown.

    Shutdown 흐름:
    1. Health check 즉시 실패 (ready=0)
    2. 진행 중인 요청 완료 대기 (최대 30초)
    3. DB 연결 종료
    """
    await init_db()
    ready.set(1)
    log_info(
        "Application startup completed",
        event="lifecycle",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    yield

    ready.set(0)  # 로드밸런서가 새 요청 차단
    log_info("Application shutdown initiated", event="lifecycle")
    await wait_for_requests(timeout=30.0)
    await close_db()
    log_info("Graceful shutdown completed", event="lifecycle")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
## QR Bin API

Track physical storage bins, what is inside them, and their photos.

### Features
- **Bins**: Create, update, trash, restore and permanently delete bins
- **Short codes**: 6-character codes printed on labels for lookup without scanning
- **Trash**: Trashed bins are purged after the location's retention window
- **Backup**: Export and import bins with embedded photos (merge or replace)

### Authentication
Endpoints require a Bearer token issued by the auth service.
    """,
    openapi_tags=[
        {"name": "Locations", "description": "Locations, areas, trash and backups"},
        {"name": "Bins", "description": "Bin lifecycle and photo upload"},
        {"name": "Photos", "description": "Photo files"},
        {"name": "Import", "description": "Legacy data import"},
    ],
    lifespan=lifespan,
)

# Prometheus: FastAPI metrics + node info at /metrics
setup_prometheus(app)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add structured logging middleware
app.add_middleware(LoggingMiddleware)
# 진행 중인 요청 추적: Graceful shutdown을 위한 요청 카운트
app.add_middleware(RequestTrackingMiddleware)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Unhandled exception handler with structured logging.

    - ERROR 로그 남김
    - 500 응답 반환 (Request ID 포함, 장애 추적용)
    """
    exceptions_total.inc()
    rid = get_request_id()

    log_error(
        "Unhandled exception occurred",
        exc_info=True,
        error_type=type(exc).__name__,
        error_message=str(exc),
        http_method=request.method,
        http_path=request.url.path,
        event="exception",
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "request_id": rid,
        },
    )


# Include routers
app.include_router(health_router)
app.include_router(locations_router)
app.include_router(bins_router)
app.include_router(photos_router)
app.include_router(portability_router)


@app.get(
    "/",
    tags=["Root"],
    summary="API information",
)
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
