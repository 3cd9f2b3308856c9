"""
Health Check 라우터.

로드밸런서/오케스트레이터용 상태 확인 엔드포인트.
"""
import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import get_db
from qrbin.utils.prometheus_metrics import REGISTRY, Gauge, ready
from qrbin.utils.logger import INSTANCE

logger = logging.getLogger("qrbin.health")
router = APIRouter(prefix="/health", tags=["Health"])

# Health check 상태 메트릭
health_check_status = Gauge(
    "qrbin_health_check_status",
    "Health check status (1=healthy, 0=unhealthy)",
    ["check_type"],
    registry=REGISTRY,
)


def _is_shutting_down() -> bool:
    return ready._value.get() == 0


@router.get(
    "",
    summary="Health check (fast)",
)
async def health_check(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    """
    빠른 Health Check (로드밸런서용).

    - 종료 중이면 503
    - DB 연결 간단 확인 (타임아웃 1초)
    """
    start_time = time.perf_counter()

    if _is_shutting_down():
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )

    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=1.0)
    except asyncio.TimeoutError:
        logger.warning("DB health check timeout", extra={"event": "health"})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection timeout",
        )
    except Exception as e:
        logger.warning("DB health check failed", extra={"event": "health", "error": str(e)})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )

    health_check_status.labels(check_type="fast").set(1)
    return {
        "status": "healthy",
        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
        "instance": INSTANCE,
    }


@router.get(
    "/liveness",
    summary="Liveness probe",
)
async def liveness_probe() -> Dict[str, str]:
    """애플리케이션이 살아있는지만 확인합니다."""
    if _is_shutting_down():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )
    return {"status": "alive"}
