"""
진행 중인 요청 추적 미들웨어.

Graceful shutdown 시 진행 중인 요청이 끝날 때까지 기다릴 수 있게 합니다.
"""
import asyncio
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from qrbin.utils.prometheus_metrics import in_flight_requests

logger = logging.getLogger("qrbin.request_tracking")

# Health check 경로는 제외 (shutdown 중에도 체크 가능해야 함)
EXCLUDED_PATHS = {"/health", "/health/liveness"}

_in_flight = 0


def get_in_flight_requests() -> int:
    """현재 진행 중인 요청 수 반환."""
    return _in_flight


def _adjust(delta: int) -> None:
    # await 없이 갱신하므로 이벤트 루프 안에서 원자적
    global _in_flight
    _in_flight = max(_in_flight + delta, 0)
    in_flight_requests.set(_in_flight)


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """진행 중인 요청 수를 추적하는 미들웨어."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        _adjust(1)
        try:
            return await call_next(request)
        finally:
            _adjust(-1)


async def wait_for_requests(timeout: float = 30.0) -> bool:
    """
    진행 중인 요청이 완료될 때까지 대기.

    Returns:
        True: 모든 요청 완료, False: 타임아웃
    """
    start_time = time.monotonic()
    while True:
        count = get_in_flight_requests()
        if count == 0:
            logger.info("All in-flight requests completed", extra={"event": "shutdown"})
            return True

        if time.monotonic() - start_time >= timeout:
            logger.warning(
                f"Timeout waiting for requests (remaining: {count})",
                extra={"event": "shutdown", "remaining_requests": count, "timeout": timeout},
            )
            return False

        await asyncio.sleep(0.5)
