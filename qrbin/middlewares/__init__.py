"""
HTTP middlewares.
"""
from qrbin.middlewares.logging_middleware import LoggingMiddleware
from qrbin.middlewares.request_tracking_middleware import RequestTrackingMiddleware

__all__ = ["LoggingMiddleware", "RequestTrackingMiddleware"]
