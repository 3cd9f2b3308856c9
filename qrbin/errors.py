"""
Service-level exceptions.

Routers translate these into HTTP responses:
- ValidationError → 422
- NotFoundError → 404
- ConflictExhaustedError → 500 (anomaly, not client misuse)
"""


class QRBinError(Exception):
    """Base class for errors raised by qrbin services."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(QRBinError):
    """Input has the wrong shape or exceeds a size limit. Nothing was changed."""


class NotFoundError(QRBinError):
    """Target is absent, or not in the lifecycle state the transition requires."""


class ConflictExhaustedError(QRBinError):
    """No free short code was found within the retry budget."""
