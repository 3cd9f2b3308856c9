"""
Service error → HTTP response translation for routers.
"""
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status

from qrbin.errors import ConflictExhaustedError, NotFoundError, ValidationError
from qrbin.utils.logger import log_error


@contextmanager
def service_errors() -> Iterator[None]:
    """
    Translate service exceptions raised inside the block.

    - ValidationError → 422
    - NotFoundError → 404
    - ConflictExhaustedError → 500 (logged, signals an anomaly)
    """
    try:
        yield
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except ConflictExhaustedError as e:
        log_error("Short code space exhausted", event="bin", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not allocate a short code, please retry",
        ) from e
