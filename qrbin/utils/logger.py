"""
운영 환경용 Python 로깅 설정.

원칙:
- INFO: 중요 비즈니스 이벤트 (bin 생성/삭제/복원, 휴지통 정리, import)
- WARNING: 클라이언트 오류, 파일 누락 (DB 행은 있으나 파일 없음)
- ERROR: 시스템 오류, 실패한 정리 작업
- 개인정보 제외 (username 등은 로깅하지 않음)

로그 출력:
- stdout: 사람이 읽기 쉬운 텍스트
- {log_dir}/*.log: NDJSON (log_dir 설정 시)
"""
import contextvars
import json
import logging
import socket
import sys
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from qrbin.config import get_settings

# 로깅에서 제외할 개인정보 필드
_SENSITIVE_FIELDS = frozenset({"email", "username", "password", "token", "secret", "user_name"})

# Request ID를 저장하는 context variable (비동기 안전)
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)

INSTANCE = socket.gethostname()

_app_logger = logging.getLogger("qrbin")


def generate_request_id() -> str:
    """새 Request ID 생성. 짧고 읽기 쉬운 형식."""
    return uuid.uuid4().hex[:12]


def get_request_id() -> Optional[str]:
    """현재 Request ID 반환."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Request ID 설정. None이면 새로 생성."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


class FlushingRotatingFileHandler(RotatingFileHandler):
    """매 로그마다 디스크에 flush."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


# 로그 레코드의 표준 필드 (ctx에 넣지 않음)
_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }
)


class JsonLinesFormatter(logging.Formatter):
    """
    운영용 NDJSON 포맷터.

    출력 필드:
    - ts: 타임스탬프 (UTC)
    - level: 로그 레벨
    - instance: 호스트명
    - rid: Request ID (요청 추적)
    - event: 이벤트 타입 (lifecycle, request, bin, photo, trash, portability, storage, db)
    - msg: 메시지
    - ctx: 추가 컨텍스트 (개인정보 제외)
    - exc: 예외 정보 (에러 시)
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        msecs = int(record.msecs) % 1000
        payload = {
            "ts": dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{msecs:03d}Z",
            "level": record.levelname,
            "instance": INSTANCE,
        }

        rid = get_request_id()
        if rid:
            payload["rid"] = rid

        if getattr(record, "event", None):
            payload["event"] = record.event

        payload["msg"] = record.getMessage()

        _skip_in_ctx = _STANDARD_ATTRS | {"event", "instance"}
        extra_ctx = {
            k: v for k, v in record.__dict__.items()
            if k not in _skip_in_ctx
            and k not in _SENSITIVE_FIELDS
            and v is not None
        }
        if extra_ctx:
            payload["ctx"] = extra_ctx

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging() -> None:
    """
    운영 환경용 로깅 설정.

    - stdout: 텍스트 포맷
    - stderr: ERROR 이상
    - {log_dir}/app.log, error.log: NDJSON (log_dir 설정 시)
    - 외부 라이브러리 로그 억제 (uvicorn, httpx, sqlalchemy 등)
    """
    settings = get_settings()
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    root_logger.handlers.clear()

    text_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.INFO)
    stdout_handler.setFormatter(text_formatter)
    root_logger.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(text_formatter)
    root_logger.addHandler(stderr_handler)

    log_dir = (settings.log_dir or "").strip()
    if log_dir:
        json_formatter = JsonLinesFormatter()
        try:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)

            file_handler = FlushingRotatingFileHandler(
                path / "app.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(json_formatter)
            root_logger.addHandler(file_handler)

            error_handler = FlushingRotatingFileHandler(
                path / "error.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(json_formatter)
            root_logger.addHandler(error_handler)
        except OSError as e:
            root_logger.warning("File logging disabled: %s", e)

    # 외부 라이브러리 로그 억제 (운영에서 노이즈 방지)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

    # SQLAlchemy 로그 억제 (느린 쿼리는 qrbin.db에서 별도 로깅)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def _log(level: int, message: str, exc_info: bool = False, **extra: Any) -> None:
    _app_logger.log(level, message, exc_info=exc_info, extra=extra)


def log_info(message: str, **extra: Any) -> None:
    """Log an info message with structured context."""
    _log(logging.INFO, message, **extra)


def log_warning(message: str, **extra: Any) -> None:
    """Log a warning message with structured context."""
    _log(logging.WARNING, message, **extra)


def log_error(message: str, exc_info: bool = False, **extra: Any) -> None:
    """Log an error message with structured context."""
    _log(logging.ERROR, message, exc_info=exc_info, **extra)
