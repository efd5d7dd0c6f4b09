"""
Structured Logging

JSON lines on stdout. Records carry the request correlation id and, while an
SMS turn is being handled, the conversation session id, so one booking
conversation can be followed across webhook calls and Celery tasks.

Ethiopian phone numbers are masked in the message and in ``extra_data``
before a record is written.
"""
import json
import logging
import re
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
sms_session_id_var: ContextVar[str] = ContextVar("sms_session_id", default="")

# Local (09/07XXXXXXXX) or international (+2519/2517XXXXXXXX) mobile numbers
_PHONE_RE = re.compile(r"(?<!\d)(\+?(?:251|0)[79]\d{2})\d{4}(\d{2})(?!\d)")

_NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
}


def mask_phone_pii(value: str) -> str:
    """Replace the middle four digits of every phone number in ``value`` with ****"""
    return _PHONE_RE.sub(r"\1****\2", value)


def _mask_extra(value: Any) -> Any:
    if isinstance(value, str):
        return mask_phone_pii(value)
    if isinstance(value, dict):
        return {key: _mask_extra(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask_extra(item) for item in value]
    return value


class ContextFilter(logging.Filter):
    """Copies the correlation and SMS session ids onto every record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.sms_session_id = sms_session_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_phone_pii(record.getMessage()),
            "function": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        session_id = sms_session_id_var.get()
        if session_id:
            entry["sms_session_id"] = session_id

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = _mask_extra(extra_data)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Amharic stays readable in the log stream
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger accepting ``extra_data={...}`` on every level method"""

    def _log(
        self,
        level: int,
        msg: object,
        args,
        exc_info=None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # One more frame so the record points at the caller, not this override
        super()._log(
            level, msg, args,
            exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure the root logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines (production) or a one-line text format (local runs)
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(ContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s/%(sms_session_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation id (a fresh one when None) to the current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation id; generated and bound on first use"""
    cid = correlation_id_var.get()
    if not cid:
        cid = set_correlation_id()
    return cid


def set_sms_session_id(session_id: str) -> None:
    sms_session_id_var.set(session_id)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """Log start, completion and failure of a downstream call with its duration"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(f"Starting {operation_name}", extra_data={"operation": operation_name})

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}",
                    extra_data={
                        "operation": operation_name,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return result

        return wrapper
    return decorator
