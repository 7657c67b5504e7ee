"""
Logging for the Feishu gateway

Unified logger factory with per-connection context tracking and timing helpers.

Quick start:
============

```python
from logger import get_logger, set_request_context, log_execution_time

logger = get_logger("gateway.channels.feishu")

# Bind context once per inbound event
set_request_context(account_id="default", conversation_id="oc_123")

logger.info("Message forwarded", extra={"message_id": "om_1"})
logger.error("Send failed", exc_info=True)

with log_execution_time("token exchange", logger):
    token = await token_cache.get_token(account)
```

Output:
=======
- console: coloured, human readable
- files: one JSON object per line (app.log + error.log), rotated by size
"""
import json
import logging
import os
import sys
import tempfile
import time
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "feishu_gateway"


# ============================================================
# Configuration
# ============================================================


def _get_log_dir() -> Path:
    """Resolve the log directory: env override, then user data dir, then tmp."""
    env_dir = os.getenv("FEISHU_GATEWAY_LOG_DIR")
    if env_dir:
        return Path(env_dir)
    try:
        from utils.app_paths import get_logs_dir
        return get_logs_dir()
    except Exception:
        # app_paths not importable during very early imports
        return Path(tempfile.gettempdir()) / "feishu-gateway" / "logs"


_log_dir = _get_log_dir()


LOG_CONFIG = {
    "level": os.getenv("FEISHU_GATEWAY_LOG_LEVEL", "INFO").upper(),
    "console_enabled": True,
    "file_enabled": os.getenv("FEISHU_GATEWAY_LOG_FILES", "1") != "0",
    "file": str(_log_dir / "gateway.log"),
    "error_file": str(_log_dir / "error.log"),
    "max_size": 20 * 1024 * 1024,  # 20MB
    "backup_count": 5,
}


# ============================================================
# Context variables
# ============================================================
_account_id: ContextVar[str] = ContextVar("account_id", default="")
_conversation_id: ContextVar[str] = ContextVar("conversation_id", default="")
_message_id: ContextVar[str] = ContextVar("message_id", default="")


def set_request_context(
    account_id: str = "",
    conversation_id: str = "",
    message_id: str = "",
) -> None:
    """
    Bind tracing context for the event currently being handled.

    Args:
        account_id: gateway account the event belongs to
        conversation_id: platform chat id
        message_id: platform message id
    """
    if account_id:
        _account_id.set(account_id)
    if conversation_id:
        _conversation_id.set(conversation_id)
    if message_id:
        _message_id.set(message_id)


def clear_request_context() -> None:
    """Reset tracing context once an event has been handled."""
    _account_id.set("")
    _conversation_id.set("")
    _message_id.set("")


@contextmanager
def log_execution_time(operation: str, logger: Optional[logging.Logger] = None):
    """
    Log how long the wrapped block took.

    Args:
        operation: human readable operation name
        logger: logger to write to (defaults to the root gateway logger)
    """
    if logger is None:
        logger = logging.getLogger(ROOT_LOGGER_NAME)

    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"{operation} finished", extra={
            "operation": operation,
            "duration_ms": round(duration_ms, 2),
        })


# ============================================================
# Formatters
# ============================================================

class _ContextFilter(logging.Filter):
    """Copy the tracing context onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.account_id = _account_id.get() or "-"
        record.conversation_id = _conversation_id.get() or "-"
        record.message_id = _message_id.get() or "-"
        return True


class _ConsoleFormatter(logging.Formatter):
    """Coloured console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(account_id)s:%(conversation_id)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_colors = sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            record = logging.makeLogRecord(record.__dict__)
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Example:
    {"ts":"2026-01-01T12:00:00.123+00:00","level":"INFO","account":"default","conv":"oc_1","logger":"gateway.session","msg":"Frame dropped","reason":"self"}
    """

    _RESERVED = {
        "name", "msg", "args", "created", "levelname", "levelno",
        "pathname", "filename", "module", "exc_info", "exc_text",
        "stack_info", "lineno", "funcName", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "taskName", "account_id", "conversation_id", "message_id",
    }

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "account": getattr(record, "account_id", "-"),
            "conv": getattr(record, "conversation_id", "-"),
            "msg_id": getattr(record, "message_id", "-"),
            "logger": record.name.replace(f"{ROOT_LOGGER_NAME}.", ""),
            "file": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }

        if record.exc_info:
            log["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "msg": str(record.exc_info[1]) if record.exc_info[1] else None,
                "trace": "".join(traceback.format_exception(*record.exc_info)).strip(),
            }

        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                try:
                    json.dumps(value)
                    log[key] = value
                except (TypeError, ValueError):
                    log[key] = str(value)

        return json.dumps(log, ensure_ascii=False, default=str)


# ============================================================
# Logger management
# ============================================================

class _LoggerManager:
    """Process-wide logger setup (singleton)."""

    _initialized = False
    _loggers: dict[str, logging.Logger] = {}

    @classmethod
    def setup(cls) -> None:
        if cls._initialized:
            return

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(LOG_CONFIG["level"])
        root.handlers.clear()

        context_filter = _ContextFilter()

        if LOG_CONFIG["console_enabled"]:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(LOG_CONFIG["level"])
            console.setFormatter(_ConsoleFormatter())
            console.addFilter(context_filter)
            root.addHandler(console)

        if LOG_CONFIG["file_enabled"]:
            try:
                Path(LOG_CONFIG["file"]).parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                # read-only filesystem: fall back to the temp directory
                fallback_dir = Path(tempfile.gettempdir()) / "feishu-gateway" / "logs"
                fallback_dir.mkdir(parents=True, exist_ok=True)
                LOG_CONFIG["file"] = str(fallback_dir / "gateway.log")
                LOG_CONFIG["error_file"] = str(fallback_dir / "error.log")

            file_handler = RotatingFileHandler(
                LOG_CONFIG["file"],
                maxBytes=LOG_CONFIG["max_size"],
                backupCount=LOG_CONFIG["backup_count"],
                encoding="utf-8",
            )
            file_handler.setLevel(LOG_CONFIG["level"])
            file_handler.setFormatter(_JsonFormatter())
            file_handler.addFilter(context_filter)
            root.addHandler(file_handler)

            error_handler = RotatingFileHandler(
                LOG_CONFIG["error_file"],
                maxBytes=LOG_CONFIG["max_size"],
                backupCount=LOG_CONFIG["backup_count"],
                encoding="utf-8",
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(_JsonFormatter())
            error_handler.addFilter(context_filter)
            root.addHandler(error_handler)

        cls._initialized = True

    @classmethod
    def get(cls, name: Optional[str] = None) -> logging.Logger:
        if not cls._initialized:
            cls.setup()

        if not name or name == ROOT_LOGGER_NAME:
            full_name = ROOT_LOGGER_NAME
        else:
            full_name = f"{ROOT_LOGGER_NAME}.{name}"
        if full_name not in cls._loggers:
            cls._loggers[full_name] = logging.getLogger(full_name)

        return cls._loggers[full_name]


# ============================================================
# Public interface
# ============================================================

def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger under the gateway root.

    Args:
        name: dotted area name, e.g. "gateway.channels.feishu"

    Returns:
        logging.Logger
    """
    return _LoggerManager.get(name)
