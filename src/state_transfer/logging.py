import json
import logging
import sys
from typing import Any, Dict, Union
from datetime import datetime, timezone


class StructuredLogger:
    """
    A logger that outputs logs in a structured JSON format.

    Extra fields that look like credentials are masked before they are
    written, since generated passwords and TLS keys flow through the
    transfer code paths.
    """

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Clear existing handlers to avoid duplicate logs
        if self.logger.handlers:
            self.logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(self.JsonFormatter())
        self.logger.addHandler(handler)
        self.logger.propagate = False

    class JsonFormatter(logging.Formatter):
        # Standard LogRecord attributes that should not be included as extra fields
        STANDARD_ATTRS = {
            "name",
            "msg",
            "args",
            "created",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "message",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "thread",
            "threadName",
            "exc_info",
            "exc_text",
            "stack_info",
            "taskName",
        }

        SENSITIVE_KEYS = ("password", "secret", "token", "key", "credentials")
        MASK = "***"

        def format(self, record: logging.LogRecord) -> str:
            log_entry: Dict[str, Any] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }

            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            for key, value in record.__dict__.items():
                if key in self.STANDARD_ATTRS:
                    continue
                if self._is_sensitive(key):
                    value = self.MASK
                log_entry[key] = value

            return json.dumps(log_entry, default=str)

        def _is_sensitive(self, key: str) -> bool:
            lowered = key.lower()
            return any(marker in lowered for marker in self.SENSITIVE_KEYS)

    def set_level(self, level: Union[int, str]) -> None:
        """Change the level at runtime; accepts names like "DEBUG"."""
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO
        self.logger.setLevel(level)

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=kwargs)

    def critical(self, message: str, exc_info: bool = True, **kwargs: Any) -> None:
        self.logger.critical(message, exc_info=exc_info, extra=kwargs)


# Global logger instance
logger = StructuredLogger("state_transfer")
