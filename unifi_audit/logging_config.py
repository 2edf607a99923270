"""Structured JSON logging for the audit pipeline.

Every record is emitted as one JSON object with a UTC timestamp, level,
logger name and source location. Audit runs attach the site they belong to,
and tool invocations are logged as start/success/failure events with their
duration. Credentials never reach the log output.
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, MutableMapping, Optional, Tuple

from pythonjsonlogger import jsonlogger

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

SENSITIVE_PATTERNS = (
    "secret", "password", "token", "key", "credential", "cookie",
    "stdout", "stderr", "output", "response_body",
)

# Identifiers that match a sensitive pattern but carry no secret
SAFE_KEYS = frozenset({"issue_key"})


class AuditJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, logger and source fields."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }


def setup_logging(
    level: str = "INFO",
    use_stderr: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Install a single JSON stream handler on the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_stderr: Log to stderr instead of stdout
        quiet: Loggers capped at WARNING
    """
    handler = logging.StreamHandler(sys.stderr if use_stderr else sys.stdout)
    handler.setFormatter(AuditJsonFormatter(fmt="%(timestamp)s %(level)s %(name)s %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = [handler]

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def is_sensitive(key: str) -> bool:
    if key in SAFE_KEYS:
        return False
    lowered = key.lower()
    return any(pattern in lowered for pattern in SENSITIVE_PATTERNS)


def redact(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop entries whose key looks like it could hold a secret."""
    return {k: v for k, v in values.items() if not is_sensitive(k)}


class SiteLogger(logging.LoggerAdapter):
    """Adds ``site_id`` to every record logged for one audit run."""

    def __init__(self, logger: logging.Logger, site_id: str):
        super().__init__(logger, {"site_id": site_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


class ToolInvocationLogger:
    """Logs one tool call as ``tool_start`` then ``tool_success`` or ``tool_failure``.

    Context passed to ``start`` (site_id, issue_key, ...) is repeated on the
    closing event together with ``duration_ms``.

    Example:
        invocation_logger = ToolInvocationLogger(logger).start("unifi_audit_summary", site_id="default")
        ...
        invocation_logger.success(score=87)
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._tool_name: Optional[str] = None
        self._started: Optional[float] = None
        self._context: Dict[str, Any] = {}

    def start(self, tool_name: str, **context) -> "ToolInvocationLogger":
        self._tool_name = tool_name
        self._started = time.monotonic()
        self._context = redact(context)
        self.logger.info(
            "Tool invocation started",
            extra={"tool_name": tool_name, "event": "tool_start", **self._context},
        )
        return self

    def success(self, **result_info) -> None:
        self.logger.info("Tool invocation succeeded", extra=self._closing_fields("tool_success", result_info))

    def failure(self, error: str, **result_info) -> None:
        """Log a failed call. ``error`` must already be free of secrets."""
        fields = self._closing_fields("tool_failure", result_info)
        fields["error"] = error
        self.logger.error("Tool invocation failed", extra=fields)

    @property
    def duration_ms(self) -> int:
        if self._started is None:
            return 0
        return int((time.monotonic() - self._started) * 1000)

    def _closing_fields(self, event: str, result_info: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "tool_name": self._tool_name,
            "event": event,
            "duration_ms": self.duration_ms,
            **self._context,
            **redact(result_info),
        }
