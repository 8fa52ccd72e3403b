"""structlog setup for the forms service.

Every event passes through :class:`SecretRedactor` right before rendering, so
configured API keys, the signing key and bearer tokens never reach stdout or
the log file. Request fields (method, path, token role) are bound per request
with :func:`bind_request_context` and merged into every event.
"""

import logging
import re
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator

import structlog

from core.config import Settings

REDACTED = "[redacted]"

# Event keys whose values are always dropped, compared case-insensitively
SENSITIVE_KEYS = frozenset({
    "api_key", "apikey", "authorization", "token", "access_token",
    "jwt_signing_key", "signing_key",
})

_BEARER_VALUE = re.compile(r"(?i)\bbearer\s+\S+")
_JWT_VALUE = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*")


class SecretRedactor:
    """structlog processor that masks secrets by key name and by value."""

    def __init__(self, secrets: Iterable[str] = ()):
        # Longest first so a key that contains another is masked whole
        self.secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def scrub(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        text = _BEARER_VALUE.sub(f"Bearer {REDACTED}", text)
        return _JWT_VALUE.sub(REDACTED, text)

    def __call__(self, logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in event_dict.items():
            if key.lower() in SENSITIVE_KEYS:
                event_dict[key] = REDACTED
            elif isinstance(value, str):
                event_dict[key] = self.scrub(value)
        return event_dict


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging to stdout and, optionally, a file."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    logging.basicConfig(level=level, handlers=handlers, format="%(message)s")

    if settings.log_format == "json":
        timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
        renderer = structlog.processors.JSONRenderer()
    else:
        timestamper = structlog.processors.TimeStamper(fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            SecretRedactor([*settings.api_keys, settings.jwt_signing_key]),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**fields: Any) -> None:
    """Attach fields to every event logged while the current request runs."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def connector_call(logger: structlog.BoundLogger, operation: str,
                   **fields: Any) -> Iterator[Dict[str, Any]]:
    """Time one form connector call.

    The yielded dict is logged with the outcome, so callers can add result
    fields such as ``count`` or ``found``. Failures are logged and re-raised.
    """
    start = time.perf_counter()
    try:
        yield fields
    except Exception as e:
        logger.warning("Connector call failed", operation=operation,
                       duration_ms=_elapsed_ms(start), error_type=type(e).__name__, **fields)
        raise
    logger.info("Connector call completed", operation=operation,
                duration_ms=_elapsed_ms(start), **fields)


def log_cache_operation(logger: structlog.BoundLogger, operation: str, key: str,
                        **fields: Any) -> None:
    logger.debug("Cache operation", operation=operation, cache_key=key, **fields)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
