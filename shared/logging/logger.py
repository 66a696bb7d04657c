"""
Logger Implementation
=====================

structlog setup shared by the admin API, the CLI and the pipeline stages.

Every event passes through three pipeline-specific processors before
rendering:

1. service context (process name and version)
2. secret censoring, so webhook URLs, SMTP passwords and API keys never
   reach a log sink
3. content clipping, so evidence bodies, page HTML and LLM output are
   logged as a short preview with their length

Stage runs bind ``run_id`` / ``stage`` through :func:`run_context`, which
scopes the binding to the current task.

Version: 0.1.0
"""

import datetime
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


SERVICE_VERSION = "0.1.0"

REDACTED = "***REDACTED***"

# Substrings; matched case-insensitively against every key, nested dicts included.
SENSITIVE_KEY_PARTS = (
    "password",
    "api_key",
    "secret",
    "token",
    "authorization",
    "webhook_url",
    "smtp_user",
)

CONTENT_KEYS = frozenset({"raw_content", "content", "body", "text", "raw_output", "html"})
CONTENT_PREVIEW_CHARS = 200

NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "pymongo", "asyncio")

_service_name = "regtruth"


def _add_service_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service_name)
    event_dict.setdefault("version", SERVICE_VERSION)
    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(part in key_lower for part in SENSITIVE_KEY_PARTS)


def _censor(value: dict[str, Any]) -> dict[str, Any]:
    return {
        key: REDACTED if _is_sensitive(key) else _censor(item) if isinstance(item, dict) else item
        for key, item in value.items()
    }


def _censor_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    return _censor(event_dict)


def _clip_content(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace long document bodies with a preview and their length."""
    for key in CONTENT_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and len(value) > CONTENT_PREVIEW_CHARS:
            event_dict[key] = f"{value[:CONTENT_PREVIEW_CHARS]}... [{len(value)} chars]"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "regtruth",
) -> None:
    """
    Configure structlog and route stdlib logging through it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines instead of the coloured console view
        service_name: Process name added to every event (API, CLI, worker)
    """
    global _service_name
    _service_name = service_name

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_service_context,
        _censor_secrets,
        _clip_content,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=10),
        )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger.

    Example:
        logger = get_logger(__name__)
        logger.info("evidence_created", evidence_id="ev_1", url="https://narodne-novine.nn.hr/")
    """
    return structlog.stdlib.get_logger(name)


@contextmanager
def run_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context to every event logged inside the block.

    Example:
        with run_context(run_id="run_1", stage="sentinel"):
            logger.info("scan_started")  # carries run_id and stage
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
