"""Logging configuration for cmdwire.

Provides subsystem-level log file routing, secret sanitization,
and structlog + stdlib integration.

Subsystem hierarchy (stdlib dotted names, structlog wraps them):
    root              → ConsoleHandler (terminal)
      └─ cmdwire      → RotatingFileHandler → cmdwire.log (combined)
           ├─ cmdwire.registry → RFH → registry.log
           ├─ cmdwire.dispatch → RFH → dispatch.log
           ├─ cmdwire.security → RFH → security.log
           └─ cmdwire.config   → RFH → config.log

File handlers are only installed when a log directory is configured.
"""

import logging
import logging.handlers
import re
import sys
from typing import Any, Dict

import structlog

SUBSYSTEMS = ("registry", "dispatch", "security", "config")

LOGGER_PREFIX = "cmdwire"

# ---------------------------------------------------------------------------
# Secret sanitization
# ---------------------------------------------------------------------------

_SECRET_PATTERNS = [
    # Discord-style bot tokens (id.timestamp.hmac)
    re.compile(r"[MNO][a-zA-Z\d_-]{23,27}\.[a-zA-Z\d_-]{6}\.[a-zA-Z\d_-]{27,}"),
    # Slack tokens
    re.compile(r"xox[abposr]-[a-zA-Z0-9-]{10,}"),
    # Bearer/Bot token values in headers
    re.compile(r"(?:Bearer|Bot)\s+[a-zA-Z0-9_./-]{20,}"),
]

_REDACTED = "***REDACTED***"


def _scrub_value(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that scrubs chat-service tokens.

    Walks string values (and strings inside lists, tuples and dicts)
    and replaces token matches with a redacted placeholder.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _scrub_value(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _scrub_value(v) if isinstance(v, str) else v
                for v in value
            )
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _scrub_value(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

_FILE_PROCESSORS = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.format_exc_info,
    structlog.dev.ConsoleRenderer(colors=False),
]


def _level(name: Any, default: int) -> int:
    name = str(name or "").upper()
    return getattr(logging, name, default) if name else default


def _prepare_log_dir(log_dir) -> bool:
    if log_dir is None:
        return False
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        return False
    return True


def _reset_logger(name: str, level: int) -> logging.Logger:
    target = logging.getLogger(name)
    target.setLevel(level)
    target.handlers.clear()
    target.propagate = True
    return target


def setup_logging(config=None) -> None:
    """Configure structured logging with optional subsystem file handlers.

    Args:
        config: Optional Config instance. Without it, console logging at
            INFO is installed and loggers are not cached, so a second
            call with the real config takes effect.
    """
    root_level = _level(config.logging_level if config is not None else None, logging.INFO)
    subsystem_levels = config.logging_subsystem_levels if config is not None else {}
    log_dir = config.log_dir if config is not None else None
    to_files = _prepare_log_dir(log_dir)

    def add_file(target: logging.Logger, filename: str, level: int) -> None:
        if not to_files:
            return
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=config.logging_max_file_size_mb * 1024 * 1024,
            backupCount=config.logging_backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(processors=_FILE_PROCESSORS)
        )
        target.addHandler(handler)

    # Terminal output hangs off the root; everything under cmdwire propagates to it
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(root_level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    add_file(_reset_logger(LOGGER_PREFIX, logging.DEBUG), f"{LOGGER_PREFIX}.log", root_level)
    for subsystem in SUBSYSTEMS:
        level = _level(subsystem_levels.get(subsystem), root_level)
        add_file(_reset_logger(f"{LOGGER_PREFIX}.{subsystem}", level), f"{subsystem}.log", level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
