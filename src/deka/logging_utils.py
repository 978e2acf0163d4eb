"""Logging helpers for the deka CLI."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

from deka.config import load_settings
from deka.utils.serialization import json_default

_logger = logging.getLogger(__name__)

_PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
# httpx logs every request at INFO.
_DEPENDENCY_LOGGERS = ("httpx", "httpcore")

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys() | {"message", "asctime"}
)


def record_extras(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_safe_default)


class LogfmtFormatter(logging.Formatter):
    """``key=value`` pairs, quoting values that contain spaces or quotes."""

    def format(self, record: logging.LogRecord) -> str:
        pairs: dict[str, object] = {
            "ts": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        pairs.update(record_extras(record))
        if record.exc_info:
            pairs["exception"] = self.formatException(record.exc_info)
        return " ".join(f"{key}={_logfmt_value(value)}" for key, value in pairs.items())


class PrettyFormatter(logging.Formatter):
    """Human-oriented output: one header line, then each ``extra`` field indented."""

    def format(self, record: logging.LogRecord) -> str:
        header = (
            f"{self.formatTime(record, _DATE_FORMAT)} {record.levelname:>7} "
            f"{record.name}: {record.getMessage()}"
        )
        lines = [header]
        lines.extend(f"    {key}: {value}" for key, value in record_extras(record).items())
        if record.exc_info:
            lines.append(self.formatException(record.exc_info))
        return "\n".join(lines)


def _safe_default(value: object) -> object:
    try:
        return json_default(value)
    except TypeError:
        return str(value)


def _logfmt_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if not text or any(ch in text for ch in ' ="\n\t'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    return text


def build_formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JsonFormatter()
    if fmt == "logfmt":
        return LogfmtFormatter()
    if fmt == "pretty":
        return PrettyFormatter()
    return logging.Formatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT)


def configure_logging(
    level: str | int | None = None,
    fmt: str | None = None,
    debug: bool = False,
) -> None:
    """Configure structured logging for the CLI.

    ``level`` and ``fmt`` override the settings loaded from the environment.
    Dependency loggers stay at WARNING or above unless ``debug`` is set.
    """
    settings = load_settings()
    if level is None:
        level = settings.logging.level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    formatter = build_formatter(fmt or settings.logging.format)

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if settings.logging.file:
        try:
            Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.logging.file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.logging.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    dependency_level = level if debug else max(level, logging.WARNING)
    for name in _DEPENDENCY_LOGGERS:
        logging.getLogger(name).setLevel(dependency_level)

