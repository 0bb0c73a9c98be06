from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict

# Attributes every LogRecord has; anything else came in through `extra=`.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_NOISY = ("urllib3", "httpx", "httpcore", "chromadb", "sentence_transformers", "fastembed")


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}


class _PlainFormatter(logging.Formatter):
    """Single-line text to stderr; extras appended as key=value."""

    default_fmt = "%(levelname)s %(name)s - %(message)s"
    verbose_fmt = (
        "%(asctime)s %(levelname)s %(name)s [%(process)d:%(threadName)s] "
        "%(filename)s:%(lineno)d - %(message)s"
    )
    datefmt = "%Y-%m-%d %H:%M:%S"

    def __init__(self, debug: bool = False) -> None:
        fmt = self.verbose_fmt if debug else self.default_fmt
        super().__init__(fmt=fmt, datefmt=self.datefmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = _extras(record)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extra.items()))
        return line


class _JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
            "file": record.filename,
            "line": record.lineno,
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.upper()
        if upper in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            return getattr(logging, upper)
        if upper.isdigit():
            return int(upper)
    return logging.INFO


def setup_logging(level: str | int | None = None, json_logs: bool = False) -> None:
    """
    Configure root logging once for the process.

    Args:
        level: Logging level (e.g. "DEBUG"). Falls back to $LOG_LEVEL, then INFO.
        json_logs: Emit JSON lines instead of plain text (both go to stderr).
    """
    final_level = _coerce_level(level or os.getenv("LOG_LEVEL") or logging.INFO)

    root = logging.getLogger()
    root.setLevel(final_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    if json_logs:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_PlainFormatter(debug=(final_level <= logging.DEBUG)))
    root.addHandler(handler)

    for noisy in _NOISY:
        logging.getLogger(noisy).setLevel(max(final_level, logging.WARNING))
