from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class Logger:
    """Append-only JSONL writer."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def write(self, obj: dict):
        line = json.dumps(obj, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)


class TelemetrySink:
    """Retrieval trace observer. Never raises into the request path."""

    def emit(self, event: Dict[str, Any]) -> None:
        pass


class NullSink(TelemetrySink):
    pass


class JsonlTelemetrySink(TelemetrySink):
    def __init__(self, path: Path):
        self.path = Path(path)
        self._log: Logger | None = None

    def emit(self, event: Dict[str, Any]) -> None:
        try:
            if self._log is None:
                self._log = Logger(self.path)
            self._log.write(event)
        except Exception as e:
            logger.debug("telemetry write to %s failed: %s", self.path, e)


class MemorySink(TelemetrySink):
    """Collects events in a list; used by tests and the eval harness."""

    def __init__(self):
        self.events: list = []

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)


def make_sink(cfg: dict) -> TelemetrySink:
    tcfg = cfg.get("telemetry", {}) or {}
    if not tcfg.get("enabled", False):
        return NullSink()
    return JsonlTelemetrySink(Path(tcfg.get("path") or "logs/retrieval.log.jsonl"))
