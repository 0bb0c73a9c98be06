"""
Error types surfaced by the chat pipeline and the HTTP layer.

Every error carries a stable ``code`` and the HTTP status it maps to, so the
web layer can render ``{"success": false, "error": {"code", "message"}}``
without inspecting exception classes one by one.
"""

from __future__ import annotations

import traceback
from typing import Any, Dict, Optional

import requests


class KBChatError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details: {self.details}"
        return self.message

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class BadRequest(KBChatError):
    code = "BAD_REQUEST"
    status_code = 400


class NotFound(KBChatError):
    code = "NOT_FOUND"
    status_code = 404


class ConfigError(KBChatError):
    code = "CONFIG_ERROR"
    status_code = 500


class UpstreamError(KBChatError):
    """An external collaborator (embeddings, vector index, LLM) failed."""

    code = "UPSTREAM_ERROR"
    status_code = 502


class UpstreamTimeout(UpstreamError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504


class InternalError(KBChatError):
    code = "INTERNAL_ERROR"
    status_code = 500


def serialize_error(err: BaseException | None) -> Dict[str, Any]:
    """Flatten an exception (and any HTTP exchange it carries) for logging."""
    if err is None:
        return {}
    out: Dict[str, Any] = {
        "type": err.__class__.__name__,
        "message": str(err),
        "stack": "".join(traceback.format_exception(type(err), err, err.__traceback__)),
    }
    if isinstance(err, KBChatError) and err.details:
        out["details"] = err.details

    # requests attaches the exchange to RequestException
    resp = getattr(err, "response", None)
    if isinstance(resp, requests.Response):
        out["response"] = {
            "status": resp.status_code,
            "status_text": resp.reason,
            "data": resp.text[:2000],
            "headers": dict(resp.headers),
        }
    req = getattr(err, "request", None)
    if req is not None and getattr(req, "url", None):
        out["request"] = {"method": getattr(req, "method", None), "url": req.url}
    cause = err.__cause__
    if cause is not None and cause is not err:
        out["cause"] = {"type": cause.__class__.__name__, "message": str(cause)}
    return out


def upstream_from_requests(err: requests.RequestException, what: str) -> UpstreamError:
    """Map a requests failure onto the upstream error taxonomy."""
    if isinstance(err, requests.Timeout):
        return UpstreamTimeout(f"{what} timed out", details={"error": str(err)})
    status = getattr(getattr(err, "response", None), "status_code", None)
    details: Dict[str, Any] = {"error": str(err)}
    if status is not None:
        details["status"] = status
    return UpstreamError(f"{what} failed", details=details)
