# web/app.py
from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..app import ChatPipeline, build_pipeline, health_check, ingest_corpus
from ..config import load_config
from ..errors import KBChatError, serialize_error

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class SourceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parent_id: Optional[str] = Field(default=None, alias="parentId")
    slug: Optional[str] = None


class IngestRequest(BaseModel):
    limit: int = Field(default=100, ge=0)
    offset: int = Field(default=0, ge=0)


def _envelope(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": {"code": code, "message": message}})


def _ok(data) -> dict:
    return {"success": True, "data": data}


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(KBChatError)
    async def _kb_error(request: Request, exc: KBChatError):
        if exc.status_code >= 500:
            logger.error("%s %s failed", request.method, request.url.path, extra={"error": serialize_error(exc)})
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return _envelope(exc.status_code, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _validation(request: Request, exc: RequestValidationError):
        errs = exc.errors()
        first = errs[0] if errs else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = f"Invalid {loc}: {first.get('msg')}" if loc else "Invalid request body"
        return _envelope(400, "BAD_REQUEST", msg)

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return _envelope(405, "METHOD_NOT_ALLOWED", "Use POST")
        if exc.status_code == 404:
            return _envelope(404, "NOT_FOUND", "Not found")
        return _envelope(exc.status_code, "HTTP_ERROR", str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("%s %s crashed", request.method, request.url.path, extra={"error": serialize_error(exc)})
        return _envelope(500, "INTERNAL_ERROR", "Internal server error")


def create_app(pipeline: Optional[ChatPipeline] = None, cfg: Optional[dict] = None) -> FastAPI:
    if pipeline is None:
        cfg = cfg or load_config(os.getenv("KB_CHAT_CONFIG", "config.yaml"))
        pipeline = build_pipeline(cfg)

    app = FastAPI(title="kb-chat", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )
    app.state.pipeline = pipeline
    _install_error_handlers(app)

    @app.post("/chat")
    def chat(req: ChatRequest):
        result = pipeline.answer(req.query, session_id=req.session_id)
        return _ok(result.to_response())

    @app.get("/health")
    def health():
        return _ok(health_check(pipeline))

    @app.post("/source")
    def source(req: SourceRequest):
        return _ok(pipeline.find_source(parent_id=req.parent_id, slug=req.slug))

    @app.post("/ingest")
    def ingest(req: Optional[IngestRequest] = None):
        req = req or IngestRequest()
        return _ok(ingest_corpus(pipeline, limit=req.limit, offset=req.offset))

    return app
