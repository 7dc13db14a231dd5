"""FastAPI application relaying a bounded conversation to the upstream model."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .caller import ResilientCaller
from .config import load_config, load_strings
from .errors import ErrorKind, FilesystemError, InvalidInputError, RelayError, UploadTooLargeError
from .memory import Conversation
from .pipeline import BatchPipeline, make_batch_processor
from .upstream import GenerativeClient, create_from_config
from .uploads import declared_too_large, store_upload

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class GenerateRequest(BaseModel):
    # Optional so a missing prompt gets the relay's 400 instead of a 422.
    prompt: Optional[str] = Field(default=None, description="Text of the next turn.")


class GenerateResponse(BaseModel):
    generatedText: str


class UploadResponse(BaseModel):
    message: str
    conversation: List[str]


# -----------------------------
# Utilities
# -----------------------------
def _make_conversation(cfg: Dict[str, Any], strings: Dict[str, Any]) -> Conversation:
    mem_cfg = cfg.get("memory", {})
    return Conversation(
        str(strings["initial_context"]),
        max_total_length=int(mem_cfg.get("max_total_length", 30000)),
    )


def _make_caller(cfg: Dict[str, Any], strings: Dict[str, Any], client: Any) -> ResilientCaller:
    retry_cfg = cfg.get("retry", {})
    return ResilientCaller(
        client,
        max_retries=int(retry_cfg.get("max_retries", 3)),
        initial_delay=float(retry_cfg.get("initial_delay", 2.0)),
        fallback_text=strings["error_messages"]["no_content_generated"],
        roles=strings["roles"],
        reject_when_busy=bool(retry_cfg.get("reject_when_busy", False)),
    )


def _make_pipeline(cfg: Dict[str, Any]) -> BatchPipeline:
    pipe_cfg = cfg.get("pipeline", {})
    return BatchPipeline(
        batch_size=int(pipe_cfg.get("batch_size", 20000)),
        encoding=str(pipe_cfg.get("encoding", "utf-16-le")),
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    client: Optional[GenerativeClient] = None,
    conversation: Optional[Conversation] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    strings = load_strings(cfg.get("strings_path"))
    messages = strings["error_messages"]

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    uploads_cfg = cfg.get("uploads", {})
    uploads_dir = str(uploads_cfg.get("dir", "uploads"))
    max_upload_bytes = int(uploads_cfg.get("max_bytes", 10 * 1024 * 1024))

    # Services
    client = client or create_from_config(cfg, strings)
    conversation = conversation or _make_conversation(cfg, strings)
    caller = _make_caller(cfg, strings, client)
    pipeline = _make_pipeline(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
            logger.info("Upstream client closed")

    app = FastAPI(title="Conversation Relay", version="0.1.0", lifespan=lifespan)
    app.state.conversation = conversation
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error(request: Request, exc: RelayError) -> JSONResponse:
        message = exc.message
        if exc.kind is ErrorKind.OVERLOADED:
            message = messages["service_unavailable"]
        return JSONResponse(status_code=exc.http_status, content={"error": message})

    @app.middleware("http")
    async def reject_oversized_upload(request: Request, call_next):
        # Refuse before the multipart body is spooled when the size is declared.
        if request.url.path == "/upload-log" and declared_too_large(
            request.headers.get("content-length"), max_upload_bytes
        ):
            exc = UploadTooLargeError(max_upload_bytes)
            logger.warning("Rejected upload declaring %s bytes", request.headers["content-length"])
            return JSONResponse(status_code=exc.http_status, content={"error": exc.message})
        return await call_next(request)

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return strings["debug"]["backend_running"]

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "messages": len(conversation.log),
            "total_length": conversation.log.total_length,
            "max_total_length": conversation.log.max_total_length,
            "busy": conversation.busy,
        }

    @app.post("/generate", response_model=GenerateResponse)
    async def generate(req: GenerateRequest):
        if not req.prompt:
            raise InvalidInputError(messages["missing_prompt"])

        try:
            snapshot = await caller.call(conversation, req.prompt)
        except RelayError as e:
            logger.error("Error generating content: %s", e)
            raise

        # Concatenate the whole conversation without separators.
        return GenerateResponse(generatedText="".join(m.text for m in snapshot))

    @app.post("/upload-log", response_model=UploadResponse)
    async def upload_log(logfile: Optional[UploadFile] = File(default=None)):
        if logfile is None:
            raise InvalidInputError(messages["no_file_uploaded"])

        try:
            path = await store_upload(
                logfile, uploads_dir, max_upload_bytes, empty_message=messages["empty_file"]
            )
        except FilesystemError as e:
            logger.error("Error moving uploaded file: %s", e)
            raise FilesystemError(messages["file_processing_failed"]) from e
        finally:
            await logfile.close()

        logger.info("Stored upload %s as %s", logfile.filename, path)
        try:
            report = await pipeline.run(path, make_batch_processor(caller, conversation))
        except RelayError:
            logger.exception("Error processing log file %s", path)
            return JSONResponse(status_code=500, content={"error": messages["log_processing_failed"]})

        if report.batches == 0:
            # Only blank lines: nothing reached the conversation.
            raise InvalidInputError(messages["empty_file"])

        return UploadResponse(
            message=strings["messages"]["upload_success"],
            conversation=conversation.texts(),
        )

    return app
