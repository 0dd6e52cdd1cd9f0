"""FastAPI application proxying chat-style image edits to a generative model."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from .config import load_config
from .errors import ConfigurationError, ImageChatError, InvalidRequest, NoImageProduced, UpstreamError
from .extract import NO_IMAGE_TEXT, Extraction, extract_response
from .llm import GeminiImageModel, GenerationResult, create_from_config
from .memory import DEFAULT_SESSION, SessionHistory
from .memory import create_from_config as create_history
from .turns import Turn, build_user_turn, bytes_to_part, data_url_to_part, infer_mime_type, parse_history

logger = logging.getLogger("image_chat.server")

STATIC_DIR = Path(__file__).resolve().parent / "static"


# -----------------------------
# Pydantic request/response
# -----------------------------
class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId", description="Conversation key.")
    prompt: Optional[str] = None
    image_data_url: Optional[str] = Field(default=None, alias="imageDataUrl")


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_data_url: Optional[str] = Field(default=None, alias="imageDataUrl")
    text: Optional[str] = None
    history: List[Dict[str, Any]] = Field(default_factory=list)


# -----------------------------
# Utilities
# -----------------------------
def _make_model(cfg: Dict[str, Any]) -> Optional[GeminiImageModel]:
    try:
        return create_from_config(cfg)
    except ConfigurationError as e:
        # The multipart endpoint reports this per request with a 500.
        logger.warning("Model gateway not configured: %s", e)
        return None


def _raw_text(model: Any, result: GenerationResult) -> Optional[str]:
    """Raw text is only scanned for base64 bytes when image bytes were requested."""
    generation = getattr(model, "generation", None)
    mime = getattr(generation, "response_mime_type", None) or ""
    return result.text if mime.startswith("image/") else None


def _call_model(model: Any, contents: List[Turn]) -> GenerationResult:
    if model is None:
        raise ConfigurationError("Missing GEMINI_API_KEY in environment.")
    try:
        return model.generate(contents)
    except UpstreamError:
        raise
    except Exception as e:
        raise UpstreamError("Generation failed", detail=str(e)) from e


def _upload_or_none(value: Any) -> Optional[UploadFile]:
    # Browsers send an empty file field when nothing was picked.
    if isinstance(value, UploadFile) and (value.filename or value.size):
        return value
    return None


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[Any] = None,
    history: Optional[SessionHistory] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    server_cfg = cfg.get("server", {}) or {}

    # Services
    model = model if model is not None else _make_model(cfg)
    history = history if history is not None else create_history(cfg)
    max_body = int(float(server_cfg.get("max_body_mb", 10)) * 1024 * 1024)
    static_dir = Path(server_cfg.get("static_dir") or STATIC_DIR)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(model, "close", None)
        if callable(close):
            close()

    app = FastAPI(title="Image Chat Server", version="0.1.0", lifespan=lifespan)
    app.state.model = model
    app.state.history = history

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.get("cors_origins") or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if static_dir.exists():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")
    else:
        logger.warning("Static UI dir not found: %s", static_dir)

    # ---------------- Error mapping ----------------
    @app.exception_handler(ImageChatError)
    async def handle_image_chat_error(request: Request, exc: ImageChatError) -> JSONResponse:
        if isinstance(exc, ConfigurationError):
            logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > max_body:
            return JSONResponse({"error": "Request body too large"}, status_code=413)
        return await call_next(request)

    # ---------------- Routes ----------------
    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "model_loaded": model is not None,
            "model": getattr(model, "model", None),
            "sessions": len(history),
        }

    @app.get("/")
    def root():
        index = static_dir / "index.html"
        if index.exists():
            return FileResponse(str(index))
        return JSONResponse({"ok": True, "msg": "Image chat API is running. No UI found."})

    @app.post("/api/generate", response_model=GenerateResponse, response_model_by_alias=True)
    def generate(req: GenerateRequest):
        image_part = data_url_to_part(req.image_data_url)
        # A malformed data URL still counts as "an image was sent"; its part is just dropped.
        user_turn = build_user_turn(req.prompt, image_part, image_supplied=bool(req.image_data_url))

        session_id = req.session_id or DEFAULT_SESSION
        contents = history.get(session_id) + [user_turn]
        try:
            result = _call_model(model, contents)
        except UpstreamError as e:
            logger.exception("Generation failed for session %s: %s", session_id, e.detail)
            raise

        found: Extraction = extract_response(result.turn["parts"], _raw_text(model, result))
        history.extend(session_id, [user_turn, result.turn])
        logger.info("Session %s: %d turn(s), image=%s", session_id, len(contents) + 1, found.has_image)

        return GenerateResponse(
            image_data_url=found.data_url,
            text=found.text if found.has_image else (found.text or NO_IMAGE_TEXT),
            history=history.get(session_id),
        )

    @app.post("/api/images")
    async def images(request: Request) -> Dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        if "multipart/form-data" not in content_type:
            raise InvalidRequest("Expected multipart/form-data")

        form = await request.form()
        prompt = form.get("prompt") if isinstance(form.get("prompt"), str) else ""
        history_blob = form.get("history") if isinstance(form.get("history"), str) else ""
        upload = _upload_or_none(form.get("image"))

        if not prompt and upload is None:
            raise InvalidRequest("Provide a prompt or an image to edit.")
        if model is None:
            raise ConfigurationError("Missing GEMINI_API_KEY in environment.")

        contents = parse_history(history_blob)
        image_part = None
        if upload is not None:
            data = await upload.read()
            declared = upload.content_type if upload.content_type != "application/octet-stream" else None
            image_part = bytes_to_part(data, declared or infer_mime_type(upload.filename))
        contents.append(build_user_turn(prompt, image_part))

        try:
            result = await run_in_threadpool(_call_model, model, contents)
        except UpstreamError as e:
            logger.exception("Image edit failed: %s", e.detail)
            raise

        found = extract_response(result.turn["parts"], _raw_text(model, result))
        if not found.has_image:
            raise NoImageProduced("Model did not return an image.", detail=found.text)
        return {"imageBase64": found.image_base64, "mimeType": found.mime_type}

    # ---------------- Sessions ----------------
    @app.get("/api/sessions/{session_id}")
    def get_session(session_id: str) -> Dict[str, Any]:
        return {"sessionId": session_id, "history": history.peek(session_id) or []}

    @app.delete("/api/sessions/{session_id}")
    def delete_session(session_id: str) -> Dict[str, Any]:
        return {"ok": history.clear(session_id)}

    return app
