"""Python counterpart of the browser UI: keeps a transcript, replays it as history."""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from .errors import ConfigurationError, ImageChatError, InvalidRequest, NoImageProduced, UpstreamError
from .turns import (
    DEFAULT_MIME_TYPE,
    Part,
    Turn,
    data_url_to_part,
    dump_history,
    infer_mime_type,
    text_part,
)

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {400: InvalidRequest, 502: NoImageProduced}


@dataclass
class TranscriptEntry:
    role: str                        # "user" | "assistant"
    prompt: Optional[str] = None
    image_url: Optional[str] = None  # data URL

    def to_turn(self) -> Turn:
        parts: List[Part] = []
        if self.prompt:
            parts.append(text_part(self.prompt))
        if self.image_url:
            inline = data_url_to_part(self.image_url)
            if inline is not None:
                parts.append(inline)
        return {"role": self.role, "parts": parts}

    def image_bytes(self) -> Optional[bytes]:
        inline = data_url_to_part(self.image_url)
        if inline is None:
            return None
        return base64.b64decode(inline["inlineData"]["data"])


def _error_from_response(response: httpx.Response) -> ImageChatError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = (body.get("error") if isinstance(body, dict) else None) or f"Request failed ({response.status_code})"
    detail = body.get("details") if isinstance(body, dict) else None
    if response.status_code in _STATUS_ERRORS:
        return _STATUS_ERRORS[response.status_code](message, detail=detail)
    if "GEMINI_API_KEY" in message:
        return ConfigurationError(message, detail=detail)
    return UpstreamError(message, detail=detail)


class ImageChatClient:
    """Drives ``POST /api/images`` the way the browser UI does.

    The server is stateless for this endpoint, so the whole transcript is
    re-serialized into the ``history`` field on every request. The transcript
    only grows after a successful exchange.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        *,
        timeout: float = 180.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self.transcript: List[TranscriptEntry] = []

    def history(self) -> List[Turn]:
        return [entry.to_turn() for entry in self.transcript]

    def send(self, prompt: str = "", image: Union[str, Path, None] = None) -> TranscriptEntry:
        """Submit one edit and return the assistant entry holding the result."""
        fields: Dict[str, Any] = {
            # (None, value) keeps these plain form fields while forcing multipart.
            "prompt": (None, prompt or ""),
            "history": (None, dump_history(self.history())),
        }
        user_image: Optional[str] = None
        if image is not None:
            path = Path(image)
            data = path.read_bytes()
            mime = infer_mime_type(path.name)
            fields["image"] = (path.name, data, mime)
            user_image = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

        response = self._client.post("/api/images", files=fields)
        if response.status_code != 200:
            raise _error_from_response(response)

        body = response.json()
        mime_type = body.get("mimeType") or DEFAULT_MIME_TYPE
        assistant = TranscriptEntry(role="assistant", image_url=f"data:{mime_type};base64,{body['imageBase64']}")
        self.transcript.append(TranscriptEntry(role="user", prompt=prompt or None, image_url=user_image))
        self.transcript.append(assistant)
        logger.debug("Transcript now holds %d entries", len(self.transcript))
        return assistant

    def reset(self) -> None:
        self.transcript.clear()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ImageChatClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
