"""Pick the image and the text out of a model reply."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .turns import DEFAULT_MIME_TYPE

NO_IMAGE_TEXT = "No image returned"

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")


@dataclass
class Extraction:
    image_base64: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    text: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_base64)

    @property
    def data_url(self) -> Optional[str]:
        if not self.image_base64:
            return None
        return f"data:{self.mime_type};base64,{self.image_base64}"


def looks_like_base64(raw: Optional[str]) -> Optional[str]:
    """Return ``raw`` without newlines if it is plausibly base64 image bytes.

    Some SDKs hand back inline binary as plain text when an image MIME type
    was requested. This is a regex heuristic, nothing more.
    """
    if not raw:
        return None
    candidate = raw.replace("\n", "")
    if candidate and _BASE64_RE.match(candidate):
        return candidate
    return None


def extract_response(parts: Optional[Sequence[Any]], raw_text: Optional[str] = None) -> Extraction:
    """Select the first image part and the first non-empty text part.

    Falls back to decoding ``raw_text`` as base64 when no inline image part
    exists. A reply without any image is a valid text-only outcome.
    """
    result = Extraction()
    for part in parts or []:
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData")
        if result.image_base64 is None and isinstance(inline, dict):
            mime = inline.get("mimeType") or ""
            if mime.startswith("image/") and inline.get("data"):
                result.image_base64 = inline["data"]
                result.mime_type = mime
        text = part.get("text")
        if result.text is None and isinstance(text, str) and text:
            result.text = text

    if result.image_base64 is None:
        fallback = looks_like_base64(raw_text)
        if fallback:
            result.image_base64 = fallback
            result.mime_type = DEFAULT_MIME_TYPE
    return result
