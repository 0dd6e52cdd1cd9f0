"""Conversation turns and the request normalizer.

Turns and parts are plain dicts in the provider's wire shape so they can be
forwarded upstream, stored, and serialized as the ``history`` blob unchanged::

    {"role": "user", "parts": [{"inlineData": {"data": "...", "mimeType": "image/png"}},
                               {"text": "make it blue"}]}
"""
from __future__ import annotations

import base64
import json
import re
from typing import Any, Iterable, List, Optional, TypedDict, Union

from .errors import InvalidRequest


class InlineData(TypedDict):
    data: str        # base64 payload
    mimeType: str


class TextPart(TypedDict):
    text: str


class InlinePart(TypedDict):
    inlineData: InlineData


Part = Union[TextPart, InlinePart]


class Turn(TypedDict):
    """One message in a conversation."""

    role: str            # "user" | "model" | "assistant" | "system"
    parts: List[Part]


DEFAULT_MIME_TYPE = "image/png"

_DATA_URL_RE = re.compile(r"^data:(.*?);base64,(.*)$", re.DOTALL)

_EXTENSION_MIME = (
    ((".jpg", ".jpeg"), "image/jpeg"),
    ((".png",), "image/png"),
    ((".webp",), "image/webp"),
    ((".gif",), "image/gif"),
)


# -----------------------------
# Parts
# -----------------------------
def text_part(text: str) -> TextPart:
    return {"text": text}


def inline_part(data: str, mime_type: str) -> InlinePart:
    return {"inlineData": {"data": data, "mimeType": mime_type}}


def data_url_to_part(data_url: Optional[str]) -> Optional[InlinePart]:
    """Convert ``data:<mime>;base64,<payload>`` into an inline part.

    Anything that does not match returns None instead of raising; callers
    treat a malformed image the same as no image part at all.
    """
    if not data_url or not isinstance(data_url, str):
        return None
    match = _DATA_URL_RE.match(data_url)
    if not match:
        return None
    return inline_part(match.group(2), match.group(1))


def part_to_data_url(part: Any) -> Optional[str]:
    inline = part.get("inlineData") if isinstance(part, dict) else None
    if not isinstance(inline, dict) or not inline.get("data"):
        return None
    mime = inline.get("mimeType") or DEFAULT_MIME_TYPE
    return f"data:{mime};base64,{inline['data']}"


def infer_mime_type(filename: Optional[str], fallback: Optional[str] = None) -> str:
    """Guess an image MIME type from a file extension (case-insensitive)."""
    if filename:
        lower = filename.lower()
        for extensions, mime in _EXTENSION_MIME:
            if lower.endswith(extensions):
                return mime
    return fallback or DEFAULT_MIME_TYPE


def bytes_to_part(data: bytes, mime_type: str) -> InlinePart:
    return inline_part(base64.b64encode(data).decode("ascii"), mime_type)


# -----------------------------
# History blob
# -----------------------------
def _is_turn(item: Any) -> bool:
    return isinstance(item, dict) and bool(item.get("role")) and isinstance(item.get("parts"), list)


def parse_history(blob: Union[str, bytes, Iterable[Any], None]) -> List[Turn]:
    """Parse a serialized turn array, keeping only well-formed entries.

    Parse failures and structurally invalid entries are dropped silently; an
    absent blob and a malformed one both yield an empty list.
    """
    if blob is None or blob == "" or blob == b"":
        return []
    if isinstance(blob, (str, bytes)):
        try:
            parsed = json.loads(blob)
        except (ValueError, TypeError):
            return []
    else:
        parsed = blob
    if not isinstance(parsed, list):
        return []
    return [{"role": item["role"], "parts": list(item["parts"])} for item in parsed if _is_turn(item)]


def dump_history(turns: Iterable[Turn]) -> str:
    return json.dumps(list(turns), ensure_ascii=False)


# -----------------------------
# User turn
# -----------------------------
def build_user_turn(prompt: Optional[str], image: Optional[Part], *, image_supplied: Optional[bool] = None) -> Turn:
    """Assemble the new user turn: image part (if any) first, then the prompt.

    ``image_supplied`` lets the JSON handler count a malformed data URL as an
    input even though it produced no part.
    """
    has_image = image is not None if image_supplied is None else image_supplied
    if not prompt and not has_image:
        raise InvalidRequest("Provide prompt or image")

    parts: List[Part] = []
    if image is not None:
        parts.append(image)
    if prompt:
        parts.append(text_part(prompt))
    return {"role": "user", "parts": parts}
