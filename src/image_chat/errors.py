"""Error taxonomy shared by the request pipeline and the HTTP layer."""
from __future__ import annotations

from typing import Optional


class ImageChatError(Exception):
    """Base class; ``status_code`` is the HTTP status the server maps it to."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.detail:
            body["details"] = self.detail
        return body


class InvalidRequest(ImageChatError):
    """Neither a prompt nor an image was supplied (or the body is unusable)."""

    status_code = 400


class ConfigurationError(ImageChatError):
    """Missing credential or otherwise unusable deployment configuration."""

    status_code = 500


class UpstreamError(ImageChatError):
    """The generative model call failed, timed out or returned garbage."""

    status_code = 500


class NoImageProduced(UpstreamError):
    # Only an error where the caller insists on an image (multipart variant).
    status_code = 502
