from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlparse

from .models import EncodeOutcome


@dataclass(frozen=True)
class ResponseMeta:
    """Values the transport needs to answer with a compressed image."""
    filename: str
    content_type: str
    content_length: int
    original_size: int
    bytes_saved: int

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self.content_length),
            "Content-Disposition": f'inline; filename="{self.filename}"',
            "X-Content-Type-Options": "nosniff",
            "x-original-size": str(self.original_size),
            "x-bytes-saved": str(self.bytes_saved),
        }


def build_filename(source_url: str, extension: str) -> str:
    # Last path segment, quoted like encodeURIComponent; "image" when the URL has none.
    segment = urlparse(source_url or "").path.rsplit("/", 1)[-1]
    return quote(segment or "image", safe="!'()*") + f".{extension}"


def build_response(outcome: EncodeOutcome, source_url: str, origin_size: Optional[int]) -> ResponseMeta:
    original = origin_size or 0
    fmt = outcome.actual_format.value
    return ResponseMeta(
        filename=build_filename(source_url, fmt),
        content_type=f"image/{fmt}",
        content_length=len(outcome.data),
        original_size=original,
        bytes_saved=max(original - outcome.encoded_size, 0),
    )
