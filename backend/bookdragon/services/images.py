"""Cover image helpers: stored bytes to data URLs with placeholder fallbacks."""

import base64
from dataclasses import dataclass
from enum import StrEnum


class DefaultImage(StrEnum):
    """Placeholder shown when no image bytes are stored."""

    COVER = "/img/img_placeholder.jpg"
    CATEGORY = "/img/category_default.png"
    AUTHOR = "/img/headshot.png"


@dataclass(frozen=True)
class CoverUpload:
    """An uploaded cover image, already read into memory by the web layer."""

    data: bytes
    content_type: str


def image_to_data_url(data: bytes | None, content_type: str | None, default: DefaultImage) -> str:
    """Render stored image bytes as a ``data:`` URL, or the placeholder path when empty."""
    if not data:
        return default.value
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'application/octet-stream'};base64,{encoded}"
