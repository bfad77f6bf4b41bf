"""Validation and encoding of image attachments before they go upstream."""

from __future__ import annotations

import base64
import os
import posixpath
from dataclasses import dataclass
from typing import Sequence

from tool_gateway.errors import InvalidAttachmentError
from tool_gateway.types import Capability, FileRef, ModelDescriptor

__all__ = [
    "EncodedImage",
    "SUPPORTED_IMAGE_TYPES",
    "validate_images",
    "encode_image",
    "read_text_file",
]

SUPPORTED_IMAGE_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

# leading bytes of each supported format
_SIGNATURES = {
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
}


@dataclass(frozen=True, slots=True)
class EncodedImage:
    media_type: str
    data: str  # base64

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


def _media_type(ref: FileRef) -> str:
    ext = posixpath.splitext(ref.sandbox_path)[1].lower()
    try:
        return SUPPORTED_IMAGE_TYPES[ext]
    except KeyError:
        supported = ", ".join(sorted(SUPPORTED_IMAGE_TYPES))
        raise InvalidAttachmentError(
            f"Unsupported image format {ext or '(none)'!r} for {ref.host_path}; "
            f"supported: {supported}"
        ) from None


def validate_images(images: Sequence[FileRef], model: ModelDescriptor) -> list[str]:
    """Check every image against *model*; return their media types.

    Raises InvalidAttachmentError for a model without vision, a missing file,
    an unsupported format or an oversized image.
    """
    if not images:
        return []
    if Capability.VISION_GENERATION not in model.capabilities:
        raise InvalidAttachmentError(
            f"Model {model.model_id} does not accept images"
        )

    limit = int(model.max_image_size_mb * 1024 * 1024)
    media_types = []
    for ref in images:
        media_type = _media_type(ref)
        try:
            size = os.path.getsize(ref.sandbox_path)
        except OSError as exc:
            raise InvalidAttachmentError(
                f"Image {ref.host_path} is not readable at {ref.sandbox_path}: {exc.strerror}"
            ) from exc
        if size == 0:
            raise InvalidAttachmentError(f"Image {ref.host_path} is empty")
        if size > limit:
            raise InvalidAttachmentError(
                f"Image {ref.host_path} is {size / 1024 / 1024:.1f}MB, "
                f"limit for {model.model_id} is {model.max_image_size_mb:g}MB"
            )
        with open(ref.sandbox_path, "rb") as fh:
            head = fh.read(12)
        if not head.startswith(_SIGNATURES[media_type]):
            raise InvalidAttachmentError(
                f"Image {ref.host_path} content does not match {media_type}"
            )
        media_types.append(media_type)
    return media_types


def encode_image(ref: FileRef, media_type: str) -> EncodedImage:
    with open(ref.sandbox_path, "rb") as fh:
        data = base64.b64encode(fh.read()).decode("ascii")
    return EncodedImage(media_type=media_type, data=data)


def read_text_file(ref: FileRef, max_chars: int = 100_000) -> str:
    """Read a text attachment from its sandbox path, truncated to *max_chars*."""
    try:
        with open(ref.sandbox_path, "r", encoding="utf-8", errors="replace") as fh:
            content = fh.read(max_chars + 1)
    except OSError as exc:
        raise InvalidAttachmentError(
            f"File {ref.host_path} is not readable at {ref.sandbox_path}: {exc.strerror}"
        ) from exc
    if len(content) > max_chars:
        content = content[:max_chars] + f"\n[... truncated at {max_chars} characters]"
    return content
