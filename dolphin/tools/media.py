"""Media encoding for inline inference payloads."""

from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


DEFAULT_MEDIA_TYPE = "application/octet-stream"
DEFAULT_MAX_BYTES = 20971520


class EncodingError(RuntimeError):
    """Raised when a user file cannot be turned into an inline payload."""


@dataclass(frozen=True)
class InlineMedia:
    """Inline binary payload as sent to the inference service.

    Attributes:
        data: Base64-encoded content without any data-URL prefix.
        mime_type: Declared media type of the content.
    """

    data: str
    mime_type: str

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def to_dict(self) -> dict:
        return {"data": self.data, "mimeType": self.mime_type}


def infer_media_type(filename: str, fallback: str = DEFAULT_MEDIA_TYPE) -> str:
    """Infers MIME type from a filename extension.

    Args:
        filename: Original file name.
        fallback: Media type used when inference fails.

    Returns:
        Inferred media type.
    """
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or fallback


def encode_bytes(
    payload: bytes,
    mime_type: Optional[str] = None,
    filename: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> InlineMedia:
    """Encodes raw bytes as an inline payload.

    Args:
        payload: Raw file content.
        mime_type: Declared media type; inferred from `filename` when absent.
        filename: Optional original file name.
        max_bytes: Maximum accepted payload size.

    Returns:
        Encoded inline media.

    Raises:
        EncodingError: If the payload is empty or too large.
    """
    if not payload:
        raise EncodingError("File is empty.")
    if len(payload) > max_bytes:
        raise EncodingError("File exceeds {} bytes.".format(max_bytes))
    declared = str(mime_type or "").strip() or infer_media_type(filename or "")
    return InlineMedia(data=base64.b64encode(payload).decode("ascii"), mime_type=declared)


def decode_data_url(value: str, mime_type: Optional[str] = None, max_bytes: int = DEFAULT_MAX_BYTES) -> InlineMedia:
    """Accepts a data URL or a bare base64 string and returns inline media.

    A `data:<type>;base64,` prefix is stripped and its media type is used
    unless `mime_type` is given explicitly.
    """
    raw = str(value or "").strip()
    declared = str(mime_type or "").strip()
    if raw.startswith("data:"):
        header, _, raw = raw.partition(",")
        if not declared:
            declared = header[len("data:") :].split(";", 1)[0]
    if not raw:
        raise EncodingError("Inline payload is empty.")
    try:
        payload = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError("Inline payload is not valid base64.") from exc
    if len(payload) > max_bytes:
        raise EncodingError("File exceeds {} bytes.".format(max_bytes))
    return InlineMedia(data=raw, mime_type=declared or DEFAULT_MEDIA_TYPE)


async def encode_file(
    path: Union[str, Path],
    mime_type: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> InlineMedia:
    """Reads a local file off the event loop and encodes it.

    Args:
        path: Local file path.
        mime_type: Declared media type; inferred from the file name when absent.
        max_bytes: Maximum accepted file size.

    Returns:
        Encoded inline media.

    Raises:
        EncodingError: If the file cannot be read, is empty, or is too large.
    """
    file_path = Path(path).expanduser()
    try:
        payload = await asyncio.to_thread(file_path.read_bytes)
    except OSError as exc:
        raise EncodingError("Could not read {}: {}".format(file_path, exc)) from exc
    return encode_bytes(payload, mime_type=mime_type, filename=file_path.name, max_bytes=max_bytes)
