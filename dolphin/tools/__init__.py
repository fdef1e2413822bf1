"""Input preparation tools."""

from .media import EncodingError, InlineMedia, decode_data_url, encode_bytes, encode_file, infer_media_type

__all__ = [
    "EncodingError",
    "InlineMedia",
    "decode_data_url",
    "encode_bytes",
    "encode_file",
    "infer_media_type",
]
