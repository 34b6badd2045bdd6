"""
Compression helpers shared by the content cache and the file handler.

Payloads are gzip-compressed when possible. If the gzip primitive fails the
payload is stored with the ``identity`` codec instead, so every payload can
always be restored byte for byte.
"""

import gzip
import json
from dataclasses import dataclass
from typing import Any, Tuple

from pydantic import BaseModel

from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

GZIP = "gzip"
IDENTITY = "identity"

# What the payload held before encoding, so decompression can rebuild it
KIND_TEXT = "text"
KIND_BYTES = "bytes"
KIND_JSON = "json"


@dataclass(frozen=True)
class CompressedPayload:
    """Compressed content plus what is needed to restore it"""

    codec: str
    data: bytes
    kind: str
    original_size: int

    @property
    def size(self) -> int:
        return len(self.data)


def compress_bytes(data: bytes) -> Tuple[str, bytes]:
    """Compress raw bytes, returning the codec used and the encoded bytes"""
    try:
        return GZIP, gzip.compress(data, mtime=0)
    except Exception as e:
        logger.warning(f"gzip compression failed, storing uncompressed: {e}")
        return IDENTITY, bytes(data)


def decompress_bytes(codec: str, data: bytes) -> bytes:
    """Inverse of compress_bytes"""
    if codec == GZIP:
        return gzip.decompress(data)
    if codec == IDENTITY:
        return bytes(data)
    raise ValueError(f"Unknown compression codec: {codec}")


def encode_content(content: Any) -> Tuple[bytes, str]:
    """
    Serialize cacheable content to bytes.

    Raises:
        TypeError: The content is not JSON serializable
        ValueError: The content would not come back unchanged from JSON,
            e.g. tuples or non-string dict keys
    """
    if isinstance(content, (bytes, bytearray)):
        return bytes(content), KIND_BYTES
    if isinstance(content, str):
        return content.encode("utf-8"), KIND_TEXT
    data = json.dumps(content, ensure_ascii=False).encode("utf-8")
    if json.loads(data) != content:
        raise ValueError("Content does not survive a JSON round trip")
    return data, KIND_JSON


def decode_content(data: bytes, kind: str) -> Any:
    if kind == KIND_BYTES:
        return data
    if kind == KIND_TEXT:
        return data.decode("utf-8")
    if kind == KIND_JSON:
        return json.loads(data.decode("utf-8"))
    raise ValueError(f"Unknown content kind: {kind}")


def _size_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.dict()
    return str(value)


def content_size(content: Any) -> int:
    """Approximate size in bytes of content held in memory"""
    if isinstance(content, CompressedPayload):
        return content.size
    if isinstance(content, (bytes, bytearray)):
        return len(content)
    if isinstance(content, str):
        return len(content.encode("utf-8"))
    return len(
        json.dumps(content, ensure_ascii=False, default=_size_default).encode("utf-8")
    )


def compress_content(content: Any) -> CompressedPayload:
    """Compress text, bytes or content that round-trips through JSON"""
    data, kind = encode_content(content)
    codec, packed = compress_bytes(data)
    logger.debug(
        f"Compressed {len(data)} bytes to {len(packed)} bytes ({codec}, {kind})"
    )
    return CompressedPayload(
        codec=codec, data=packed, kind=kind, original_size=len(data)
    )


def decompress_content(payload: CompressedPayload) -> Any:
    """Restore content produced by compress_content"""
    return decode_content(decompress_bytes(payload.codec, payload.data), payload.kind)
