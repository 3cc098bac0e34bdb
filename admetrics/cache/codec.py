"""
Hot-Tier Payload Codec

MetricsRecord <-> bytes for the key-value tier:
- JSON body (sorted keys, so equal records encode to equal bytes)
- 1-byte marker prefix, then raw, LZ4 or ZSTD payload
- LZ4 above `threshold`, ZSTD above `zstd_threshold` where it pays off
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard

from admetrics.metrics.records import MetricsRecord


logger = logging.getLogger(__name__)


MARKER_RAW = b"\x00"
MARKER_LZ4 = b"\x01"
MARKER_ZSTD = b"\x02"


@dataclass
class CompressionStats:
    """Size accounting for one encoded payload."""
    original_size: int
    encoded_size: int
    algorithm: str

    @property
    def bytes_saved(self) -> int:
        return max(0, self.original_size - self.encoded_size)


class RecordCodec:
    """Encodes records for storage in the hot tier."""

    def __init__(
        self,
        compression_enabled: bool = True,
        threshold: int = 1024,
        zstd_threshold: int = 102400,
    ):
        self.compression_enabled = compression_enabled
        self.threshold = threshold
        self.zstd_threshold = zstd_threshold
        self._zstd_compressor = zstandard.ZstdCompressor(level=3)
        self._zstd_decompressor = zstandard.ZstdDecompressor()

    def encode(self, record: MetricsRecord) -> Tuple[bytes, CompressionStats]:
        body = dump_json(record.to_dict(include_response_fields=False))

        if not self.compression_enabled or len(body) < self.threshold:
            return MARKER_RAW + body, CompressionStats(len(body), len(body) + 1, "none")

        if len(body) >= self.zstd_threshold:
            compressed, marker, algorithm = self._zstd_compressor.compress(body), MARKER_ZSTD, "zstd"
        else:
            compressed, marker, algorithm = lz4.frame.compress(body), MARKER_LZ4, "lz4"

        # Keep the raw body when compression does not shrink it
        if len(compressed) >= len(body):
            return MARKER_RAW + body, CompressionStats(len(body), len(body) + 1, "none")

        return marker + compressed, CompressionStats(len(body), len(compressed) + 1, algorithm)

    def decode(self, data: bytes) -> Optional[MetricsRecord]:
        if not data:
            return None

        marker, payload = data[0:1], data[1:]
        if marker == MARKER_RAW:
            body = payload
        elif marker == MARKER_LZ4:
            body = lz4.frame.decompress(payload)
        elif marker == MARKER_ZSTD:
            body = self._zstd_decompressor.decompress(payload)
        else:
            raise ValueError(f"Unknown hot-tier payload marker: {marker!r}")

        return MetricsRecord.from_dict(json.loads(body.decode("utf-8")))


def dump_json(value: Any) -> bytes:
    """Deterministic JSON encoding."""
    def default_handler(obj):
        if hasattr(obj, "isoformat"):
            return obj.isoformat()
        if hasattr(obj, "value"):
            return obj.value
        return str(obj)

    return json.dumps(value, default=default_handler, sort_keys=True, ensure_ascii=False).encode("utf-8")
