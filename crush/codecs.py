"""
Output compression codecs.

A codec has a default filename suffix. Stream-compressed outputs (plain
text) carry that suffix on disk even though the crush output path was
requested without it, so installers must be prepared to find
``<path><suffix>`` instead of ``<path>``. Container formats (Arrow, ORC,
Parquet) compress internally and keep the requested name.
"""
import bz2
import gzip
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, Optional

from crush.errors import ConfigurationError


@dataclass(frozen=True)
class CompressionCodec:
    name: str
    extension: Optional[str]
    # Wraps a raw binary stream; None when the codec has no stdlib stream form
    stream_factory: Optional[Callable[[BinaryIO, str], BinaryIO]] = None

    @property
    def is_none(self) -> bool:
        return self.extension is None

    def wrap(self, raw: BinaryIO, mode: str) -> BinaryIO:
        if self.stream_factory is None:
            raise ConfigurationError(f"Codec {self.name} cannot compress a byte stream")
        return self.stream_factory(raw, mode)


def _gzip_stream(raw: BinaryIO, mode: str) -> BinaryIO:
    return gzip.GzipFile(fileobj=raw, mode=mode)


def _bzip2_stream(raw: BinaryIO, mode: str) -> BinaryIO:
    return bz2.BZ2File(raw, mode=mode)


NO_CODEC = CompressionCodec("none", None)

CODECS: Dict[str, CompressionCodec] = {
    "none": NO_CODEC,
    "gzip": CompressionCodec("gzip", ".gz", _gzip_stream),
    "bzip2": CompressionCodec("bzip2", ".bz2", _bzip2_stream),
    "snappy": CompressionCodec("snappy", ".snappy"),
    "zstd": CompressionCodec("zstd", ".zst"),
    "lz4": CompressionCodec("lz4", ".lz4"),
}

# Accepted aliases
CODECS["deflate"] = CODECS["gzip"]
CODECS["uncompressed"] = NO_CODEC


def get_codec(name: Optional[str]) -> CompressionCodec:
    """Look up a codec by name. ``None`` means no compression."""
    if name is None:
        return NO_CODEC
    try:
        return CODECS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown compression codec: {name}. Must be one of: {sorted(CODECS)}"
        )


def codec_for_path(path: str) -> CompressionCodec:
    """Return the stream codec implied by a filename suffix, or NO_CODEC."""
    for codec in CODECS.values():
        if codec.stream_factory is not None and path.endswith(codec.extension):
            return codec
    return NO_CODEC
