"""Format adapters, selected by format id."""
from typing import Dict, Type

from crush.errors import ConfigurationError
from crush.formats.arrow import ArrowFileFormat, OrcFormat
from crush.formats.base import (
    FormatAdapter,
    FormatFamily,
    RecordReader,
    RecordSink,
    SchemaSignature,
)
from crush.formats.parquet import ParquetFormat
from crush.formats.sequence import SequenceFormat
from crush.formats.text import TextFormat

ADAPTERS: Dict[str, Type[FormatAdapter]] = {
    adapter.format_id: adapter
    for adapter in (TextFormat, SequenceFormat, ArrowFileFormat, OrcFormat, ParquetFormat)
}


def get_adapter(format_id: str) -> FormatAdapter:
    """
    Create the adapter registered under a format id.

    Raises:
        ConfigurationError: Unknown format id
    """
    try:
        return ADAPTERS[format_id.lower()]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown format: {format_id}. Must be one of: {sorted(ADAPTERS)}"
        )


__all__ = [
    "ADAPTERS",
    "FormatAdapter",
    "FormatFamily",
    "RecordReader",
    "RecordSink",
    "SchemaSignature",
    "get_adapter",
]
