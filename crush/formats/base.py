"""
Format adapter contract.

Each supported serialization family is consumed through three operations:
open a record stream, open a sink, and derive a schema signature. Records
travel in batches; ``len(batch)`` is the number of records in it.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Sized

import pyarrow as pa

from crush.codecs import CompressionCodec
from crush.errors import ConfigurationError, FormatError
from storage.base import StorageBackend

logger = logging.getLogger(__name__)


class FormatFamily(str, Enum):
    TEXT = "text"
    GENERIC_BINARY = "generic_binary"
    SELF_DESCRIBING = "self_describing"
    COLUMNAR = "columnar"


@dataclass(frozen=True)
class SchemaSignature:
    """
    Comparable description of a file's record structure.

    Only ``signature`` takes part in equality; ``schema`` carries whatever
    the adapter needs to open a sink for records of this shape.
    """
    signature: str
    schema: Any = field(default=None, compare=False, hash=False)

    def __str__(self) -> str:
        return self.signature


class RecordReader(ABC):
    """Iterable over record batches of one file. Must be closed."""

    def __init__(self, path: str):
        self.path = path

    @abstractmethod
    def __iter__(self) -> Iterator[Sized]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class RecordSink(ABC):
    """
    Writer for one output file.

    ``path`` is where bytes actually land, which may differ from the
    requested path when a stream codec appends its suffix.
    """

    def __init__(self, path: str):
        self.path = path
        self.records_written = 0

    @abstractmethod
    def write(self, batch: Sized) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class FormatAdapter(ABC):
    """One serialization family's reader, writer and schema derivation."""

    format_id: str = ""
    family: FormatFamily

    @abstractmethod
    def open_reader(self, storage: StorageBackend, path: str) -> RecordReader:
        pass

    @abstractmethod
    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> RecordSink:
        pass

    @abstractmethod
    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        pass

    def validate_codec(self, codec: CompressionCodec) -> None:
        """Raise ConfigurationError if this format cannot write with codec."""
        if not codec.is_none:
            raise ConfigurationError(
                f"Format {self.format_id} does not support compression codec {codec.name}"
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.format_id})"


def close_quietly(resource: Any, what: str) -> None:
    """Close a resource, logging rather than raising on failure."""
    if resource is None:
        return
    try:
        resource.close()
    except Exception as e:
        logger.error(f"Swallowing exception on close of {what}: {e}", exc_info=True)


def arrow_schema_of(schema: SchemaSignature, path: str) -> "pa.Schema":
    """Arrow schema for a sink, from an embedded or reconstructed schema."""
    if isinstance(schema.schema, pa.Schema):
        return schema.schema
    if hasattr(schema.schema, "to_arrow"):
        return schema.schema.to_arrow()
    raise FormatError(f"Signature [{schema}] carries no record schema to open {path}")


def conform_batch(batch: "pa.RecordBatch", schema: "pa.Schema") -> "pa.Table":
    """Wrap a batch as a table with exactly the sink's schema."""
    table = pa.Table.from_batches([batch])
    if table.schema.equals(schema):
        return table
    return table.cast(schema)
