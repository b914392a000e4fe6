"""
Columnar container: Parquet.

Parquet footers describe physical storage, not the logical record shape,
so the sink schema is reconstructed column by column: a logical type name
is derived from the physical type and refined with the footer's logical
type description (which is where decimal precision and scale live). The
writer is opened with that column list before any record is written.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import pyarrow as pa
import pyarrow.parquet as pq

from crush.codecs import CompressionCodec
from crush.errors import ConfigurationError, FormatError
from crush.formats.base import (
    FormatAdapter,
    FormatFamily,
    RecordReader,
    RecordSink,
    SchemaSignature,
    arrow_schema_of,
    conform_batch,
)
from storage.base import StorageBackend

logger = logging.getLogger(__name__)

PARQUET_CODECS = {
    "none": "none",
    "gzip": "gzip",
    "snappy": "snappy",
    "zstd": "zstd",
    "lz4": "lz4",
}

PHYSICAL_TYPE_NAMES = {
    "INT96": "timestamp",
    "INT64": "bigint",
    "INT32": "int",
    "BOOLEAN": "boolean",
    "DOUBLE": "double",
    "FLOAT": "float",
    "BYTE_ARRAY": "binary",
    "FIXED_LEN_BYTE_ARRAY": "binary",
}

SIGNED_INT_NAMES = {8: "tinyint", 16: "smallint", 32: "int", 64: "bigint"}

ARROW_TYPES = {
    "boolean": pa.bool_(),
    "tinyint": pa.int8(),
    "smallint": pa.int16(),
    "int": pa.int32(),
    "bigint": pa.int64(),
    "uint8": pa.uint8(),
    "uint16": pa.uint16(),
    "uint32": pa.uint32(),
    "uint64": pa.uint64(),
    "float": pa.float32(),
    "double": pa.float64(),
    "string": pa.string(),
    "binary": pa.binary(),
    "date": pa.date32(),
    "timestamp": pa.timestamp("ns"),
}

TIME_UNITS = {"milli": "ms", "micro": "us", "nano": "ns"}

_DECIMAL_RE = re.compile(r"decimal\((\d+),(\d+)\)")
_TIMESTAMP_RE = re.compile(r"timestamp\((ms|us|ns)(?:,(.+))?\)")


@dataclass(frozen=True)
class ColumnarSchema:
    """Reconstructed flat column list: (name, type name, nullable)."""
    columns: Tuple[Tuple[str, str, bool], ...]

    def to_arrow(self) -> pa.Schema:
        return pa.schema([
            pa.field(name, arrow_type(type_name), nullable=nullable)
            for name, type_name, nullable in self.columns
        ])


def arrow_type(type_name: str) -> pa.DataType:
    """Map a reconstructed type name back to an Arrow type."""
    if type_name in ARROW_TYPES:
        return ARROW_TYPES[type_name]

    m = _DECIMAL_RE.fullmatch(type_name)
    if m:
        precision, scale = int(m.group(1)), int(m.group(2))
        if precision <= 38:
            return pa.decimal128(precision, scale)
        return pa.decimal256(precision, scale)

    m = _TIMESTAMP_RE.fullmatch(type_name)
    if m:
        return pa.timestamp(m.group(1), tz=m.group(2))

    raise FormatError(f"Cannot map column type to a writer type: {type_name}")


def _logical_info(column) -> dict:
    try:
        return json.loads(column.logical_type.to_json())
    except (AttributeError, ValueError):
        return {}


def column_type_name(column) -> str:
    """
    Derive a logical type name for one footer column.

    Starts from the physical type and refines it with the logical type
    description, falling back to the legacy converted type.
    """
    physical = column.physical_type
    info = _logical_info(column)
    kind = info.get("Type", "None")

    if kind == "Decimal":
        return f"decimal({info['precision']},{info['scale']})"
    if kind in ("String", "Enum", "JSON"):
        return "string"
    if kind == "Date":
        return "date"
    if kind == "Timestamp":
        unit_text = str(info.get("timeUnit", "")).lower()
        unit = next((u for k, u in TIME_UNITS.items() if k in unit_text), "ns")
        if info.get("isAdjustedToUTC"):
            return f"timestamp({unit},UTC)"
        return f"timestamp({unit})"
    if kind == "Int":
        width = int(info.get("bitWidth", 32))
        if info.get("isSigned", True):
            return SIGNED_INT_NAMES.get(width, PHYSICAL_TYPE_NAMES.get(physical, "bigint"))
        return f"uint{width}"

    converted = str(column.converted_type)
    if converted == "DECIMAL":
        return f"decimal({column.precision},{column.scale})"
    if converted == "UTF8":
        return "string"

    try:
        return PHYSICAL_TYPE_NAMES[physical]
    except KeyError:
        raise FormatError(f"Unsupported parquet physical type {physical} for column {column.path}")


def reconstruct_schema(parquet_schema, path: str) -> Tuple[ColumnarSchema, str]:
    """
    Rebuild the column list from footer metadata.

    Returns the reconstructed schema and its signature text.
    """
    columns: List[Tuple[str, str, bool]] = []
    parts: List[str] = []

    for i in range(len(parquet_schema)):
        column = parquet_schema.column(i)
        if column.path != column.name or column.max_repetition_level > 0:
            raise FormatError(f"Nested parquet column {column.path} in {path} is not supported")

        type_name = column_type_name(column)
        nullable = column.max_definition_level > 0
        columns.append((column.path, type_name, nullable))
        parts.append(
            f"{'optional' if nullable else 'required'} {column.physical_type} "
            f"{column.path} ({type_name})"
        )

    return ColumnarSchema(tuple(columns)), "; ".join(parts)


class ParquetReader(RecordReader):
    def __init__(self, storage: StorageBackend, path: str, batch_size: int = 65_536):
        super().__init__(path)
        self.batch_size = batch_size
        self._raw = storage.open_input(path)
        try:
            self._file = pq.ParquetFile(self._raw)
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[pa.RecordBatch]:
        yield from self._file.iter_batches(batch_size=self.batch_size)

    def close(self) -> None:
        self._raw.close()


class ParquetSink(RecordSink):
    def __init__(
        self,
        storage: StorageBackend,
        path: str,
        schema: pa.Schema,
        compression: str,
    ):
        super().__init__(path)
        self.schema = schema
        self._raw = storage.open_output(path)
        try:
            self._writer = pq.ParquetWriter(self._raw, self.schema, compression=compression)
        except Exception:
            self._raw.close()
            raise

    def write(self, batch: pa.RecordBatch) -> None:
        self._writer.write_table(conform_batch(batch, self.schema))
        self.records_written += len(batch)

    def close(self) -> None:
        try:
            self._writer.close()
        finally:
            self._raw.close()


class ParquetFormat(FormatAdapter):
    format_id = "parquet"
    family = FormatFamily.COLUMNAR

    def open_reader(self, storage: StorageBackend, path: str) -> ParquetReader:
        return ParquetReader(storage, path)

    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> ParquetSink:
        self.validate_codec(codec)
        return ParquetSink(
            storage, path, arrow_schema_of(schema, path), PARQUET_CODECS[codec.name]
        )

    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        with storage.open_input(path) as raw:
            parquet_schema = pq.ParquetFile(raw).schema
            columns, signature = reconstruct_schema(parquet_schema, path)
        logger.debug(f"[ParquetFormat] {path}: {signature}")
        return SchemaSignature(signature, columns)

    def validate_codec(self, codec: CompressionCodec) -> None:
        if codec.name not in PARQUET_CODECS:
            raise ConfigurationError(
                f"Format parquet supports codecs {sorted(PARQUET_CODECS)}, not {codec.name}"
            )
