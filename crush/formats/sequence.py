"""
Generic binary key/value row container.

Files are Arrow IPC streams with exactly two columns, ``key`` and ``value``.
Two files are compatible when their key and value types match, which is all
the structure this container promises.
"""
from typing import Iterator, Optional

import pyarrow as pa

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

KEY_VALUE_FIELDS = ["key", "value"]

# IPC body compression available to this container
IPC_CODECS = {"none": None, "lz4": "lz4", "zstd": "zstd"}


def ipc_write_options(codec: CompressionCodec, format_id: str) -> pa.ipc.IpcWriteOptions:
    if codec.name not in IPC_CODECS:
        raise ConfigurationError(
            f"Format {format_id} supports codecs {sorted(IPC_CODECS)}, not {codec.name}"
        )
    return pa.ipc.IpcWriteOptions(compression=IPC_CODECS[codec.name])


def key_value_signature(schema: pa.Schema, path: str) -> str:
    if schema.names != KEY_VALUE_FIELDS:
        raise FormatError(
            f"Sequence file {path} must have columns {KEY_VALUE_FIELDS}, found {schema.names}"
        )
    return f"{schema.field('key').type}:{schema.field('value').type}"


class SequenceReader(RecordReader):
    def __init__(self, storage: StorageBackend, path: str):
        super().__init__(path)
        self._raw = storage.open_input(path)
        try:
            self._reader = pa.ipc.open_stream(self._raw)
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[pa.RecordBatch]:
        for batch in self._reader:
            yield batch

    def close(self) -> None:
        self._raw.close()


class SequenceSink(RecordSink):
    def __init__(
        self,
        storage: StorageBackend,
        path: str,
        schema: pa.Schema,
        options: Optional[pa.ipc.IpcWriteOptions] = None,
    ):
        super().__init__(path)
        self.schema = schema
        self._raw = storage.open_output(path)
        try:
            self._writer = pa.ipc.new_stream(self._raw, schema, options=options)
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


class SequenceFormat(FormatAdapter):
    format_id = "sequence"
    family = FormatFamily.GENERIC_BINARY

    def open_reader(self, storage: StorageBackend, path: str) -> SequenceReader:
        return SequenceReader(storage, path)

    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> SequenceSink:
        arrow_schema = arrow_schema_of(schema, path)
        key_value_signature(arrow_schema, path)
        return SequenceSink(storage, path, arrow_schema, ipc_write_options(codec, self.format_id))

    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        with storage.open_input(path) as raw:
            schema = pa.ipc.open_stream(raw).schema
        return SchemaSignature(key_value_signature(schema, path), schema)

    def validate_codec(self, codec: CompressionCodec) -> None:
        ipc_write_options(codec, self.format_id)
