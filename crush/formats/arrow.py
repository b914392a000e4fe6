"""
Self-describing containers: Arrow IPC files (Feather v2) and ORC.

Both embed their schema, so the signature is the embedded schema read
directly, minus key/value metadata that writers attach freely.
"""
from typing import Iterator

import pyarrow as pa

from crush.codecs import CompressionCodec
from crush.errors import ConfigurationError
from crush.formats.base import (
    FormatAdapter,
    FormatFamily,
    RecordReader,
    RecordSink,
    SchemaSignature,
    arrow_schema_of,
    conform_batch,
)
from crush.formats.sequence import ipc_write_options
from storage.base import StorageBackend

ORC_CODECS = {
    "none": "uncompressed",
    "gzip": "zlib",
    "snappy": "snappy",
    "lz4": "lz4",
    "zstd": "zstd",
}


def embedded_schema_signature(schema: pa.Schema) -> SchemaSignature:
    text = schema.to_string(show_field_metadata=False, show_schema_metadata=False)
    return SchemaSignature(text, schema.remove_metadata())


class ArrowFileReader(RecordReader):
    def __init__(self, storage: StorageBackend, path: str):
        super().__init__(path)
        self._raw = storage.open_input(path)
        try:
            self._reader = pa.ipc.open_file(self._raw)
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[pa.RecordBatch]:
        for i in range(self._reader.num_record_batches):
            yield self._reader.get_batch(i)

    def close(self) -> None:
        self._raw.close()


class ArrowFileSink(RecordSink):
    def __init__(self, storage: StorageBackend, path: str, schema: pa.Schema, options):
        super().__init__(path)
        self.schema = schema
        self._raw = storage.open_output(path)
        try:
            self._writer = pa.ipc.new_file(self._raw, schema, options=options)
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


class ArrowFileFormat(FormatAdapter):
    format_id = "arrow"
    family = FormatFamily.SELF_DESCRIBING

    def open_reader(self, storage: StorageBackend, path: str) -> ArrowFileReader:
        return ArrowFileReader(storage, path)

    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> ArrowFileSink:
        return ArrowFileSink(
            storage, path, arrow_schema_of(schema, path), ipc_write_options(codec, self.format_id)
        )

    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        with storage.open_input(path) as raw:
            schema = pa.ipc.open_file(raw).schema
        return embedded_schema_signature(schema)

    def validate_codec(self, codec: CompressionCodec) -> None:
        ipc_write_options(codec, self.format_id)


class OrcReader(RecordReader):
    def __init__(self, storage: StorageBackend, path: str):
        from pyarrow import orc

        super().__init__(path)
        self._raw = storage.open_input(path)
        try:
            self._reader = orc.ORCFile(self._raw)
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[pa.RecordBatch]:
        for i in range(self._reader.nstripes):
            yield self._reader.read_stripe(i)

    def close(self) -> None:
        self._raw.close()


class OrcSink(RecordSink):
    def __init__(self, storage: StorageBackend, path: str, schema: pa.Schema, compression: str):
        from pyarrow import orc

        super().__init__(path)
        self.schema = schema
        self._raw = storage.open_output(path)
        try:
            self._writer = orc.ORCWriter(self._raw, compression=compression)
        except Exception:
            self._raw.close()
            raise

    def write(self, batch: pa.RecordBatch) -> None:
        self._writer.write(conform_batch(batch, self.schema))
        self.records_written += len(batch)

    def close(self) -> None:
        try:
            self._writer.close()
        finally:
            self._raw.close()


class OrcFormat(FormatAdapter):
    format_id = "orc"
    family = FormatFamily.SELF_DESCRIBING

    def open_reader(self, storage: StorageBackend, path: str) -> OrcReader:
        return OrcReader(storage, path)

    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> OrcSink:
        self.validate_codec(codec)
        return OrcSink(storage, path, arrow_schema_of(schema, path), ORC_CODECS[codec.name])

    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        from pyarrow import orc

        with storage.open_input(path) as raw:
            schema = orc.ORCFile(raw).schema
        return embedded_schema_signature(schema)

    def validate_codec(self, codec: CompressionCodec) -> None:
        if codec.name not in ORC_CODECS:
            raise ConfigurationError(
                f"Format orc supports codecs {sorted(ORC_CODECS)}, not {codec.name}"
            )
