"""Newline-delimited text files."""
from typing import Iterator, List

from crush.codecs import CompressionCodec, codec_for_path
from crush.errors import ConfigurationError
from crush.formats.base import (
    FormatAdapter,
    FormatFamily,
    RecordReader,
    RecordSink,
    SchemaSignature,
)
from storage.base import StorageBackend

TEXT_SIGNATURE = "text"


class TextReader(RecordReader):
    """
    Reads lines as raw bytes, newline included.

    Inputs ending in a stream codec suffix (``.gz``, ``.bz2``) are
    decompressed transparently.
    """

    def __init__(self, storage: StorageBackend, path: str, batch_lines: int = 1024):
        super().__init__(path)
        self.batch_lines = batch_lines
        self._raw = storage.open_input(path)
        codec = codec_for_path(path)
        try:
            self._stream = self._raw if codec.is_none else codec.wrap(self._raw, "rb")
        except Exception:
            self._raw.close()
            raise

    def __iter__(self) -> Iterator[List[bytes]]:
        batch = []
        for line in self._stream:
            batch.append(line)
            if len(batch) >= self.batch_lines:
                yield batch
                batch = []
        if batch:
            yield batch

    def close(self) -> None:
        try:
            if self._stream is not self._raw:
                self._stream.close()
        finally:
            self._raw.close()


class TextSink(RecordSink):
    def __init__(self, storage: StorageBackend, path: str, codec: CompressionCodec):
        # Stream codecs rename the file the way a Hadoop output format would
        super().__init__(path if codec.is_none else path + codec.extension)
        self._raw = storage.open_output(self.path)
        try:
            self._stream = self._raw if codec.is_none else codec.wrap(self._raw, "wb")
        except Exception:
            self._raw.close()
            raise

    def write(self, batch: List[bytes]) -> None:
        for line in batch:
            if not line.endswith(b"\n"):
                line += b"\n"
            self._stream.write(line)
        self.records_written += len(batch)

    def close(self) -> None:
        try:
            if self._stream is not self._raw:
                self._stream.close()
        finally:
            self._raw.close()


class TextFormat(FormatAdapter):
    format_id = "text"
    family = FormatFamily.TEXT

    def open_reader(self, storage: StorageBackend, path: str) -> TextReader:
        return TextReader(storage, path)

    def open_writer(
        self,
        storage: StorageBackend,
        path: str,
        schema: SchemaSignature,
        codec: CompressionCodec,
    ) -> TextSink:
        return TextSink(storage, path, codec)

    def schema_signature(self, storage: StorageBackend, path: str) -> SchemaSignature:
        # Lines have no structure beyond being lines
        return SchemaSignature(TEXT_SIGNATURE)

    def validate_codec(self, codec: CompressionCodec) -> None:
        if not codec.is_none and codec.stream_factory is None:
            raise ConfigurationError(
                f"Format text supports only stream codecs (gzip, bzip2), not {codec.name}"
            )
