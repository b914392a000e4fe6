"""
Merge engine.

Streams every record of a bucket's files, in file order, into one output
file. Outputs are written under a per-task attempt directory. A task's
outputs are promoted to the staging area together, by `commit`, once every
bucket of the task has merged; a failed task leaves nothing staged.
"""
import logging
import posixpath
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from crush.codecs import CompressionCodec
from crush.counters import CrushCounters
from crush.errors import ConfigurationError, SchemaMismatchError
from crush.formats.base import RecordReader, RecordSink, SchemaSignature, close_quietly
from crush.models import Bucket, MappingRecord, SourceFile
from crush.specs import CrushSpec, CrushSpecTable
from storage.base import StorageBackend

logger = logging.getLogger(__name__)

FIRST_PROGRESS_REPORT = 100


@dataclass
class WorkerContext:
    """
    Per-worker state: placeholder values, counters and outputs awaiting commit.

    One instance per partition worker; never shared between threads.
    """
    task_id: int
    timestamp: str
    file_seq: int = 0
    counters: CrushCounters = field(default_factory=CrushCounters)
    pending: List[Tuple[str, str]] = field(default_factory=list)

    def next_file_num(self) -> int:
        num = self.file_seq
        self.file_seq += 1
        return num


class BucketMerger:
    """
    Merge buckets into staged output files.

    Args:
        storage: Backend holding sources, staging area and attempt files
        spec_table: Resolves a bucket's directory to formats and output name
        staging_dir: Root of the staging area
        attempts_dir: Function of task id giving that task's attempt root
    """

    def __init__(
        self,
        storage: StorageBackend,
        spec_table: CrushSpecTable,
        staging_dir: str,
        attempts_dir,
    ):
        self.storage = storage
        self.spec_table = spec_table
        self.codec: CompressionCodec = spec_table.codec
        self.staging_dir = staging_dir
        self.attempts_dir = attempts_dir

    def merge(self, bucket: Bucket, ctx: WorkerContext) -> List[MappingRecord]:
        """
        Merge one bucket into the task's attempt directory.

        Returns one MappingRecord per source file, pointing at the nominal
        staged output path. The output is only staged by ``commit``. Raises
        on any failure after cleaning up; the bucket then contributes no
        mapping records.
        """
        directory = bucket.directory
        spec = self.spec_table.match(directory)
        if spec is None:
            raise ConfigurationError(f"No crush spec matches directory {directory}")

        output = spec.output_path(directory, ctx.timestamp, ctx.task_id, ctx.next_file_num())
        staged = posixpath.join(self.staging_dir, output)
        attempt = posixpath.join(self.attempts_dir(ctx.task_id), output)

        logger.info(
            f"[BucketMerger] Task {ctx.task_id}: bucket {bucket.id} "
            f"({len(bucket.files)} files, {bucket.size} bytes) -> {staged}"
        )

        written, records = self.write_attempt(bucket.files, spec, attempt)
        ctx.pending.append((written, staged + written[len(attempt):]))

        ctx.counters.records_crushed += records
        ctx.counters.files_crushed += len(bucket.files)

        return [MappingRecord(source=f.path, output=staged) for f in bucket.files]

    def commit(self, ctx: WorkerContext) -> int:
        """
        Promote every pending output of the task to the staging area.

        Staged outputs left by an earlier attempt of the same task carry
        the same names and are replaced.

        Returns:
            Number of outputs promoted
        """
        promoted = 0
        for written, staged in ctx.pending:
            if self.storage.delete(staged):
                logger.warning(f"[BucketMerger] Replaced stale staged output {staged}")
            self.promote(written, staged)
            promoted += 1

        ctx.pending.clear()
        logger.info(f"[BucketMerger] Task {ctx.task_id}: committed {promoted} outputs")
        return promoted

    def merge_files(
        self,
        files: Sequence[SourceFile],
        spec: CrushSpec,
        attempt: str,
        output: str,
    ) -> int:
        """
        Merge ``files`` into ``output`` by way of ``attempt``.

        Returns:
            Number of records written
        """
        written, records = self.write_attempt(files, spec, attempt)
        self.promote(written, output + written[len(attempt):])
        return records

    def write_attempt(
        self,
        files: Sequence[SourceFile],
        spec: CrushSpec,
        attempt: str,
    ) -> Tuple[str, int]:
        """
        Write every record of ``files`` to ``attempt``.

        Every file must have the first file's schema signature. When the
        output format appends a codec suffix, the returned path carries it.

        Returns:
            Path written and number of records
        """
        reader: Optional[RecordReader] = None
        sink: Optional[RecordSink] = None
        reference: Optional[SchemaSignature] = None
        records = 0
        next_report = FIRST_PROGRESS_REPORT

        try:
            for source in files:
                signature = spec.input_format.schema_signature(self.storage, source.path)

                if reference is None:
                    reference = signature
                    sink = spec.output_format.open_writer(self.storage, attempt, signature, self.codec)
                    logger.debug(f"[BucketMerger] Signature [{signature}] from {source.path}")
                elif signature != reference:
                    raise SchemaMismatchError(source.path, signature.signature, reference.signature)

                reader = spec.input_format.open_reader(self.storage, source.path)
                for batch in reader:
                    sink.write(batch)
                    records += len(batch)
                    while records >= next_report:
                        logger.info(f"[BucketMerger] {attempt}: {records} records written")
                        next_report *= 2
                reader.close()
                reader = None

                logger.debug(f"[BucketMerger] Consumed {source.path}")

            written = sink.path
            sink.close()
            sink = None

        except Exception:
            close_quietly(reader, "reader")
            close_quietly(sink, "sink")
            self._discard_attempt(attempt)
            raise

        logger.info(f"[BucketMerger] {written}: {len(files)} files, {records} records")
        return written, records

    def promote(self, written: str, target: str) -> None:
        """Rename a finished attempt file to ``target``; the attempt is removed on failure."""
        try:
            parent = posixpath.dirname(target)
            if parent:
                self.storage.mkdir(parent)
            self.storage.rename(written, target)
        except Exception:
            self._discard_attempt(written)
            raise
        logger.debug(f"[BucketMerger] Promoted {written} -> {target}")

    def _discard_attempt(self, attempt: str) -> None:
        candidates = [attempt]
        if not self.codec.is_none and not attempt.endswith(self.codec.extension):
            candidates.append(attempt + self.codec.extension)

        for path in candidates:
            try:
                if self.storage.delete(path):
                    logger.info(f"[BucketMerger] Removed partial output {path}")
            except Exception as e:
                logger.error(f"[BucketMerger] Could not remove partial output {path}: {e}")
