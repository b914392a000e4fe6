"""Tests for the bucket merge engine."""
import gzip
import pytest
from pathlib import Path
import sys

import pyarrow as pa

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import CrushConfig
from crush.errors import ConfigurationError, SchemaMismatchError
from crush.manifest import RunLayout
from crush.merger import BucketMerger, WorkerContext
from crush.models import Bucket, SourceFile
from crush.specs import CrushSpecTable

TIMESTAMP = "20240101120000"


def make_merger(storage, input_format="sequence", output_format="sequence", compression="none", **spec):
    config = CrushConfig(
        specs=[dict(spec, input_format=input_format, output_format=output_format)],
        compression=compression,
    )
    layout = RunLayout("tmp/crush-test")
    merger = BucketMerger(
        storage=storage,
        spec_table=CrushSpecTable.from_config(config),
        staging_dir=layout.staging_dir,
        attempts_dir=layout.attempt_dir,
    )
    return merger, layout


def make_bucket(directory, paths):
    files = tuple(SourceFile(path=p, size=1, directory=directory) for p in paths)
    return Bucket(id=f"{directory}-0", files=files, size=len(files))


def test_merge_concatenates_in_file_order(storage, write_sequence, read_sequence):
    """Test three files with one signature merge in file order, then in-file order."""
    write_sequence("d/a", ["a1", "a2"], [1, 2])
    write_sequence("d/b", ["b1"], [3])
    write_sequence("d/c", ["c1", "c2", "c3"], [4, 5, 6])

    merger, layout = make_merger(storage)
    ctx = WorkerContext(task_id=2, timestamp=TIMESTAMP)
    mappings = merger.merge(make_bucket("d", ["d/a", "d/b", "d/c"]), ctx)

    staged = f"{layout.staging_dir}/d/crushed_file-{TIMESTAMP}-2-0"
    assert not storage.exists(staged)
    assert merger.commit(ctx) == 1

    assert [(m.source, m.output) for m in mappings] == [
        ("d/a", staged), ("d/b", staged), ("d/c", staged),
    ]
    assert [k for k, _ in read_sequence(staged)] == ["a1", "a2", "b1", "c1", "c2", "c3"]
    assert ctx.counters.records_crushed == 6
    assert ctx.counters.files_crushed == 3
    assert ctx.file_seq == 1
    assert not storage.exists(f"{layout.attempt_dir(2)}/d/crushed_file-{TIMESTAMP}-2-0")
    assert ctx.pending == []


def test_schema_mismatch_aborts_bucket(storage, write_sequence):
    """Test a fourth file with another signature aborts with no output and no mappings."""
    write_sequence("d/a", ["a"], [1])
    write_sequence("d/b", ["b"], [2])
    write_sequence("d/c", ["c"], [3])
    other = pa.RecordBatch.from_arrays(
        [pa.array(["x"]), pa.array(["not an int"])], names=["key", "value"]
    )
    with storage.open_output("d/z") as f:
        with pa.ipc.new_stream(f, other.schema) as writer:
            writer.write_batch(other)

    merger, layout = make_merger(storage)
    ctx = WorkerContext(task_id=0, timestamp=TIMESTAMP)

    with pytest.raises(SchemaMismatchError) as excinfo:
        merger.merge(make_bucket("d", ["d/a", "d/b", "d/c", "d/z"]), ctx)

    assert excinfo.value.path == "d/z"
    assert "Heterogeneous schema" in str(excinfo.value)
    name = f"d/crushed_file-{TIMESTAMP}-0-0"
    assert not storage.exists(f"{layout.staging_dir}/{name}")
    assert not storage.exists(f"{layout.attempt_dir(0)}/{name}")
    assert ctx.counters.files_crushed == 0
    assert ctx.counters.records_crushed == 0


def test_read_error_propagates_unchanged(storage, write_sequence):
    """Test an I/O error is re-raised as is after cleanup."""
    write_sequence("d/a", ["a"], [1])
    merger, layout = make_merger(storage)

    with pytest.raises(FileNotFoundError):
        merger.merge(make_bucket("d", ["d/a", "d/missing"]), WorkerContext(0, TIMESTAMP))

    assert storage.list_dir(layout.staging_dir + "/d") == []


def test_gzip_text_keeps_codec_suffix(temp_dir, storage):
    """Test stream-compressed text is promoted with its suffix, mappings keep the nominal path."""
    (temp_dir / "logs").mkdir()
    (temp_dir / "logs/a").write_bytes(b"1\n2\n")
    (temp_dir / "logs/b").write_bytes(b"3\n")

    merger, layout = make_merger(storage, "text", "text", compression="gzip", replacement="merged")
    ctx = WorkerContext(0, TIMESTAMP)
    mappings = merger.merge(make_bucket("logs", ["logs/a", "logs/b"]), ctx)
    merger.commit(ctx)

    nominal = f"{layout.staging_dir}/logs/merged"
    assert {m.output for m in mappings} == {nominal}
    assert not storage.exists(nominal)
    assert gzip.decompress(storage.read_bytes(nominal + ".gz")) == b"1\n2\n3\n"


def test_file_numbers_increase_per_bucket(temp_dir, storage):
    """Test each bucket of a worker gets the next file number."""
    for d in ("x", "y"):
        (temp_dir / d).mkdir()
        (temp_dir / d / "a").write_bytes(b"a\n")
        (temp_dir / d / "b").write_bytes(b"b\n")

    merger, layout = make_merger(storage, "text", "text")
    ctx = WorkerContext(task_id=5, timestamp=TIMESTAMP)
    first = merger.merge(make_bucket("x", ["x/a", "x/b"]), ctx)
    second = merger.merge(make_bucket("y", ["y/a", "y/b"]), ctx)

    assert first[0].output.endswith(f"x/crushed_file-{TIMESTAMP}-5-0")
    assert second[0].output.endswith(f"y/crushed_file-{TIMESTAMP}-5-1")


def test_unmatched_directory_is_configuration_error(temp_dir, storage):
    """Test a bucket whose directory matches no spec fails before any output."""
    merger, layout = make_merger(storage, "text", "text", regex="logs/.*")
    with pytest.raises(ConfigurationError):
        merger.merge(make_bucket("data", ["data/a", "data/b"]), WorkerContext(0, TIMESTAMP))


def test_failed_promotion_removes_attempt(temp_dir, storage):
    """Test a rename failure during promotion leaves no attempt file behind."""
    (temp_dir / "logs").mkdir()
    (temp_dir / "logs/a").write_bytes(b"1\n")
    (temp_dir / "taken").write_bytes(b"old\n")

    merger, layout = make_merger(storage, "text", "text")
    spec = merger.spec_table[0]
    attempt = f"{layout.attempt_dir(0)}/taken"
    files = [SourceFile(path="logs/a", size=2, directory="logs")]

    with pytest.raises(FileExistsError):
        merger.merge_files(files, spec, attempt, "taken")

    assert not storage.exists(attempt)
    assert (temp_dir / "taken").read_bytes() == b"old\n"


def test_root_directory_output_stays_in_staging(temp_dir, storage):
    """Test a bucket of the storage root is staged under the staging area, not the root."""
    (temp_dir / "a").write_bytes(b"1\n")
    (temp_dir / "b").write_bytes(b"2\n")

    merger, layout = make_merger(storage, "text", "text", regex=".*", replacement="root-${crush.file.num}")
    ctx = WorkerContext(0, TIMESTAMP)
    mappings = merger.merge(make_bucket("", ["a", "b"]), ctx)
    merger.commit(ctx)

    staged = f"{layout.staging_dir}/root-0"
    assert {m.output for m in mappings} == {staged}
    assert storage.read_bytes(staged) == b"1\n2\n"
    assert not (temp_dir / "root-0").exists()
