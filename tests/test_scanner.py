"""Tests for directory scanning, classification and planning."""
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import CrushSpecConfig
from crush.counters import CrushCounters
from crush.errors import ConfigurationError
from crush.manifest import RunLayout, read_bucket_manifest, read_file_list, read_partition_map
from crush.models import FileClass
from crush.planner import BucketPlanner
from crush.scanner import DirectoryScanner
from crush.specs import CrushSpecTable


def write_file(root, rel, size):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def test_classify_rules_in_order(storage):
    """Test ignore beats skip beats removable beats size checks."""
    scanner = DirectoryScanner(
        storage,
        max_eligible_size=100,
        ignore_regex=r".*/\.hidden.*",
        skip_regex=r".*/_SUCCESS",
        remove_empty_files=True,
    )
    assert scanner.classify("d/.hidden-file", 0) is None
    assert scanner.classify("d/_SUCCESS", 0) is FileClass.SKIPPED
    assert scanner.classify("d/empty", 0) is FileClass.REMOVABLE
    assert scanner.classify("d/small", 100) is FileClass.CRUSHABLE
    assert scanner.classify("d/big", 101) is FileClass.INELIGIBLE


def test_empty_file_crushable_without_removal(storage):
    """Test empty files are crushable when removal is disabled."""
    scanner = DirectoryScanner(storage, max_eligible_size=100)
    assert scanner.classify("d/empty", 0) is FileClass.CRUSHABLE


def test_patterns_must_match_whole_path(storage):
    """Test a skip pattern matching only part of a path does not apply."""
    scanner = DirectoryScanner(storage, max_eligible_size=100, skip_regex="_SUCCESS")
    assert scanner.classify("d/_SUCCESS", 1) is FileClass.CRUSHABLE


def test_scan_is_breadth_first(temp_dir, storage):
    """Test directories are visited level by level."""
    write_file(temp_dir, "src/a/deep/f1", 1)
    write_file(temp_dir, "src/b/f2", 1)
    write_file(temp_dir, "src/f0", 1)

    counters = CrushCounters()
    scanner = DirectoryScanner(storage, max_eligible_size=100)
    visited = [scan.directory for scan in scanner.scan("src", counters)]

    assert visited == ["src", "src/a", "src/b", "src/a/deep"]
    assert counters.dirs_found == 4
    assert counters.files_found == 3


def test_scan_counts_and_classes(temp_dir, storage):
    """Test ignored files are invisible and the rest are counted."""
    write_file(temp_dir, "src/part-0", 10)
    write_file(temp_dir, "src/part-1", 0)
    write_file(temp_dir, "src/_SUCCESS", 0)
    write_file(temp_dir, "src/.crc", 4)
    write_file(temp_dir, "src/huge", 500)

    counters = CrushCounters()
    scanner = DirectoryScanner(
        storage,
        max_eligible_size=100,
        ignore_regex=r".*/\..*",
        skip_regex=r".*/_SUCCESS",
        remove_empty_files=True,
    )
    (scan,) = list(scanner.scan("src", counters))

    assert [f.path for f in scan.crushable] == ["src/part-0"]
    assert [f.path for f in scan.removable] == ["src/part-1"]
    assert [f.path for f in scan.skipped] == ["src/_SUCCESS"]
    assert [f.path for f in scan.ineligible] == ["src/huge"]
    assert counters.files_found == 4
    assert counters.files_removed == 1


def make_planner(storage, config):
    return BucketPlanner(storage, config, CrushSpecTable.from_config(config))


def test_plan_buckets_and_manifests(temp_dir, storage, sample_config):
    """Test planning buckets eligible directories and writes the manifests."""
    # 4 x 200 bytes = 800 bytes -> 1 block of 1024 -> 1 bucket
    for i in range(4):
        write_file(temp_dir, f"src/a/part-{i}", 200)
    # single crushable file, excluded by default
    write_file(temp_dir, "src/b/part-0", 200)
    # too large for threshold 0.5 * 1024
    write_file(temp_dir, "src/a/big", 600)

    layout = RunLayout("tmp/crush-test")
    plan = make_planner(storage, sample_config).plan("src", "out", "20240101120000", layout)

    assert [b.id for b in plan.buckets] == ["src/a-0"]
    assert plan.buckets[0].paths == [f"src/a/part-{i}" for i in range(4)]
    assert sorted(f.path for f in plan.skipped) == ["src/a/big", "src/b/part-0"]

    c = plan.counters
    assert c.dirs_found == 3
    assert c.dirs_eligible == 1
    assert c.dirs_skipped == 2
    assert c.files_found == 6
    assert c.files_eligible == 4
    assert c.files_skipped == 2

    buckets = read_bucket_manifest(storage, layout.buckets)
    assert list(buckets) == ["src/a-0"]
    assert buckets["src/a-0"].paths == plan.buckets[0].paths
    assert read_partition_map(storage, layout.partition_map) == {"src/a-0": 0}
    assert sorted(read_file_list(storage, layout.skipped)) == ["src/a/big", "src/b/part-0"]
    assert read_file_list(storage, layout.removable) == []


def test_plan_dry_run_writes_nothing(temp_dir, storage, sample_config):
    """Test planning without writing leaves no run directory."""
    for i in range(2):
        write_file(temp_dir, f"src/a/part-{i}", 10)

    layout = RunLayout("tmp/crush-dry")
    plan = make_planner(storage, sample_config).plan("src", "out", "20240101120000", layout, write=False)

    assert len(plan.buckets) == 1
    assert not storage.exists(layout.run_dir)


def test_plan_without_matching_spec_fails(temp_dir, storage, sample_config):
    """Test crushable content in a directory no spec matches is fatal."""
    config = sample_config.model_copy(update={"specs": [
        CrushSpecConfig(regex="elsewhere/.*", input_format="text", output_format="text")
    ]})
    write_file(temp_dir, "src/part-0", 10)
    write_file(temp_dir, "src/part-1", 10)

    with pytest.raises(ConfigurationError, match="No crush spec matches"):
        make_planner(storage, config).plan("src", "out", "20240101120000", RunLayout("tmp/x"))


def test_plan_excludes_run_area(temp_dir, storage, sample_config):
    """Test the tmp directory is never scanned when crushing the storage root."""
    write_file(temp_dir, "tmp/leftover/part-0", 10)
    write_file(temp_dir, "tmp/leftover/part-1", 10)
    write_file(temp_dir, "data/part-0", 10)
    write_file(temp_dir, "data/part-1", 10)

    plan = make_planner(storage, sample_config).plan(
        "", "out", "20240101120000", RunLayout("tmp/crush-root"), write=False
    )
    assert [b.id for b in plan.buckets] == ["data-0"]


def test_plan_multiple_buckets_and_partitions(temp_dir, storage, sample_config):
    """Test a large directory splits into several buckets spread over partitions."""
    # 10 x 400 bytes = 4000 bytes -> 4 blocks -> 2 buckets at 2 blocks per file
    for i in range(10):
        write_file(temp_dir, f"src/a/part-{i:02d}", 400)
    for i in range(3):
        write_file(temp_dir, f"src/c/part-{i}", 100)

    plan = make_planner(storage, sample_config).plan(
        "src", "out", "20240101120000", RunLayout("tmp/crush-multi"), write=False
    )

    assert [b.id for b in plan.buckets] == ["src/a-0", "src/a-1", "src/c-0"]
    assert len(plan.partitions) == 3
    assert plan.counters.files_eligible == 13
    assert sorted(plan.partition_map) == ["src/a-0", "src/a-1", "src/c-0"]


@pytest.mark.parametrize("regex,replacement", [
    (r"src/(\w+)", r"\2-${crush.file.num}"),
    (r"src/(\w+)", r"\1/${crush.file.num}"),
    (r"src/a(\w*)", r"\1"),
])
def test_plan_rejects_unexpandable_template(temp_dir, storage, sample_config, regex, replacement):
    """Test a template that cannot name an output fails planning before manifests are written."""
    config = sample_config.model_copy(update={"specs": [
        CrushSpecConfig(regex=regex, replacement=replacement, input_format="text", output_format="text")
    ]})
    write_file(temp_dir, "src/a/part-0", 10)
    write_file(temp_dir, "src/a/part-1", 10)
    layout = RunLayout("tmp/crush-bad-template")

    with pytest.raises(ConfigurationError):
        make_planner(storage, config).plan("src", "out", "20240101120000", layout)
    assert not storage.exists(layout.run_info)
