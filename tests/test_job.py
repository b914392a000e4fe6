"""End-to-end tests for crush runs."""
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from crush.counters import CrushCounters
from crush.errors import ConfigurationError, InvariantViolation
from crush.job import CrushJob, generate_timestamp, validate_timestamp
from crush.manifest import write_counters

TIMESTAMP = "20240101120000"


def put(root, rel, data):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def build_tree(root):
    """Two crushable directories, one single-file directory, a skipped marker and an empty file."""
    for i in range(3):
        put(root, f"src/a/part-{i}", f"a{i}\n".encode())
    for i in range(2):
        put(root, f"src/b/part-{i}", f"b{i}\n".encode())
    put(root, "src/c/part-0", b"c0\n")
    put(root, "src/a/_SUCCESS", b"")
    put(root, "src/b/empty", b"")


def files_under(root):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def test_timestamp_validation():
    """Test crush timestamps are 14-digit dates."""
    assert validate_timestamp(TIMESTAMP) == TIMESTAMP
    assert len(generate_timestamp()) == 14
    for bad in ("2024", "20241301120000", "2024010112000x"):
        with pytest.raises(ConfigurationError):
            validate_timestamp(bad)


def test_run_move_mode(temp_dir, storage, sample_config):
    """Test a full run moves merged outputs and skipped files under the destination."""
    build_tree(temp_dir)
    config = sample_config.model_copy(update={
        "skip_regex": r".*/_SUCCESS",
        "remove_empty_files": True,
    })

    job = CrushJob(config, storage, timestamp=TIMESTAMP)
    counters = job.run("src", "dest")

    assert counters.files_eligible == 5
    assert counters.files_crushed == 5
    assert counters.records_crushed == 5
    assert counters.files_removed == 1
    assert not storage.exists(job.run_dir)

    dest_files = files_under(temp_dir / "dest")
    assert "a/_SUCCESS" in dest_files
    assert "c/part-0" in dest_files
    merged_a = [f for f in dest_files if f.startswith("a/crushed_file-")]
    merged_b = [f for f in dest_files if f.startswith("b/crushed_file-")]
    assert len(merged_a) == 1 and len(merged_b) == 1
    assert merged_a[0].startswith(f"a/crushed_file-{TIMESTAMP}-")

    assert (temp_dir / "dest" / merged_a[0]).read_bytes() == b"a0\na1\na2\n"
    assert (temp_dir / "dest" / merged_b[0]).read_bytes() == b"b0\nb1\n"
    # empty files stay behind in move mode
    assert (temp_dir / "src/b/empty").exists()


def test_run_clone_mode(temp_dir, storage, sample_config):
    """Test clone mode swaps merged outputs into the source tree, originals to holding."""
    build_tree(temp_dir)
    config = sample_config.model_copy(update={
        "skip_regex": r".*/_SUCCESS",
        "remove_empty_files": True,
        "mode": "clone",
    })

    job = CrushJob(config, storage, timestamp=TIMESTAMP)
    job.run("src", "hold")

    src_files = files_under(temp_dir / "src")
    assert "a/_SUCCESS" in src_files
    assert len([f for f in src_files if f.startswith("a/crushed_file-")]) == 1
    assert len([f for f in src_files if f.startswith("b/crushed_file-")]) == 1
    assert "c/part-0" in src_files
    assert "b/empty" not in src_files

    hold_files = files_under(temp_dir / "hold")
    assert hold_files == sorted([
        "src/a/part-0", "src/a/part-1", "src/a/part-2",
        "src/b/part-0", "src/b/part-1", "src/b/empty",
    ])


def test_dry_run_changes_nothing(temp_dir, storage, sample_config):
    """Test a dry run only plans."""
    build_tree(temp_dir)
    before = files_under(temp_dir)

    job = CrushJob(sample_config, storage, timestamp=TIMESTAMP)
    counters = job.run("src", "dest", dry_run=True)

    # empty files are crushable when removal is off
    assert counters.files_eligible == 7
    assert counters.files_crushed == 0
    assert files_under(temp_dir) == before


def test_staged_workflow_with_resume(temp_dir, storage, sample_config):
    """Test plan, separate workers and install against one run directory."""
    build_tree(temp_dir)
    planner_job = CrushJob(sample_config, storage, timestamp=TIMESTAMP)
    plan = planner_job.plan("src", "dest")

    for pid in planner_job.partition_ids():
        CrushJob.resume(sample_config, storage, plan.run_dir).run_partition(pid)

    installer_job = CrushJob.resume(sample_config, storage, plan.run_dir)
    assert installer_job.timestamp == TIMESTAMP
    counters = installer_job.install()
    installer_job.cleanup()

    assert counters.files_crushed == counters.files_eligible == 7
    assert any(f.startswith("a/crushed_file-") for f in files_under(temp_dir / "dest"))


def test_install_detects_counter_mismatch(temp_dir, storage, sample_config):
    """Test install refuses to run when not every eligible file was crushed."""
    build_tree(temp_dir)
    job = CrushJob(sample_config, storage, timestamp=TIMESTAMP)
    job.plan("src", "dest")

    # A partition that reports fewer files than were planned
    write_counters(storage, job.layout.worker_counters(0), CrushCounters(files_crushed=1))

    with pytest.raises(InvariantViolation):
        job.install()
    assert not storage.exists("dest")


def test_plan_rejects_missing_source(storage, sample_config):
    """Test a missing source directory fails before any mutation."""
    job = CrushJob(sample_config, storage, timestamp=TIMESTAMP)
    with pytest.raises(ConfigurationError):
        job.plan("nope", "dest")


def test_standalone(temp_dir, storage, sample_config):
    """Test standalone mode crushes one directory into one file, keeping sources."""
    for i in range(3):
        put(temp_dir, f"one/part-{i}", f"{i}\n".encode())
    put(temp_dir, "one/.hidden", b"h\n")
    config = sample_config.model_copy(update={"ignore_regex": r".*/\..*"})

    job = CrushJob(config, storage, timestamp=TIMESTAMP)
    counters = job.run_standalone("one", "merged/one.txt")

    assert (temp_dir / "merged/one.txt").read_bytes() == b"0\n1\n2\n"
    assert counters.files_crushed == 3
    assert counters.records_crushed == 3
    assert (temp_dir / "one/part-0").exists()
    assert not storage.exists(job.run_dir)


def test_standalone_refuses_existing_output(temp_dir, storage, sample_config):
    """Test standalone mode never overwrites its output."""
    put(temp_dir, "one/part-0", b"0\n")
    put(temp_dir, "merged.txt", b"old\n")

    job = CrushJob(sample_config, storage, timestamp=TIMESTAMP)
    with pytest.raises(ConfigurationError):
        job.run_standalone("one", "merged.txt")


def test_failed_partition_can_be_rerun(temp_dir, storage, sample_config):
    """Test a partition that fails on its second bucket stages nothing and succeeds when run again."""
    build_tree(temp_dir)
    config = sample_config.model_copy(update={"max_tasks": 1})
    job = CrushJob(config, storage, timestamp=TIMESTAMP)
    job.plan("src", "dest")
    assert job.partition_ids() == [0]

    hidden = temp_dir / "src/b/part-1"
    moved_away = temp_dir / "part-1.away"
    hidden.rename(moved_away)

    with pytest.raises(FileNotFoundError):
        job.run_partition(0)

    staging = temp_dir / job.layout.staging_dir
    assert [p for p in staging.rglob("*") if p.is_file()] == []
    assert not storage.exists(job.layout.mapping_file(0))

    moved_away.rename(hidden)
    counters = job.run_partition(0)
    assert counters.files_crushed == 7

    job.install()
    job.cleanup()

    dest_files = files_under(temp_dir / "dest")
    merged_a = [f for f in dest_files if f.startswith("a/crushed_file-")]
    merged_b = [f for f in dest_files if f.startswith("b/crushed_file-")]
    assert merged_a == [f"a/crushed_file-{TIMESTAMP}-0-0"]
    assert merged_b == [f"b/crushed_file-{TIMESTAMP}-0-1"]
    assert (temp_dir / "dest" / merged_b[0]).read_bytes() == b"b0\nb1\n"


def test_rerun_replaces_stale_staged_output(temp_dir, storage, sample_config):
    """Test staged outputs left by an interrupted commit are replaced on the next run."""
    build_tree(temp_dir)
    config = sample_config.model_copy(update={"max_tasks": 1})
    job = CrushJob(config, storage, timestamp=TIMESTAMP)
    job.plan("src", "dest")

    stale = f"{job.layout.staging_dir}/src/a/crushed_file-{TIMESTAMP}-0-0"
    storage.write_bytes(b"stale\n", stale)

    job.run_partition(0)
    assert storage.read_bytes(stale).startswith(b"a0\n")
