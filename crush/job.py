"""
Crush run controller.

Sequences a run: plan (scan, bucket, partition, write manifests), merge
every partition, reconcile counters, install, clean up. Each phase can
also be invoked on its own against an existing run directory, which is how
separately launched workers take part in one run.
"""
import logging
import posixpath
import re
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional

from crush.counters import CrushCounters
from crush.errors import ConfigurationError, InvariantViolation
from crush.installer import OutputInstaller
from crush.manifest import (
    RunLayout,
    read_bucket_manifest,
    read_file_list,
    read_json,
    read_mappings,
    read_partition_map,
    read_worker_counters,
    write_counters,
    write_mappings,
)
from crush.merger import BucketMerger, WorkerContext
from crush.models import MappingRecord, SourceFile
from crush.planner import BucketPlanner, CrushPlan
from crush.specs import CrushSpecTable
from storage.base import StorageBackend

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
_TIMESTAMP_RE = re.compile(r"\d{14}")


def generate_timestamp() -> str:
    """Current local time as yyyymmddHHMMSS."""
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def validate_timestamp(timestamp: str) -> str:
    if not _TIMESTAMP_RE.fullmatch(timestamp):
        raise ConfigurationError(f"Crush timestamp must be 14 digits (yyyymmddHHMMSS): {timestamp}")
    try:
        datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise ConfigurationError(f"Invalid crush timestamp {timestamp}: {e}")
    return timestamp


class CrushJob:
    """
    One crush run over a source directory.

    Example:
        config = load_config()
        storage = create_crush_storage(config)
        job = CrushJob(config, storage)
        counters = job.run("warehouse/events", "warehouse/events_crushed")
    """

    def __init__(
        self,
        config,
        storage: StorageBackend,
        timestamp: Optional[str] = None,
        run_dir: Optional[str] = None,
    ):
        self.config = config
        self.storage = storage
        self.spec_table = CrushSpecTable.from_config(config)
        self.timestamp = validate_timestamp(timestamp) if timestamp else generate_timestamp()
        self.layout = RunLayout(
            run_dir or posixpath.join(config.tmp_dir.strip("/"), f"crush-{uuid.uuid4()}")
        )

        logger.info(
            f"[CrushJob] Initialized:\n"
            f"  Storage: {storage.backend_type} ({storage.base_path})\n"
            f"  Run dir: {self.layout.run_dir}\n"
            f"  Timestamp: {self.timestamp}\n"
            f"  Mode: {config.mode}\n"
            f"  Specs: {len(self.spec_table)}"
        )

    @classmethod
    def resume(cls, config, storage: StorageBackend, run_dir: str) -> "CrushJob":
        """Attach to a planned run, taking its timestamp from the manifests."""
        info = read_json(storage, RunLayout(run_dir.strip("/")).run_info)
        return cls(config, storage, timestamp=info["timestamp"], run_dir=run_dir.strip("/"))

    @property
    def run_dir(self) -> str:
        return self.layout.run_dir

    def partition_ids(self) -> List[int]:
        """Partition ids of the planned run."""
        assignment = read_partition_map(self.storage, self.layout.partition_map)
        return sorted(set(assignment.values()))

    def _merger(self) -> BucketMerger:
        return BucketMerger(
            storage=self.storage,
            spec_table=self.spec_table,
            staging_dir=self.layout.staging_dir,
            attempts_dir=self.layout.attempt_dir,
        )

    def plan(self, source_dir: str, dest_dir: str, write: bool = True) -> CrushPlan:
        """
        Scan and plan; persist manifests unless ``write`` is False.

        Raises:
            ConfigurationError: Bad directories or a directory with no matching spec
        """
        source_dir = source_dir.strip("/")
        dest_dir = dest_dir.strip("/")

        if not dest_dir:
            raise ConfigurationError("Destination directory is required")
        if not self.storage.is_dir(source_dir):
            raise ConfigurationError(f"Source directory does not exist: {source_dir}")
        if self.storage.exists(dest_dir) and self.config.mode == "move":
            if self.storage.list_dir(dest_dir):
                raise ConfigurationError(f"Destination directory is not empty: {dest_dir}")

        planner = BucketPlanner(self.storage, self.config, self.spec_table)
        return planner.plan(source_dir, dest_dir, self.timestamp, self.layout, write=write)

    def run_partition(self, partition_id: int) -> CrushCounters:
        """
        Merge every bucket of one partition, in manifest order.

        Outputs are staged only once every bucket has merged, then the
        partition's mapping file and counters are written. Any failure aborts
        the partition with nothing staged and no mapping records written, so
        the partition can simply be run again.
        """
        buckets = read_bucket_manifest(self.storage, self.layout.buckets)
        assignment = read_partition_map(self.storage, self.layout.partition_map)
        bucket_ids = [bid for bid, pid in assignment.items() if pid == partition_id]

        ctx = WorkerContext(task_id=partition_id, timestamp=self.timestamp)
        merger = self._merger()
        mappings: List[MappingRecord] = []

        logger.info(f"[CrushJob] Partition {partition_id}: {len(bucket_ids)} buckets")

        attempt_root = self.layout.attempt_dir(partition_id)
        # Leftovers of an earlier attempt of this partition
        self.storage.delete_tree(attempt_root)
        try:
            for bid in bucket_ids:
                mappings.extend(merger.merge(buckets[bid], ctx))
            merger.commit(ctx)
        finally:
            self.storage.delete_tree(attempt_root)

        write_mappings(self.storage, self.layout.mapping_file(partition_id), mappings)
        write_counters(self.storage, self.layout.worker_counters(partition_id), ctx.counters)

        logger.info(
            f"[CrushJob] Partition {partition_id} done: {ctx.counters.files_crushed} files, "
            f"{ctx.counters.records_crushed} records"
        )
        return ctx.counters

    def reconcile(self) -> CrushCounters:
        """
        Sum planning and worker counters and check every eligible file was crushed.

        Raises:
            InvariantViolation: files_eligible != files_crushed
        """
        counters = CrushCounters.from_dict(read_json(self.storage, self.layout.plan_counters))
        for worker_counters in read_worker_counters(self.storage, self.layout).values():
            counters.merge(worker_counters)

        if counters.files_eligible != counters.files_crushed:
            raise InvariantViolation(
                f"Files eligible ({counters.files_eligible}) != files crushed "
                f"({counters.files_crushed})"
            )
        return counters

    def install(self) -> CrushCounters:
        """Reconcile counters, then install staged outputs according to mode."""
        counters = self.reconcile()

        info = read_json(self.storage, self.layout.run_info)
        mappings = read_mappings(self.storage, self.layout)

        installer = OutputInstaller(
            storage=self.storage,
            staging_dir=self.layout.staging_dir,
            source_dir=info["source"],
            dest_dir=info["dest"],
            codec=self.spec_table.codec,
        )

        if self.config.mode == "clone":
            installer.install_swap(mappings, read_file_list(self.storage, self.layout.removable))
        else:
            installer.install_move(mappings, read_file_list(self.storage, self.layout.skipped))

        return counters

    def run(self, source_dir: str, dest_dir: str, dry_run: bool = False) -> CrushCounters:
        """
        Full run: plan, merge all partitions in parallel, install, clean up.

        The run directory is kept when anything fails, for inspection and
        manual recovery.
        """
        logger.info("=" * 80)
        logger.info(f"CRUSH RUN: {source_dir} -> {dest_dir}")
        logger.info("=" * 80)

        plan = self.plan(source_dir, dest_dir, write=not dry_run)
        logger.info(f"[CrushJob] Plan:\n{plan.summary()}")

        if dry_run:
            logger.info("[CrushJob] Dry run, nothing merged")
            return plan.counters

        self.run_partitions([p.id for p in plan.partitions])
        counters = self.install()
        self.cleanup()

        logger.info("=" * 80)
        logger.info("CRUSH COMPLETE")
        logger.info(f"  {counters}")
        logger.info("=" * 80)
        return counters

    def run_partitions(self, partition_ids: List[int]) -> Dict[int, CrushCounters]:
        """Run partitions on a thread pool; the first failure is raised."""
        results: Dict[int, CrushCounters] = {}
        if not partition_ids:
            return results

        max_workers = min(self.config.max_workers, len(partition_ids))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.run_partition, pid): pid for pid in partition_ids}

            for future in as_completed(futures):
                pid = futures[future]
                try:
                    results[pid] = future.result()
                except Exception as e:
                    logger.error(f"[CrushJob] Partition {pid} failed: {e}")
                    for pending in futures:
                        pending.cancel()
                    raise

        return results

    def run_standalone(self, src_dir: str, dest_file: str) -> CrushCounters:
        """
        Crush every non-ignored file directly under ``src_dir`` into ``dest_file``.

        Uses the first spec's formats. Sources are left in place.
        """
        src_dir = src_dir.strip("/")
        dest_file = dest_file.strip("/")

        if not self.storage.is_dir(src_dir):
            raise ConfigurationError(f"Source directory does not exist: {src_dir}")
        if self.storage.exists(dest_file):
            raise ConfigurationError(f"Destination file already exists: {dest_file}")

        ignore = re.compile(self.config.ignore_regex) if self.config.ignore_regex else None
        files = [
            SourceFile(path=entry["path"], size=entry["size"], directory=src_dir)
            for entry in self.storage.list_dir(src_dir)
            if not entry["is_dir"] and not (ignore and ignore.fullmatch(entry["path"]))
        ]
        if not files:
            raise ConfigurationError(f"No files to crush in {src_dir}")

        logger.info(f"[CrushJob] Standalone crush of {len(files)} files in {src_dir} -> {dest_file}")

        counters = CrushCounters(dirs_found=1, dirs_eligible=1)
        counters.files_found = counters.files_eligible = len(files)

        attempt = posixpath.join(self.layout.attempt_dir(0), posixpath.basename(dest_file))
        try:
            counters.records_crushed = self._merger().merge_files(
                files, self.spec_table[0], attempt, dest_file
            )
        finally:
            self.cleanup()
        counters.files_crushed = len(files)

        logger.info(f"[CrushJob] Standalone crush done: {counters}")
        return counters

    def cleanup(self) -> None:
        """Delete the run directory."""
        self.storage.delete_tree(self.layout.run_dir)
        logger.info(f"[CrushJob] Removed run directory {self.layout.run_dir}")
