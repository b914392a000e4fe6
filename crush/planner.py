"""
Bucket planner.

Turns a directory scan into buckets and partitions and records the result
durably under the run directory before any merge starts.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from crush.bucketing import assign_partitions, bucket_directory, partition_index
from crush.counters import CrushCounters
from crush.errors import ConfigurationError
from crush.manifest import (
    RunLayout,
    write_bucket_manifest,
    write_counters,
    write_file_list,
    write_json,
    write_partition_map,
)
from crush.models import Bucket, Partition, SourceFile
from crush.scanner import DirectoryScanner
from crush.specs import CrushSpecTable
from storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class CrushPlan:
    """Everything the merge and install phases need to know."""
    layout: RunLayout
    source_dir: str
    dest_dir: str
    timestamp: str
    buckets: List[Bucket] = field(default_factory=list)
    partitions: List[Partition] = field(default_factory=list)
    skipped: List[SourceFile] = field(default_factory=list)
    removable: List[SourceFile] = field(default_factory=list)
    counters: CrushCounters = field(default_factory=CrushCounters)

    @property
    def run_dir(self) -> str:
        return self.layout.run_dir

    @property
    def partition_map(self) -> Dict[str, int]:
        return partition_index(self.partitions)

    def run_info(self) -> Dict[str, object]:
        return {
            "source": self.source_dir,
            "dest": self.dest_dir,
            "timestamp": self.timestamp,
            "partitions": len(self.partitions),
        }

    def summary(self) -> str:
        lines = [
            f"  Source: {self.source_dir}",
            f"  Dest: {self.dest_dir}",
            f"  Run dir: {self.run_dir}",
            f"  Timestamp: {self.timestamp}",
            f"  Buckets: {len(self.buckets)}",
            f"  Partitions: {len(self.partitions)}",
            f"  Skipped files: {len(self.skipped)}",
            f"  Removable files: {len(self.removable)}",
            f"  {self.counters}",
        ]
        return "\n".join(lines)


class BucketPlanner:
    """
    Scan a source tree, bucket each eligible directory and assign buckets
    to partitions.

    Example:
        planner = BucketPlanner(storage, config, spec_table)
        plan = planner.plan("warehouse/events", "warehouse/events_crushed",
                            "20240101120000", RunLayout("tmp/crush-..."))
    """

    def __init__(self, storage: StorageBackend, config, spec_table: CrushSpecTable):
        self.storage = storage
        self.config = config
        self.spec_table = spec_table

    def plan(
        self,
        source_dir: str,
        dest_dir: str,
        timestamp: str,
        layout: RunLayout,
        write: bool = True,
    ) -> CrushPlan:
        """
        Build the plan and, unless ``write`` is False, persist its manifests.

        Raises:
            ConfigurationError: A directory with crushable content matches no
                spec, or its spec's template does not expand to a file name
        """
        plan = CrushPlan(
            layout=layout,
            source_dir=source_dir.strip("/"),
            dest_dir=dest_dir.strip("/"),
            timestamp=timestamp,
        )
        counters = plan.counters

        scanner = DirectoryScanner(
            storage=self.storage,
            max_eligible_size=self.config.max_eligible_size,
            ignore_regex=self.config.ignore_regex,
            skip_regex=self.config.skip_regex,
            remove_empty_files=self.config.remove_empty_files,
            exclude_dirs=[layout.run_dir.strip("/"), self.config.tmp_dir.strip("/"), plan.dest_dir],
        )

        for scan in scanner.scan(plan.source_dir, counters):
            plan.removable.extend(scan.removable)
            plan.skipped.extend(scan.skipped)
            plan.skipped.extend(scan.ineligible)

            buckets: List[Bucket] = []
            if scan.crushable_bytes > 0:
                spec = self.spec_table.match(scan.directory)
                if spec is None:
                    raise ConfigurationError(
                        f"No crush spec matches directory {scan.directory} "
                        f"({len(scan.crushable)} crushable files)"
                    )
                # Bad templates fail here rather than inside a worker
                spec.output_name(scan.directory, timestamp, 0, 0)
                buckets = bucket_directory(
                    scan.directory,
                    scan.crushable,
                    block_size=self.config.block_size,
                    max_file_blocks=self.config.max_file_blocks,
                    exclude_single_file_dirs=self.config.exclude_single_file_dirs,
                )

            if buckets:
                counters.dirs_eligible += 1
                plan.buckets.extend(buckets)
                bucketed = sum(len(b.files) for b in buckets)
                counters.files_eligible += bucketed
                logger.info(
                    f"[BucketPlanner] {scan.directory}: {bucketed} files, "
                    f"{scan.crushable_bytes} bytes -> {len(buckets)} buckets"
                )
            else:
                counters.dirs_skipped += 1
                # Crushable files that got no bucket stay where they are
                plan.skipped.extend(scan.crushable)
                logger.debug(f"[BucketPlanner] {scan.directory}: skipped")

        counters.files_skipped = len(plan.skipped)
        plan.partitions = assign_partitions(plan.buckets, self.config.max_tasks)

        logger.info(
            f"[BucketPlanner] {len(plan.buckets)} buckets in {len(plan.partitions)} partitions "
            f"(max_tasks={self.config.max_tasks})"
        )

        if write:
            self.write(plan)

        return plan

    def write(self, plan: CrushPlan) -> None:
        """Persist the plan's manifests under its run directory."""
        layout = plan.layout
        write_json(self.storage, layout.run_info, plan.run_info())
        write_bucket_manifest(self.storage, layout.buckets, plan.buckets)
        write_partition_map(self.storage, layout.partition_map, plan.partition_map)
        write_file_list(self.storage, layout.skipped, plan.skipped)
        write_file_list(self.storage, layout.removable, plan.removable)
        write_counters(self.storage, layout.plan_counters, plan.counters)
        logger.info(f"[BucketPlanner] Manifests written to {self.storage.get_full_path(layout.in_dir)}")
