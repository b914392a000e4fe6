"""
Run directory layout and manifest persistence.

A run directory looks like::

    <tmp_dir>/crush-<uuid>/
        in/
            run.json                run parameters (source, dest, timestamp, partitions)
            buckets.ndjson          {"bucket": id, "file": path}
            partition-map.ndjson    {"bucket": id, "partition": n}
            skipped.ndjson          {"file": path}
            removable.ndjson        {"file": path}
            counters.json           planning counters
        out/
            crush/                  staged bucket outputs, mirrored source layout
            crush/_attempts/        in-progress bucket outputs, per task
            mappings/part-NNNNN.ndjson   {"source": path, "output": path}
            counters-NNNNN.json     one per finished partition

Everything is written through the storage backend, so a plan made on one
host can be executed by workers on others.
"""
import json
import logging
import posixpath
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from crush.counters import CrushCounters
from crush.models import Bucket, MappingRecord, SourceFile, bucket_directory_of
from crush.serialization import dump_ndjson, load_ndjson
from storage.base import StorageBackend

logger = logging.getLogger(__name__)

_PART_RE = re.compile(r"part-(\d{5})\.ndjson")
_COUNTERS_RE = re.compile(r"counters-(\d{5})\.json")


@dataclass(frozen=True)
class RunLayout:
    """Paths inside one run directory."""
    run_dir: str

    def _join(self, *parts: str) -> str:
        return posixpath.join(self.run_dir, *parts)

    @property
    def in_dir(self) -> str:
        return self._join("in")

    @property
    def out_dir(self) -> str:
        return self._join("out")

    @property
    def run_info(self) -> str:
        return self._join("in", "run.json")

    @property
    def buckets(self) -> str:
        return self._join("in", "buckets.ndjson")

    @property
    def partition_map(self) -> str:
        return self._join("in", "partition-map.ndjson")

    @property
    def skipped(self) -> str:
        return self._join("in", "skipped.ndjson")

    @property
    def removable(self) -> str:
        return self._join("in", "removable.ndjson")

    @property
    def plan_counters(self) -> str:
        return self._join("in", "counters.json")

    @property
    def staging_dir(self) -> str:
        return self._join("out", "crush")

    @property
    def mappings_dir(self) -> str:
        return self._join("out", "mappings")

    def attempt_dir(self, task_id: int) -> str:
        return self._join("out", "crush", "_attempts", f"task-{task_id:05d}")

    def mapping_file(self, partition_id: int) -> str:
        return self._join("out", "mappings", f"part-{partition_id:05d}.ndjson")

    def worker_counters(self, partition_id: int) -> str:
        return self._join("out", f"counters-{partition_id:05d}.json")


def write_json(storage: StorageBackend, path: str, data: Dict[str, Any]) -> None:
    storage.write_bytes(json.dumps(data, indent=2, sort_keys=True).encode("utf-8"), path)


def read_json(storage: StorageBackend, path: str) -> Dict[str, Any]:
    return json.loads(storage.read_bytes(path).decode("utf-8"))


def write_bucket_manifest(storage: StorageBackend, path: str, buckets: Iterable[Bucket]) -> None:
    records = ({"bucket": b.id, "file": f.path, "size": f.size} for b in buckets for f in b.files)
    storage.write_bytes(dump_ndjson(records), path)


def read_bucket_manifest(storage: StorageBackend, path: str) -> Dict[str, Bucket]:
    """
    Rebuild buckets from the manifest.

    Member order is the order records appear in the file.
    """
    members: "OrderedDict[str, List[SourceFile]]" = OrderedDict()
    for record in load_ndjson(storage.read_bytes(path)):
        bid = record["bucket"]
        members.setdefault(bid, []).append(SourceFile(
            path=record["file"],
            size=int(record.get("size", 0)),
            directory=bucket_directory_of(bid),
        ))

    return {
        bid: Bucket(id=bid, files=tuple(files), size=sum(f.size for f in files))
        for bid, files in members.items()
    }


def write_partition_map(storage: StorageBackend, path: str, assignment: Dict[str, int]) -> None:
    records = ({"bucket": bid, "partition": pid} for bid, pid in assignment.items())
    storage.write_bytes(dump_ndjson(records), path)


def read_partition_map(storage: StorageBackend, path: str) -> Dict[str, int]:
    return {
        record["bucket"]: int(record["partition"])
        for record in load_ndjson(storage.read_bytes(path))
    }


def write_file_list(storage: StorageBackend, path: str, files: Iterable[SourceFile]) -> None:
    storage.write_bytes(dump_ndjson({"file": f.path} for f in files), path)


def read_file_list(storage: StorageBackend, path: str) -> List[str]:
    if not storage.exists(path):
        return []
    return [record["file"] for record in load_ndjson(storage.read_bytes(path))]


def write_mappings(storage: StorageBackend, path: str, mappings: Iterable[MappingRecord]) -> None:
    records = ({"source": m.source, "output": m.output} for m in mappings)
    storage.write_bytes(dump_ndjson(records), path)


def read_mappings(storage: StorageBackend, layout: RunLayout) -> List[MappingRecord]:
    """All mapping records of a run, partition files in partition order."""
    mappings = []
    for entry in sorted(storage.list_dir(layout.mappings_dir), key=lambda e: e["path"]):
        if entry["is_dir"] or not _PART_RE.fullmatch(posixpath.basename(entry["path"])):
            continue
        for record in load_ndjson(storage.read_bytes(entry["path"])):
            mappings.append(MappingRecord(source=record["source"], output=record["output"]))
    return mappings


def write_counters(storage: StorageBackend, path: str, counters: CrushCounters) -> None:
    write_json(storage, path, counters.to_dict())


def read_worker_counters(storage: StorageBackend, layout: RunLayout) -> Dict[int, CrushCounters]:
    """Counters of every partition that finished, by partition id."""
    result = {}
    for entry in storage.list_dir(layout.out_dir):
        m = _COUNTERS_RE.fullmatch(posixpath.basename(entry["path"]))
        if entry["is_dir"] or m is None:
            continue
        result[int(m.group(1))] = CrushCounters.from_dict(read_json(storage, entry["path"]))
    return result
