"""
Directory scanner and classifier.

Walks a source tree breadth-first and sorts every file into one of four
classes. Classification happens exactly once; later phases only read it.
"""
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Pattern

from crush.counters import CrushCounters
from crush.models import FileClass, SourceFile
from storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class DirectoryScan:
    """One directory's immediate files, by class."""
    directory: str
    crushable: List[SourceFile] = field(default_factory=list)
    skipped: List[SourceFile] = field(default_factory=list)
    removable: List[SourceFile] = field(default_factory=list)
    ineligible: List[SourceFile] = field(default_factory=list)

    @property
    def crushable_bytes(self) -> int:
        return sum(f.size for f in self.crushable)


class DirectoryScanner:
    """
    Classify files under a root directory.

    Rules, in order:
        1. path fully matches ``ignore_regex``: invisible, never counted
        2. path fully matches ``skip_regex``: skipped
        3. zero length and ``remove_empty_files``: removable
        4. size <= ``max_eligible_size``: crushable
        5. otherwise: ineligible

    Directory and file counters are incremented on the counters object
    passed in; the scanner holds no other state between directories.
    """

    def __init__(
        self,
        storage: StorageBackend,
        max_eligible_size: int,
        ignore_regex: Optional[str] = None,
        skip_regex: Optional[str] = None,
        remove_empty_files: bool = False,
        exclude_dirs: Optional[List[str]] = None,
    ):
        self.storage = storage
        self.max_eligible_size = max_eligible_size
        self.ignore_pattern: Optional[Pattern[str]] = re.compile(ignore_regex) if ignore_regex else None
        self.skip_pattern: Optional[Pattern[str]] = re.compile(skip_regex) if skip_regex else None
        self.remove_empty_files = remove_empty_files
        # Directories never descended into (the run's own working area)
        self.exclude_dirs = set(exclude_dirs or [])

    def classify(self, path: str, size: int) -> Optional[FileClass]:
        """Class of one file, or None if it is ignored."""
        if self.ignore_pattern is not None and self.ignore_pattern.fullmatch(path):
            return None
        if self.skip_pattern is not None and self.skip_pattern.fullmatch(path):
            return FileClass.SKIPPED
        if size == 0 and self.remove_empty_files:
            return FileClass.REMOVABLE
        if size <= self.max_eligible_size:
            return FileClass.CRUSHABLE
        return FileClass.INELIGIBLE

    def scan(self, root: str, counters: CrushCounters) -> Iterator[DirectoryScan]:
        """
        Yield one DirectoryScan per directory, breadth-first from ``root``.

        Counts directories and files found, and removable files, here; the
        planner settles eligible and skipped counts once it knows which
        files ended up in buckets.
        """
        queue = deque([root.strip("/")])

        while queue:
            directory = queue.popleft()
            scan = DirectoryScan(directory)
            counters.dirs_found += 1

            for entry in self.storage.list_dir(directory):
                path = entry["path"]

                if entry["is_dir"]:
                    if path not in self.exclude_dirs:
                        queue.append(path)
                    continue

                file_class = self.classify(path, entry["size"])
                if file_class is None:
                    logger.debug(f"[DirectoryScanner] Ignoring {path}")
                    continue

                counters.files_found += 1
                source = SourceFile(path=path, size=entry["size"], directory=directory)

                if file_class is FileClass.CRUSHABLE:
                    scan.crushable.append(source)
                elif file_class is FileClass.SKIPPED:
                    scan.skipped.append(source)
                elif file_class is FileClass.REMOVABLE:
                    counters.files_removed += 1
                    scan.removable.append(source)
                else:
                    scan.ineligible.append(source)

                logger.debug(f"[DirectoryScanner] {path} ({entry['size']} bytes): {file_class.value}")

            yield scan
