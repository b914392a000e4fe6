"""Plan and merge data types."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple


class FileClass(str, Enum):
    """Scan-time classification of a source file."""
    CRUSHABLE = "crushable"
    SKIPPED = "skipped"
    REMOVABLE = "removable"
    INELIGIBLE = "ineligible"


@dataclass(frozen=True)
class SourceFile:
    """A file discovered by the scanner."""
    path: str
    size: int
    directory: str


@dataclass(frozen=True)
class Bucket:
    """
    A group of files from one directory destined for one output file.

    Bucket ids are ``<directory>-<n>``, so the directory can always be
    recovered from the id alone.
    """
    id: str
    files: Tuple[SourceFile, ...]
    size: int

    @property
    def directory(self) -> str:
        return bucket_directory_of(self.id)

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]


@dataclass
class Partition:
    """Buckets assigned to one parallel worker."""
    id: int
    bucket_ids: List[str] = field(default_factory=list)
    size: int = 0


@dataclass(frozen=True)
class MappingRecord:
    """One source file consumed into a staged crush output."""
    source: str
    output: str


def bucket_id(directory: str, seq: int) -> str:
    return f"{directory}-{seq}"


def bucket_directory_of(bucket: str) -> str:
    return bucket[:bucket.rindex("-")]
