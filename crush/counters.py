"""Crush run counters."""
from dataclasses import dataclass, asdict, fields
from typing import Dict, Any


@dataclass
class CrushCounters:
    """
    Counters incremented by the scanner (directory and file classification)
    and by bucket workers (records and files crushed).

    Each worker owns its own instance; the run controller sums them.
    """
    dirs_found: int = 0
    dirs_skipped: int = 0
    dirs_eligible: int = 0
    files_found: int = 0
    files_eligible: int = 0
    files_skipped: int = 0
    files_removed: int = 0
    records_crushed: int = 0
    files_crushed: int = 0

    def merge(self, other: "CrushCounters") -> "CrushCounters":
        """Add other's counts into this instance and return it."""
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrushCounters":
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known})

    def __str__(self) -> str:
        return (
            f"CrushCounters(dirs={self.dirs_found} found/{self.dirs_eligible} eligible/"
            f"{self.dirs_skipped} skipped, files={self.files_found} found/"
            f"{self.files_eligible} eligible/{self.files_skipped} skipped/"
            f"{self.files_removed} removed, crushed={self.files_crushed} files/"
            f"{self.records_crushed} records)"
        )
