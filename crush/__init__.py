"""
FileCrush - consolidate small files into fewer, larger files.

Scan a directory tree, group each directory's small files into size-bounded
buckets, merge each bucket into one output file and install the outputs in
place of the originals.
"""
from crush.counters import CrushCounters
from crush.errors import (
    ConfigurationError,
    CrushError,
    FormatError,
    InstallError,
    InvariantViolation,
    SchemaMismatchError,
)
from crush.job import CrushJob
from crush.planner import CrushPlan

__all__ = [
    "ConfigurationError",
    "CrushCounters",
    "CrushError",
    "CrushJob",
    "CrushPlan",
    "FormatError",
    "InstallError",
    "InvariantViolation",
    "SchemaMismatchError",
]
