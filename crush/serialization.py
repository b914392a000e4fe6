"""Serialization utilities for manifests and mapping files."""
import json
from typing import Any, Dict, Iterable, Iterator


def to_ndjson(record: Dict[str, Any]) -> str:
    """
    Convert record to NDJSON line (newline-delimited JSON).

    Args:
        record: Dictionary to serialize

    Returns:
        JSON string with newline
    """
    return json.dumps(record, separators=(',', ':'), default=str) + '\n'


def from_ndjson(line: str) -> Dict[str, Any]:
    """
    Parse NDJSON line back to dictionary.

    Args:
        line: JSON string (with or without newline)

    Returns:
        Parsed dictionary
    """
    return json.loads(line.strip())


def dump_ndjson(records: Iterable[Dict[str, Any]]) -> bytes:
    """Encode records as an NDJSON document."""
    return "".join(to_ndjson(r) for r in records).encode("utf-8")


def load_ndjson(data: bytes) -> Iterator[Dict[str, Any]]:
    """Decode an NDJSON document, skipping blank lines."""
    for line in data.decode("utf-8").splitlines():
        if line.strip():
            yield from_ndjson(line)
