"""Exception hierarchy for crush runs."""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from crush.installer import Remediation


class CrushError(Exception):
    """Base class for all crush failures."""


class ConfigurationError(CrushError, ValueError):
    """Bad or incomplete configuration. Raised before any filesystem mutation."""


class FormatError(CrushError):
    """A file does not satisfy its format adapter's contract."""


class SchemaMismatchError(CrushError):
    """A bucket member's schema signature differs from the bucket's first file."""

    def __init__(self, path: str, signature: str, expected: str):
        super().__init__(
            f"Heterogeneous schema detected in file {path}: [{signature}] != [{expected}]"
        )
        self.path = path
        self.signature = signature
        self.expected = expected


class InstallError(CrushError):
    """Installing crush output failed part way; see ``remediation``."""

    def __init__(self, message: str, remediation: Optional["Remediation"] = None):
        super().__init__(message)
        self.remediation = remediation


class InvariantViolation(CrushError):
    """Counters reconciled after the merge phase do not agree."""
