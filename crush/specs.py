"""
Crush spec table.

An ordered list of rules mapping a directory to an output-name template and
a pair of formats. Directories are matched in order; the first rule whose
regex fully matches the directory path wins.
"""
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, TYPE_CHECKING

from crush.codecs import CompressionCodec, get_codec
from crush.errors import ConfigurationError
from crush.formats import FormatAdapter, FormatFamily, get_adapter

if TYPE_CHECKING:
    from config import CrushConfig

logger = logging.getLogger(__name__)

TIMESTAMP_PLACEHOLDER = "${crush.timestamp}"
TASK_NUM_PLACEHOLDER = "${crush.task.num}"
FILE_NUM_PLACEHOLDER = "${crush.file.num}"

PLACEHOLDERS = (TIMESTAMP_PLACEHOLDER, TASK_NUM_PLACEHOLDER, FILE_NUM_PLACEHOLDER)

_PLACEHOLDER_RE = re.compile(r"\$\{[^}]*\}")


@dataclass(frozen=True)
class CrushSpec:
    """One (matcher, template, formats) rule."""
    index: int
    pattern: Pattern[str]
    replacement: str
    input_format: FormatAdapter
    output_format: FormatAdapter

    def matches(self, directory: str) -> bool:
        return self.pattern.fullmatch(directory) is not None

    def output_name(self, directory: str, timestamp: str, task_num: int, file_num: int) -> str:
        """
        Expand the template for one output file of ``directory``.

        Placeholders are substituted first, then regex group references
        (``\\1``, ``\\g<name>``) are expanded against the directory match.

        Raises:
            ConfigurationError: Directory does not match, a placeholder is
                unknown, or a group reference is invalid
        """
        m = self.pattern.fullmatch(directory)
        if m is None:
            raise ConfigurationError(f"Spec {self.index} does not match directory {directory}")

        template = (
            self.replacement
            .replace(TIMESTAMP_PLACEHOLDER, timestamp)
            .replace(TASK_NUM_PLACEHOLDER, str(task_num))
            .replace(FILE_NUM_PLACEHOLDER, str(file_num))
        )

        unresolved = _PLACEHOLDER_RE.findall(template)
        if unresolved:
            raise ConfigurationError(
                f"Unresolved placeholders {unresolved} in replacement {self.replacement!r}"
            )

        try:
            name = m.expand(template)
        except (re.error, IndexError) as e:
            raise ConfigurationError(
                f"Cannot expand replacement {self.replacement!r} for {directory}: {e}"
            )

        if not name or "/" in name:
            raise ConfigurationError(
                f"Replacement {self.replacement!r} produced an invalid file name for {directory}: {name!r}"
            )
        return name

    def output_path(self, directory: str, timestamp: str, task_num: int, file_num: int) -> str:
        """Crush output path: the output name inside ``directory``, relative to the storage root."""
        name = self.output_name(directory, timestamp, task_num, file_num)
        return posixpath.join(directory.strip("/"), name)


class CrushSpecTable:
    """Ordered spec rules plus the output codec they share."""

    def __init__(self, specs: List[CrushSpec], codec: CompressionCodec):
        if not specs:
            raise ConfigurationError("At least one crush spec is required")
        self.specs = specs
        self.codec = codec

    @classmethod
    def from_config(cls, config: "CrushConfig") -> "CrushSpecTable":
        """
        Build and validate the table.

        Every format id, the codec, and each template's placeholders are
        checked here so a bad configuration fails before any scan.
        """
        codec = get_codec(config.compression)
        specs = []

        for i, spec_config in enumerate(config.specs):
            unknown = [
                p for p in _PLACEHOLDER_RE.findall(spec_config.replacement)
                if p not in PLACEHOLDERS
            ]
            if unknown:
                raise ConfigurationError(
                    f"Spec {i} replacement {spec_config.replacement!r} has unknown placeholders {unknown}"
                )

            input_format = get_adapter(spec_config.input_format)
            output_format = get_adapter(spec_config.output_format)
            output_format.validate_codec(codec)

            # Lines and record batches do not convert into each other
            if (input_format.family is FormatFamily.TEXT) != (output_format.family is FormatFamily.TEXT):
                raise ConfigurationError(
                    f"Spec {i} cannot crush {input_format.format_id} input "
                    f"into {output_format.format_id} output"
                )

            specs.append(CrushSpec(
                index=i,
                pattern=re.compile(spec_config.regex),
                replacement=spec_config.replacement,
                input_format=input_format,
                output_format=output_format,
            ))

            logger.debug(
                f"[CrushSpecTable] Spec {i}: {spec_config.regex} -> {spec_config.replacement} "
                f"({spec_config.input_format} -> {spec_config.output_format})"
            )

        return cls(specs, codec)

    def match(self, directory: str) -> Optional[CrushSpec]:
        """First spec matching ``directory``, or None."""
        for spec in self.specs:
            if spec.matches(directory):
                return spec
        return None

    def __len__(self) -> int:
        return len(self.specs)

    def __getitem__(self, index: int) -> CrushSpec:
        return self.specs[index]
