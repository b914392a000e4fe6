"""
Output installer.

Two protocols, chosen by run mode:

move
    Staged outputs are moved into the destination tree, mirroring the
    source layout, followed by every skipped file. The source tree keeps
    only the files the crush did not touch.

clone (swap)
    For each bucket the original files are first moved to a holding area
    under the destination, and only then is the merged file moved into the
    original directory. There is no rollback: on failure the exact moves
    needed to restore the directory are logged and carried by InstallError.

Renames are the only mutating operation, so each file move is atomic on
filesystems with atomic rename and nothing more.
"""
import logging
import posixpath
from dataclasses import dataclass, field
from itertools import groupby
from typing import Iterable, List, Optional, Sequence, Tuple

from crush.codecs import CompressionCodec
from crush.errors import InstallError
from crush.models import MappingRecord
from storage.base import StorageBackend

logger = logging.getLogger(__name__)


def relocate_path(path: str, prefix: str, new_root: str) -> str:
    """
    Replace ``prefix`` at the start of ``path`` with ``new_root``.

    Raises:
        ValueError: path is not under prefix
    """
    prefix = prefix.strip("/")
    new_root = new_root.strip("/")

    if not prefix:
        rest = path.lstrip("/")
    elif path == prefix:
        rest = ""
    elif path.startswith(prefix + "/"):
        rest = path[len(prefix) + 1:]
    else:
        raise ValueError(f"{path} is not under {prefix}")

    return "/".join(p for p in (new_root, rest) if p)


@dataclass
class Remediation:
    """
    Manual steps that restore a directory after a failed swap.

    ``moved`` lists (original, holding) pairs already relocated and
    ``pending_install`` the (staged, target) move that was not performed.
    """
    directory: str
    moved: List[Tuple[str, str]] = field(default_factory=list)
    pending_install: Optional[Tuple[str, str]] = None

    def describe(self) -> str:
        lines = [f"Crush swap of {self.directory} did not complete. To restore it:"]
        for original, holding in self.moved:
            lines.append(f"  mv {holding} {original}")
        if self.pending_install is not None:
            staged, target = self.pending_install
            lines.append("Or, to finish it, move the remaining originals the same way and then:")
            lines.append(f"  mv {staged} {target}")
        return "\n".join(lines)


class OutputInstaller:
    """
    Install staged crush outputs.

    Args:
        storage: Backend holding source, staging area and destination
        staging_dir: Root of the staging area
        source_dir: Root of the crushed source tree
        dest_dir: Destination root (move) or holding area root (clone)
        codec: Output codec, for locating renamed stream-compressed outputs
    """

    def __init__(
        self,
        storage: StorageBackend,
        staging_dir: str,
        source_dir: str,
        dest_dir: str,
        codec: CompressionCodec,
    ):
        self.storage = storage
        self.staging_dir = staging_dir.strip("/")
        self.source_dir = source_dir.strip("/")
        self.dest_dir = dest_dir.strip("/")
        self.codec = codec

    def _staged_prefix(self) -> str:
        return "/".join(p for p in (self.staging_dir, self.source_dir) if p)

    def _resolve_staged(self, output: str) -> Tuple[str, str]:
        """
        Locate a staged output that may carry the codec suffix.

        Returns the path found and the suffix it carries.
        """
        if self.storage.exists(output):
            return output, ""
        if not self.codec.is_none:
            mangled = output + self.codec.extension
            if self.storage.exists(mangled):
                return mangled, self.codec.extension
        raise FileNotFoundError(f"Staged crush output not found: {output}")

    def _move(self, src: str, dst: str) -> None:
        parent = posixpath.dirname(dst)
        if parent:
            self.storage.mkdir(parent)
        self.storage.rename(src, dst)
        logger.debug(f"[OutputInstaller] Moved {src} -> {dst}")

    def install_move(self, mappings: Sequence[MappingRecord], skipped: Iterable[str]) -> int:
        """
        Move staged outputs, then skipped files, under the destination.

        Returns:
            Number of files moved
        """
        moved = 0
        prefix = self._staged_prefix()

        outputs = list(dict.fromkeys(m.output for m in mappings))
        for output in outputs:
            try:
                src, suffix = self._resolve_staged(output)
                dst = relocate_path(output, prefix, self.dest_dir) + suffix
                self._move(src, dst)
            except Exception as e:
                raise InstallError(f"Failed to install {output}: {e}") from e
            moved += 1

        logger.info(f"[OutputInstaller] Moved {moved} crush outputs to {self.dest_dir}")

        skipped_moved = 0
        for path in skipped:
            try:
                self._move(path, relocate_path(path, self.source_dir, self.dest_dir))
            except Exception as e:
                raise InstallError(f"Failed to move skipped file {path}: {e}") from e
            skipped_moved += 1

        logger.info(f"[OutputInstaller] Moved {skipped_moved} skipped files to {self.dest_dir}")
        return moved + skipped_moved

    def install_swap(self, mappings: Sequence[MappingRecord], removable: Iterable[str]) -> int:
        """
        Swap each bucket's originals for its crush output.

        Mapping records of one bucket are consecutive. Originals go to
        ``<dest>/<original path>``; the crush output then goes to the
        original directory.

        Returns:
            Number of crush outputs installed
        """
        installed = 0

        for output, group in groupby(mappings, key=lambda m: m.output):
            sources = [m.source for m in group]
            target = relocate_path(output, self.staging_dir, "")
            remediation = Remediation(directory=posixpath.dirname(target))

            try:
                for source in sources:
                    holding = posixpath.join(self.dest_dir, source)
                    self._move(source, holding)
                    remediation.moved.append((source, holding))

                staged, suffix = self._resolve_staged(output)
                remediation.pending_install = (staged, target + suffix)
                self._move(staged, target + suffix)
                remediation.pending_install = None

            except Exception as e:
                if remediation.pending_install is None:
                    remediation.pending_install = (output, target)
                logger.error(f"[OutputInstaller] Swap failed for {output}: {e}")
                logger.error(remediation.describe())
                raise InstallError(f"Failed to swap in {output}: {e}", remediation) from e

            installed += 1
            logger.debug(f"[OutputInstaller] Swapped {len(sources)} files for {target}{suffix}")

        logger.info(f"[OutputInstaller] Swapped in {installed} crush outputs")

        removed = 0
        for path in removable:
            try:
                self._move(path, posixpath.join(self.dest_dir, path))
            except Exception as e:
                raise InstallError(f"Failed to move removable file {path}: {e}") from e
            removed += 1

        if removed:
            logger.info(f"[OutputInstaller] Moved {removed} empty files to {self.dest_dir}")
        return installed
