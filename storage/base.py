"""
Base storage abstraction for FileCrush.

Provides unified interface for local and cloud storage backends.
All paths are relative to the storage root (local base_dir or S3 bucket).
"""
import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List, Dict, Any, BinaryIO

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    All implementations must support:
    - Path operations relative to a root (base_dir or bucket)
    - Binary input/output streams
    - Directory listing, rename, mkdir, exists, delete

    Nothing above this layer depends on storage-specific semantics beyond
    rename-as-move and an unspecified listing order.
    """

    def __init__(self, base_path: str):
        """
        Initialize storage backend.

        Args:
            base_path: Root path for all operations (local dir or S3 bucket)
        """
        self.base_path = base_path

    @abstractmethod
    def open_input(self, path: str) -> BinaryIO:
        """
        Open a file for binary reading.

        Args:
            path: Relative path from base_path

        Returns:
            Seekable binary file object (caller closes)
        """
        pass

    @abstractmethod
    def open_output(self, path: str) -> BinaryIO:
        """
        Create (or truncate) a file for binary writing, creating parents.

        Args:
            path: Relative path from base_path

        Returns:
            Binary file object (caller closes)
        """
        pass

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """
        List the immediate children of a directory.

        Args:
            path: Relative directory path from base_path

        Returns:
            List of dicts with keys: path, size, is_dir
        """
        pass

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Return True if path is an existing directory."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """
        Check if path exists.

        Args:
            path: Relative path from base_path

        Returns:
            True if path exists
        """
        pass

    @abstractmethod
    def rename(self, src: str, dst: str) -> None:
        """
        Move a file. Parent of dst must exist (see mkdir).

        Raises:
            FileNotFoundError: src does not exist
            FileExistsError: dst already exists
        """
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """
        Delete a file.

        Args:
            path: Relative path from base_path

        Returns:
            True if a file was deleted
        """
        pass

    @abstractmethod
    def delete_tree(self, path: str) -> None:
        """Recursively delete a directory and everything below it."""
        pass

    @abstractmethod
    def get_full_path(self, path: str) -> str:
        """
        Get full path for a relative path.

        Args:
            path: Relative path from base_path

        Returns:
            Full path (local path or s3:// URI)
        """
        pass

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return backend type identifier ('local' or 's3')."""
        pass

    def write_bytes(self, data: bytes, path: str) -> str:
        """
        Write bytes to storage.

        Args:
            data: Bytes to write
            path: Relative path from base_path

        Returns:
            Full path where data was written
        """
        with self.open_output(path) as f:
            f.write(data)
        return self.get_full_path(path)

    def read_bytes(self, path: str) -> bytes:
        """
        Read bytes from storage.

        Args:
            path: Relative path from base_path

        Returns:
            File contents as bytes
        """
        with self.open_input(path) as f:
            return f.read()

    def mkdir(self, path: str, parents: bool = True, exist_ok: bool = True) -> None:
        """
        Create directory (local only, no-op for S3).

        Args:
            path: Relative directory path from base_path
            parents: Create parent directories if needed
            exist_ok: Don't raise error if directory exists
        """
        # Default implementation (no-op) - overridden in LocalStorage
        pass


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, base_path: str):
        """
        Initialize local storage.

        Args:
            base_path: Base directory for all operations (e.g., "F:/")
        """
        super().__init__(base_path)
        self.base_dir = Path(base_path).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> str:
        return "local"

    def _resolve_path(self, path: str) -> Path:
        """Convert relative path to absolute local path."""
        return self.base_dir / path.lstrip("/")

    def open_input(self, path: str) -> BinaryIO:
        return open(self._resolve_path(path), "rb")

    def open_output(self, path: str) -> BinaryIO:
        full_path = self._resolve_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return open(full_path, "wb")

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full_path = self._resolve_path(path)

        if not full_path.is_dir():
            return []

        result = []
        # Sorted by name
        for f in sorted(full_path.iterdir()):
            is_dir = f.is_dir()
            result.append({
                "path": f.relative_to(self.base_dir).as_posix(),
                "size": 0 if is_dir else f.stat().st_size,
                "is_dir": is_dir,
            })

        return result

    def is_dir(self, path: str) -> bool:
        return self._resolve_path(path).is_dir()

    def exists(self, path: str) -> bool:
        return self._resolve_path(path).exists()

    def rename(self, src: str, dst: str) -> None:
        src_path = self._resolve_path(src)
        dst_path = self._resolve_path(dst)

        if dst_path.exists():
            raise FileExistsError(f"Destination already exists: {dst}")

        src_path.rename(dst_path)

    def delete(self, path: str) -> bool:
        full_path = self._resolve_path(path)
        if full_path.is_file():
            full_path.unlink()
            return True
        return False

    def delete_tree(self, path: str) -> None:
        full_path = self._resolve_path(path)
        if full_path.exists():
            shutil.rmtree(full_path)

    def get_full_path(self, path: str) -> str:
        return str(self._resolve_path(path))

    def mkdir(self, path: str, parents: bool = True, exist_ok: bool = True) -> None:
        full_path = self._resolve_path(path)
        full_path.mkdir(parents=parents, exist_ok=exist_ok)


class S3Storage(StorageBackend):
    """AWS S3 storage backend (via s3fs)."""

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        """
        Initialize S3 storage.

        Args:
            bucket: S3 bucket name (this is the base_path)
            region: AWS region (auto-detected if None)
            aws_access_key_id: AWS access key (uses environment/IAM if None)
            aws_secret_access_key: AWS secret key
            aws_session_token: Session token for temporary credentials
            endpoint_url: Custom endpoint for S3-compatible services
        """
        super().__init__(bucket)
        self.bucket = bucket
        self.region = region

        import s3fs

        s3fs_kwargs = {
            "anon": False,
        }
        if aws_access_key_id and aws_secret_access_key:
            s3fs_kwargs["key"] = aws_access_key_id
            s3fs_kwargs["secret"] = aws_secret_access_key
        if aws_session_token:
            s3fs_kwargs["token"] = aws_session_token

        client_kwargs = {}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if region:
            client_kwargs["region_name"] = region
        if client_kwargs:
            s3fs_kwargs["client_kwargs"] = client_kwargs

        self.s3fs = s3fs.S3FileSystem(**s3fs_kwargs)

    @property
    def backend_type(self) -> str:
        return "s3"

    def _get_s3_key(self, path: str) -> str:
        """Convert relative path to bucket-qualified s3fs key."""
        return f"{self.bucket}/{path.lstrip('/')}"

    def open_input(self, path: str) -> BinaryIO:
        return self.s3fs.open(self._get_s3_key(path), "rb")

    def open_output(self, path: str) -> BinaryIO:
        return self.s3fs.open(self._get_s3_key(path), "wb")

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        prefix = self._get_s3_key(path).rstrip("/")

        try:
            entries = self.s3fs.ls(prefix, detail=True)
        except FileNotFoundError:
            return []

        result = []
        for entry in entries:
            key = entry["name"]
            if key.rstrip("/") == prefix:
                continue
            is_dir = entry.get("type") == "directory"
            result.append({
                "path": key[len(self.bucket) + 1:].rstrip("/"),
                "size": 0 if is_dir else entry.get("size", 0),
                "is_dir": is_dir,
            })

        return result

    def is_dir(self, path: str) -> bool:
        return self.s3fs.isdir(self._get_s3_key(path))

    def exists(self, path: str) -> bool:
        return self.s3fs.exists(self._get_s3_key(path))

    def rename(self, src: str, dst: str) -> None:
        # Copy + delete on S3; not atomic
        if self.exists(dst):
            raise FileExistsError(f"Destination already exists: {dst}")
        self.s3fs.mv(self._get_s3_key(src), self._get_s3_key(dst))

    def delete(self, path: str) -> bool:
        key = self._get_s3_key(path)
        if not self.s3fs.isfile(key):
            return False
        self.s3fs.rm(key)
        return True

    def delete_tree(self, path: str) -> None:
        key = self._get_s3_key(path)
        if self.s3fs.exists(key):
            self.s3fs.rm(key, recursive=True)

    def get_full_path(self, path: str) -> str:
        return f"s3://{self._get_s3_key(path)}"
