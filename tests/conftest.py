"""Test configuration fixtures."""
import pytest
from pathlib import Path
import tempfile
import shutil
import sys

import pyarrow as pa

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import CrushConfig
from storage.base import LocalStorage


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def storage(temp_dir):
    """Local storage rooted at the temporary directory."""
    return LocalStorage(str(temp_dir))


@pytest.fixture
def sample_config(temp_dir):
    """Crush configuration for small test trees: 1 KiB blocks, text specs."""
    return CrushConfig(
        specs=[{
            "regex": ".+",
            "replacement": "crushed_file-${crush.timestamp}-${crush.task.num}-${crush.file.num}",
            "input_format": "text",
            "output_format": "text",
        }],
        block_size=1024,
        threshold=0.5,
        max_file_blocks=2,
        max_tasks=4,
        max_workers=2,
        storage={"backend": "local", "base_dir": str(temp_dir)},
        log_level="DEBUG",
    )


def key_value_batch(keys, values):
    """Batch in the sequence container layout."""
    return pa.RecordBatch.from_arrays(
        [pa.array(keys, type=pa.string()), pa.array(values, type=pa.int64())],
        names=["key", "value"],
    )


@pytest.fixture
def write_sequence(storage):
    """Write an Arrow IPC stream with key/value columns."""
    def _write(path, keys, values):
        batch = key_value_batch(keys, values)
        with storage.open_output(path) as f:
            with pa.ipc.new_stream(f, batch.schema) as writer:
                writer.write_batch(batch)
        return path
    return _write


@pytest.fixture
def read_sequence(storage):
    """Read an Arrow IPC stream back as a list of (key, value) tuples."""
    def _read(path):
        with storage.open_input(path) as f:
            table = pa.ipc.open_stream(f).read_all()
        return list(zip(table.column("key").to_pylist(), table.column("value").to_pylist()))
    return _read
