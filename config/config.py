"""Configuration management for FileCrush."""
import os
import re
import yaml
from pathlib import Path
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator


DEFAULT_REPLACEMENT = "crushed_file-${crush.timestamp}-${crush.task.num}-${crush.file.num}"


class S3Config(BaseModel):
    """S3-specific configuration."""
    bucket: str = ""
    region: Optional[str] = None  # Auto-detected if None
    aws_access_key_id: Optional[str] = None  # Uses environment/IAM role if None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    endpoint_url: Optional[str] = None  # For S3-compatible services (MinIO, etc.)


class StorageLayerConfig(BaseModel):
    """Storage configuration for the filesystem being crushed."""
    backend: Literal["local", "s3"] = "local"
    base_dir: str = "./data"
    s3: Optional[S3Config] = Field(default_factory=S3Config)


class CrushSpecConfig(BaseModel):
    """
    One crush specification.

    Directories whose path fully matches ``regex`` are crushed into files named
    by ``replacement``. The replacement may reference regex groups (``\\1``,
    ``\\g<name>``) and the placeholders ``${crush.timestamp}``,
    ``${crush.task.num}`` and ``${crush.file.num}``.
    """
    regex: str = ".+"
    replacement: str = DEFAULT_REPLACEMENT
    input_format: str = "sequence"
    output_format: str = "sequence"

    @field_validator("regex")
    @classmethod
    def _check_regex(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid directory regex {value!r}: {e}")
        return value

    @field_validator("replacement")
    @classmethod
    def _check_replacement(cls, value: str) -> str:
        if not value:
            raise ValueError("Replacement must not be empty")
        return value


class CrushConfig(BaseModel):
    """Root configuration for FileCrush."""
    # Ordered crush specs, first match wins
    specs: list[CrushSpecConfig] = Field(default_factory=lambda: [CrushSpecConfig()])

    # Eligibility
    block_size: int = 128 * 1024 * 1024  # Storage block size in bytes
    threshold: float = 0.75  # Fraction of block_size under which a file is crushable
    max_file_blocks: int = 8  # Max blocks per output file
    ignore_regex: Optional[str] = None  # Files matching are invisible to the crush
    skip_regex: Optional[str] = None  # Files matching are left untouched
    remove_empty_files: bool = False
    exclude_single_file_dirs: bool = True

    # Execution
    max_tasks: int = 100  # Upper bound on partitions
    max_workers: int = 4  # Parallel partition workers in a local run
    compression: str = "none"
    mode: Literal["move", "clone"] = "move"
    tmp_dir: str = "tmp"  # Relative to storage root

    # Storage backend
    storage: StorageLayerConfig = Field(default_factory=StorageLayerConfig)

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not (0 < value <= 1):
            raise ValueError(f"Block size threshold must be in (0, 1]: {value}")
        return value

    @field_validator("max_file_blocks")
    @classmethod
    def _check_max_file_blocks(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Maximum file size in blocks must be positive: {value}")
        return value

    @field_validator("max_tasks")
    @classmethod
    def _check_max_tasks(cls, value: int) -> int:
        if not (1 <= value <= 4000):
            raise ValueError(f"Tasks must be in the range [1, 4000]: {value}")
        return value

    @field_validator("block_size", "max_workers")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Must be positive: {value}")
        return value

    @field_validator("ignore_regex", "skip_regex")
    @classmethod
    def _check_file_regex(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid file regex {value!r}: {e}")
        return value

    @field_validator("specs")
    @classmethod
    def _check_specs(cls, value: list) -> list:
        if not value:
            raise ValueError("At least one crush spec is required")
        return value

    @property
    def max_eligible_size(self) -> int:
        """Largest file size, in bytes, that is still crushable."""
        return int(self.block_size * self.threshold)


def load_config(config_path: Optional[str] = None) -> CrushConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, looks for:
            1. CRUSH_CONFIG environment variable
            2. ./config/config.yaml
            3. ~/.filecrush/config.yaml

    Returns:
        CrushConfig instance
    """
    if config_path is None:
        # Check environment variable
        config_path = os.environ.get("CRUSH_CONFIG")

        if config_path is None:
            # Check default locations
            candidates = [
                Path("./config/config.yaml"),
                Path.home() / ".filecrush" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = str(candidate)
                    break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set CRUSH_CONFIG or create config/config.yaml"
        )

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        yaml_data = yaml.safe_load(f) or {}

    return CrushConfig(**yaml_data)


def save_example_config(output_path: str = "./config/config.example.yaml"):
    """
    Save an example configuration file.

    Args:
        output_path: Where to save the example config
    """
    example = {
        "specs": [
            {
                "regex": r".+/logs/(\w+)",
                "replacement": r"\1-${crush.timestamp}-${crush.task.num}-${crush.file.num}.txt",
                "input_format": "text",
                "output_format": "text",
            },
            {
                "regex": ".+",
                "replacement": DEFAULT_REPLACEMENT + ".parquet",
                "input_format": "parquet",
                "output_format": "parquet",
            },
        ],
        "block_size": 128 * 1024 * 1024,
        "threshold": 0.75,
        "max_file_blocks": 8,
        "skip_regex": r".*/_SUCCESS",
        "remove_empty_files": True,
        "max_tasks": 100,
        "max_workers": 4,
        "compression": "none",
        "mode": "move",
        "storage": {
            "backend": "local",
            "base_dir": "./data",
        },
        "log_level": "INFO",
    }

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        yaml.dump(example, f, default_flow_style=False, sort_keys=False)

    print(f"Example config saved to {output_path}")
