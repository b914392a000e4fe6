"""Config package."""
from .config import CrushConfig, CrushSpecConfig, load_config, save_example_config

__all__ = ["CrushConfig", "CrushSpecConfig", "load_config", "save_example_config"]
