"""FileCrush - consolidate many small files into fewer, larger ones."""

__version__ = "0.1.0"
__author__ = "FileCrush Contributors"
__license__ = "MIT"

from config import CrushConfig, load_config

__all__ = ["CrushConfig", "load_config", "__version__"]
