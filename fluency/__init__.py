"""Top-level package for fluency."""

__version__ = "0.1.0"

from . import config, connectivity, dictation, storage, sync  # noqa: E402

__all__ = ["config", "connectivity", "dictation", "storage", "sync", "__version__"]
