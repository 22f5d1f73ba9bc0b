"""Top-level package for the batchasr multithreaded transcription tool."""

# Re-export commonly used namespaces for convenience when running as a module.
from . import asr, cli, utils  # noqa: F401

__all__ = ["asr", "cli", "utils"]
