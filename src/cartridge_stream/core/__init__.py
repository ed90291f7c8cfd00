"""Core components for cartridge-stream."""

from .config import StreamConfig
from .runner import StreamRunner

__all__ = ["StreamConfig", "StreamRunner"]
