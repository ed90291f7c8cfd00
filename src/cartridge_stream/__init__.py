"""
Cartridge-Stream: schema evolution for streaming sinks

Infers column types from semi-structured records and evolves the target
table's schema incrementally, safely under concurrent batches.
"""

__version__ = "0.1.0"
__author__ = "Cartridge Team"
__email__ = "team@cartridge.dev"

from .core.config import StreamConfig
from .core.runner import StreamRunner

__all__ = ["StreamConfig", "StreamRunner"]
