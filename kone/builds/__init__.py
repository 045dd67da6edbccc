"""Build pipeline.

This module handles:
- Deterministic layer archives
- Node.js image assembly
- Base image resolution
- Sharing build results between concurrent callers
"""

from kone.builds.archive import ArchiveError, archive_directory
from kone.builds.caching import CachingBuilder, new_caching
from kone.builds.future import Future
from kone.builds.node import BuildConfigurationError, NodeBuilder, new_node_builder

__all__ = [
    "ArchiveError",
    "BuildConfigurationError",
    "CachingBuilder",
    "Future",
    "NodeBuilder",
    "archive_directory",
    "new_caching",
    "new_node_builder",
]
