"""Publishing built images.

This module handles:
- Repository naming
- Registry, local daemon and tarball publishers
- Concurrent build-and-publish orchestration
"""

from kone.publish.daemon import DaemonPublisher
from kone.publish.default import PublishError, RegistryPublisher
from kone.publish.namer import make_namer, package_with_md5, preserve_package_name
from kone.publish.tarball import TarballPublisher

__all__ = [
    "DaemonPublisher",
    "PublishError",
    "RegistryPublisher",
    "TarballPublisher",
    "make_namer",
    "package_with_md5",
    "preserve_package_name",
]
