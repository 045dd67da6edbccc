"""Local Docker daemon publisher.

Images are streamed to `docker load` as docker-save tarballs and tagged
under ko.local.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence

from kone.config import LOCAL_REPO
from kone.images.image import Image
from kone.images.tarball import tarball_bytes
from kone.publish.default import DEFAULT_TAGS, PublishError
from kone.publish.namer import preserve_package_name
from kone.types import Namer

logger = logging.getLogger(__name__)

# Docker CLI executable
DOCKER_BINARY = "docker"


class DaemonPublisher:
    """Loads images into the local Docker daemon.

    Each image is tagged with its manifest digest (hex) and with every
    requested tag.

    Args:
        tags: Additional tags applied to every image.
        namer: Maps package names onto the path after ko.local.
        docker: Docker CLI executable.
        timeout: `docker load` timeout in seconds (None = no timeout).
    """

    def __init__(
        self,
        tags: Sequence[str] = DEFAULT_TAGS,
        namer: Namer = preserve_package_name,
        docker: str = DOCKER_BINARY,
        timeout: int | None = None,
    ) -> None:
        self.tags = list(tags)
        self.namer = namer
        self.docker = docker
        self.timeout = timeout

    def publish(self, image: Image, name: str) -> str:
        """Load image into the daemon.

        Returns:
            'ko.local/<name>:<digest hex>'.

        Raises:
            PublishError: If docker cannot be run or `docker load` fails.
        """
        repository = f"{LOCAL_REPO}/{self.namer(name)}"
        digest_ref = f"{repository}:{image.digest().split(':', 1)[1]}"
        tags = [digest_ref, *(f"{repository}:{tag}" for tag in self.tags)]

        cmd = [self.docker, "load"]
        logger.debug("Executing %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                input=tarball_bytes(image, tags),
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise PublishError(
                f"docker load timed out after {self.timeout} seconds",
                code="docker_timeout",
            ) from e
        except FileNotFoundError as e:
            raise PublishError(
                f"{self.docker} not found; is Docker installed?",
                code="docker_not_found",
            ) from e
        except OSError as e:
            raise PublishError(
                f"Failed to execute docker load: {e}", code="execution_error"
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise PublishError(
                f"docker load failed with exit code {result.returncode}: {stderr}",
                code="docker_load_failed",
            )

        logger.info("Loaded %s", digest_ref)
        return digest_ref


__all__ = ["DOCKER_BINARY", "DaemonPublisher"]
