"""kone - build and publish Node.js container images without a Dockerfile.

This package turns a Node.js source directory into deterministic image
layers, stacks them onto a base image pulled from a registry, and publishes
the result to a registry, the local Docker daemon, or a tarball.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
