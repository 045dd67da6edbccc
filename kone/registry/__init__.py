"""Container registry access.

This module handles:
- Image reference parsing
- Docker config.json credentials and the token handshake
- The registry v2 HTTP API
- Fetching base images and pushing built images
"""

from kone.registry.auth import Credentials, Keychain, RegistryAuth
from kone.registry.client import ClientPool, RegistryClient, RegistryError
from kone.registry.reference import InvalidReferenceError, Reference
from kone.registry.remote import fetch_image, write_image, write_manifest

__all__ = [
    "ClientPool",
    "Credentials",
    "InvalidReferenceError",
    "Keychain",
    "Reference",
    "RegistryAuth",
    "RegistryClient",
    "RegistryError",
    "fetch_image",
    "write_image",
    "write_manifest",
]
