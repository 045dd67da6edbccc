"""Registry v2 HTTP client.

This module handles:
- Manifest and blob reads with digest verification
- Blob existence checks, cross-repository mounts and monolithic uploads
- Manifest writes
- Mapping transport and HTTP failures onto RegistryError codes
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence

import httpx

from kone.images.layer import sha256_digest
from kone.images.models import INDEX_MEDIA_TYPES, MANIFEST_MEDIA_TYPES
from kone.registry.auth import Keychain, RegistryAuth
from kone.registry.reference import DEFAULT_REGISTRY, DOCKER_HUB_API_HOST

logger = logging.getLogger(__name__)

# Timeout for registry requests (seconds)
DEFAULT_TIMEOUT = 300

# Manifest types we ask registries for, most preferred first
MANIFEST_ACCEPT = (*MANIFEST_MEDIA_TYPES, *INDEX_MEDIA_TYPES)

_STATUS_CODES = {
    401: "unauthorized",
    403: "unauthorized",
    404: "not_found",
}


class RegistryError(Exception):
    """Raised when a registry request fails."""

    def __init__(
        self,
        message: str,
        code: str = "registry_error",
        status_code: int | None = None,
    ) -> None:
        """Initialize RegistryError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            status_code: HTTP status of the failed response, if any.
        """
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def _error_detail(response: httpx.Response) -> str:
    """Extract the registry's error messages from a response body."""
    try:
        payload = response.json()
    except (ValueError, UnicodeDecodeError):
        return response.reason_phrase
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if not errors:
        return response.reason_phrase
    return "; ".join(
        f"{err.get('code', 'UNKNOWN')}: {err.get('message', '')}".rstrip(": ")
        for err in errors
        if isinstance(err, dict)
    )


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("Content-Type", "").split(";", 1)[0].strip()


class RegistryClient:
    """Client for one registry host.

    Args:
        registry: Registry name as it appears in references.
        keychain: Credential source; None for anonymous access.
        insecure: Use plain HTTP instead of HTTPS.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        registry: str,
        keychain: Keychain | None = None,
        insecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.registry = registry
        host = DOCKER_HUB_API_HOST if registry == DEFAULT_REGISTRY else registry
        scheme = "http" if insecure else "https"
        credentials = keychain.resolve(registry) if keychain is not None else None
        self._client = httpx.Client(
            base_url=f"{scheme}://{host}/v2/",
            auth=RegistryAuth(credentials),
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        url: str | httpx.URL,
        expected: Sequence[int] = (200,),
        **kwargs: object,
    ) -> httpx.Response:
        """Send a request, mapping failures onto RegistryError.

        Raises:
            RegistryError: On transport errors or an unexpected status.
        """
        try:
            response = self._client.request(
                method, url, **kwargs  # type: ignore[arg-type]
            )
        except httpx.TimeoutException as e:
            raise RegistryError(
                f"Timeout talking to {self.registry}: {method} {url}",
                code="timeout",
            ) from e
        except httpx.RequestError as e:
            raise RegistryError(
                f"Network error talking to {self.registry}: {e}",
                code="network_error",
            ) from e

        if response.status_code not in expected:
            raise RegistryError(
                f"{method} {response.url} failed: {response.status_code} "
                f"{_error_detail(response)}",
                code=_STATUS_CODES.get(response.status_code, "http_error"),
                status_code=response.status_code,
            )
        return response

    def get_manifest(
        self,
        repository: str,
        identifier: str,
        accept: Sequence[str] = MANIFEST_ACCEPT,
    ) -> tuple[bytes, str, str]:
        """Fetch a manifest by tag or digest.

        Returns:
            (raw manifest, media type, digest).

        Raises:
            RegistryError: If the request fails or a pinned digest does not match.
        """
        response = self._request(
            "GET",
            f"{repository}/manifests/{identifier}",
            headers={"Accept": ", ".join(accept)},
        )
        raw = response.content
        digest = sha256_digest(raw)
        if identifier.startswith("sha256:") and digest != identifier:
            raise RegistryError(
                f"manifest {repository}@{identifier} has digest {digest}",
                code="digest_mismatch",
            )

        media_type = _media_type(response)
        if not media_type or media_type == "application/json":
            try:
                media_type = json.loads(raw).get("mediaType", "")
            except (ValueError, AttributeError):
                media_type = ""
        logger.debug(
            "Fetched manifest %s:%s (%s)", repository, identifier, media_type
        )
        return raw, media_type, digest

    def get_blob(self, repository: str, digest: str) -> bytes:
        """Fetch a blob and verify its digest.

        Raises:
            RegistryError: If the request fails or the content does not match.
        """
        response = self._request("GET", f"{repository}/blobs/{digest}")
        data = response.content
        actual = sha256_digest(data)
        if actual != digest:
            raise RegistryError(
                f"blob {repository}@{digest} has digest {actual}",
                code="digest_mismatch",
            )
        return data

    def blob_exists(self, repository: str, digest: str) -> bool:
        response = self._request(
            "HEAD", f"{repository}/blobs/{digest}", expected=(200, 404)
        )
        return response.status_code == 200

    def mount_blob(self, repository: str, digest: str, source: str) -> bool:
        """Ask the registry to mount a blob from another repository.

        Returns:
            True if the blob was mounted, False if the registry declined.
        """
        response = self._request(
            "POST",
            f"{repository}/blobs/uploads/",
            expected=(201, 202),
            params={"mount": digest, "from": source},
        )
        return response.status_code == 201

    def upload_blob(self, repository: str, digest: str, data: bytes) -> None:
        """Upload a blob in a single PUT.

        Raises:
            RegistryError: If either step of the upload fails.
        """
        started = self._request(
            "POST", f"{repository}/blobs/uploads/", expected=(202,)
        )
        location = started.headers.get("Location")
        if not location:
            raise RegistryError(
                f"upload to {repository} returned no Location header",
                code="upload_error",
            )
        url = started.url.join(location).copy_merge_params({"digest": digest})
        self._request(
            "PUT",
            url,
            expected=(201,),
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        logger.debug(
            "Uploaded %s to %s (%d bytes)", digest[:19], repository, len(data)
        )

    def put_manifest(
        self,
        repository: str,
        identifier: str,
        raw: bytes,
        media_type: str,
    ) -> str:
        """Write a manifest under a tag or digest.

        Returns:
            Digest of the manifest.
        """
        response = self._request(
            "PUT",
            f"{repository}/manifests/{identifier}",
            expected=(200, 201, 202),
            content=raw,
            headers={"Content-Type": media_type},
        )
        return response.headers.get("Docker-Content-Digest") or sha256_digest(raw)


class ClientPool:
    """Hands out one shared RegistryClient per registry.

    Args:
        keychain: Credential source passed to every client.
        insecure: Use plain HTTP.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        keychain: Keychain | None = None,
        insecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._keychain = keychain
        self._insecure = insecure
        self._timeout = timeout
        self._clients: dict[str, RegistryClient] = {}
        self._lock = threading.Lock()

    def __call__(self, registry: str) -> RegistryClient:
        with self._lock:
            client = self._clients.get(registry)
            if client is None:
                client = RegistryClient(
                    registry,
                    keychain=self._keychain,
                    insecure=self._insecure,
                    timeout=self._timeout,
                )
                self._clients[registry] = client
            return client

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()


__all__ = [
    "DEFAULT_TIMEOUT",
    "MANIFEST_ACCEPT",
    "ClientPool",
    "RegistryClient",
    "RegistryError",
]
