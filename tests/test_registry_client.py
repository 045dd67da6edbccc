"""Tests for the registry HTTP client.

These tests use mocked HTTP responses for every registry call.
"""

import hashlib

import httpx
import pytest
import respx

from kone.images.models import DOCKER_MANIFEST_SCHEMA2
from kone.registry.client import ClientPool, RegistryClient, RegistryError

BASE = "https://reg.example.com/v2"


def _digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


class TestGetManifest:
    """Tests for RegistryClient.get_manifest."""

    @respx.mock
    def test_by_tag(self):
        """Should return raw bytes, media type and computed digest."""
        raw = b'{"schemaVersion": 2}'
        route = respx.get(f"{BASE}/app/manifests/v1").mock(
            return_value=httpx.Response(
                200, content=raw, headers={"Content-Type": DOCKER_MANIFEST_SCHEMA2}
            )
        )

        with RegistryClient("reg.example.com") as client:
            result = client.get_manifest("app", "v1")

        assert result == (raw, DOCKER_MANIFEST_SCHEMA2, _digest(raw))
        accept = route.calls.last.request.headers["Accept"]
        assert DOCKER_MANIFEST_SCHEMA2 in accept

    @respx.mock
    def test_media_type_from_body(self):
        """Should fall back to the document's mediaType field."""
        raw = b'{"mediaType": "%s"}' % DOCKER_MANIFEST_SCHEMA2.encode()
        respx.get(f"{BASE}/app/manifests/v1").mock(
            return_value=httpx.Response(
                200, content=raw, headers={"Content-Type": "application/json"}
            )
        )

        with RegistryClient("reg.example.com") as client:
            _, media_type, _ = client.get_manifest("app", "v1")

        assert media_type == DOCKER_MANIFEST_SCHEMA2

    @respx.mock
    def test_digest_mismatch(self):
        """Should reject content that does not match a pinned digest."""
        pinned = "sha256:" + "0" * 64
        respx.get(f"{BASE}/app/manifests/{pinned}").mock(
            return_value=httpx.Response(200, content=b"{}")
        )

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_manifest("app", pinned)

        assert exc_info.value.code == "digest_mismatch"

    @respx.mock
    def test_not_found(self):
        """Should map 404 onto not_found with the registry's message."""
        respx.get(f"{BASE}/app/manifests/v1").mock(
            return_value=httpx.Response(
                404,
                json={"errors": [{"code": "MANIFEST_UNKNOWN", "message": "unknown"}]},
            )
        )

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_manifest("app", "v1")

        assert exc_info.value.code == "not_found"
        assert exc_info.value.status_code == 404
        assert "MANIFEST_UNKNOWN" in str(exc_info.value)

    @respx.mock
    def test_unauthorized(self):
        """Should map 401 without a usable challenge onto unauthorized."""
        respx.get(f"{BASE}/app/manifests/v1").mock(return_value=httpx.Response(401))

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_manifest("app", "v1")

        assert exc_info.value.code == "unauthorized"

    @respx.mock
    def test_timeout(self):
        """Should map timeouts onto the timeout code."""
        respx.get(f"{BASE}/app/manifests/v1").mock(side_effect=httpx.ConnectTimeout)

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_manifest("app", "v1")

        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_network_error(self):
        """Should map connection failures onto network_error."""
        respx.get(f"{BASE}/app/manifests/v1").mock(side_effect=httpx.ConnectError)

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_manifest("app", "v1")

        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_docker_hub_host(self):
        """Should send Docker Hub requests to the registry API host."""
        route = respx.get(
            "https://registry-1.docker.io/v2/library/node/manifests/lts"
        ).mock(return_value=httpx.Response(200, content=b"{}"))

        with RegistryClient("index.docker.io") as client:
            client.get_manifest("library/node", "lts")

        assert route.called

    @respx.mock
    def test_insecure_uses_http(self):
        """Should talk plain HTTP to insecure registries."""
        route = respx.get("http://localhost:5000/v2/app/manifests/v1").mock(
            return_value=httpx.Response(200, content=b"{}")
        )

        with RegistryClient("localhost:5000", insecure=True) as client:
            client.get_manifest("app", "v1")

        assert route.called


class TestBlobs:
    """Tests for blob operations."""

    @respx.mock
    def test_get_blob(self):
        """Should return verified blob content."""
        data = b"layer bytes"
        digest = _digest(data)
        respx.get(f"{BASE}/app/blobs/{digest}").mock(
            return_value=httpx.Response(200, content=data)
        )

        with RegistryClient("reg.example.com") as client:
            assert client.get_blob("app", digest) == data

    @respx.mock
    def test_get_blob_digest_mismatch(self):
        """Should reject corrupted blobs."""
        digest = _digest(b"expected")
        respx.get(f"{BASE}/app/blobs/{digest}").mock(
            return_value=httpx.Response(200, content=b"corrupted")
        )

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.get_blob("app", digest)

        assert exc_info.value.code == "digest_mismatch"

    @respx.mock
    def test_blob_exists(self):
        """Should report presence from HEAD status."""
        present = _digest(b"a")
        absent = _digest(b"b")
        respx.head(f"{BASE}/app/blobs/{present}").mock(
            return_value=httpx.Response(200)
        )
        respx.head(f"{BASE}/app/blobs/{absent}").mock(return_value=httpx.Response(404))

        with RegistryClient("reg.example.com") as client:
            assert client.blob_exists("app", present) is True
            assert client.blob_exists("app", absent) is False

    @respx.mock
    def test_mount_blob(self):
        """Should report whether the registry mounted the blob."""
        digest = _digest(b"a")
        route = respx.route(
            method="POST", host="reg.example.com", path="/v2/app/blobs/uploads/"
        ).mock(
            side_effect=[
                httpx.Response(201),
                httpx.Response(202, headers={"Location": "/v2/app/blobs/uploads/x"}),
            ]
        )

        with RegistryClient("reg.example.com") as client:
            assert client.mount_blob("app", digest, "library/node") is True
            assert client.mount_blob("app", digest, "library/node") is False

        params = route.calls[0].request.url.params
        assert params["mount"] == digest
        assert params["from"] == "library/node"

    @respx.mock
    def test_upload_blob(self):
        """Should start an upload and PUT the content with its digest."""
        data = b"layer bytes"
        digest = _digest(data)
        respx.route(
            method="POST", host="reg.example.com", path="/v2/app/blobs/uploads/"
        ).mock(
            return_value=httpx.Response(
                202, headers={"Location": "/v2/app/blobs/uploads/abc?_state=s1"}
            )
        )
        put = respx.route(
            method="PUT", host="reg.example.com", path="/v2/app/blobs/uploads/abc"
        ).mock(return_value=httpx.Response(201))

        with RegistryClient("reg.example.com") as client:
            client.upload_blob("app", digest, data)

        request = put.calls.last.request
        assert request.url.params["digest"] == digest
        assert request.url.params["_state"] == "s1"
        assert request.content == data

    @respx.mock
    def test_upload_without_location(self):
        """Should fail when the registry does not say where to upload."""
        respx.route(
            method="POST", host="reg.example.com", path="/v2/app/blobs/uploads/"
        ).mock(return_value=httpx.Response(202))

        with RegistryClient("reg.example.com") as client:
            with pytest.raises(RegistryError) as exc_info:
                client.upload_blob("app", _digest(b"x"), b"x")

        assert exc_info.value.code == "upload_error"


class TestPutManifest:
    """Tests for RegistryClient.put_manifest."""

    @respx.mock
    def test_put_manifest(self):
        """Should PUT with the media type and return the digest."""
        raw = b'{"schemaVersion": 2}'
        route = respx.put(f"{BASE}/app/manifests/v1").mock(
            return_value=httpx.Response(
                201, headers={"Docker-Content-Digest": _digest(raw)}
            )
        )

        with RegistryClient("reg.example.com") as client:
            digest = client.put_manifest("app", "v1", raw, DOCKER_MANIFEST_SCHEMA2)

        assert digest == _digest(raw)
        request = route.calls.last.request
        assert request.headers["Content-Type"] == DOCKER_MANIFEST_SCHEMA2
        assert request.content == raw

    @respx.mock
    def test_put_manifest_computes_digest(self):
        """Should compute the digest when the registry omits it."""
        raw = b"{}"
        respx.put(f"{BASE}/app/manifests/v1").mock(return_value=httpx.Response(201))

        with RegistryClient("reg.example.com") as client:
            assert client.put_manifest("app", "v1", raw, "x") == _digest(raw)


class TestClientPool:
    """Tests for ClientPool class."""

    def test_one_client_per_registry(self):
        """Should reuse clients per registry."""
        pool = ClientPool()
        try:
            assert pool("a.example.com") is pool("a.example.com")
            assert pool("a.example.com") is not pool("b.example.com")
            assert pool("a.example.com").registry == "a.example.com"
        finally:
            pool.close()
