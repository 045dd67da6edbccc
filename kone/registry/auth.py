"""Registry authentication.

This module handles:
- Reading credentials from the Docker CLI config (config.json)
- Parsing WWW-Authenticate challenges
- Answering Basic and Bearer challenges as an httpx.Auth flow
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
from collections.abc import Generator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from kone.registry.reference import DEFAULT_REGISTRY

logger = logging.getLogger(__name__)

# Key the Docker CLI stores Docker Hub credentials under
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for a registry."""

    username: str
    password: str = field(repr=False)

    def basic_header(self) -> str:
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {token}"


def default_docker_config_path() -> Path:
    """Return $DOCKER_CONFIG/config.json or ~/.docker/config.json."""
    config_dir = os.environ.get("DOCKER_CONFIG")
    if config_dir:
        return Path(config_dir) / "config.json"
    return Path.home() / ".docker" / "config.json"


def _normalize_auth_key(key: str) -> str:
    """Strip scheme and path from a config.json auths key."""
    key = re.sub(r"^https?://", "", key)
    host = key.split("/", 1)[0]
    if host in ("docker.io", "registry-1.docker.io"):
        return DEFAULT_REGISTRY
    return host


class Keychain:
    """Resolves registry credentials from a Docker CLI config file.

    Args:
        config_path: Path to config.json; defaults to the Docker CLI location.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path or default_docker_config_path()

    def _load(self) -> dict:
        try:
            with self.config_path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable %s: %s", self.config_path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def resolve(self, registry: str) -> Credentials | None:
        """Return credentials for registry, or None for anonymous access."""
        auths = self._load().get("auths") or {}
        for key, entry in auths.items():
            if _normalize_auth_key(key) != registry or not isinstance(entry, dict):
                continue

            if entry.get("username") and entry.get("password"):
                return Credentials(entry["username"], entry["password"])

            encoded = entry.get("auth")
            if encoded:
                try:
                    decoded = base64.b64decode(encoded).decode("utf-8")
                except (ValueError, UnicodeDecodeError):
                    logger.warning(
                        "Malformed auth entry for %s in %s", key, self.config_path
                    )
                    continue
                username, sep, password = decoded.partition(":")
                if sep:
                    return Credentials(username, password)

        logger.debug("No credentials for %s, using anonymous access", registry)
        return None


@dataclass
class Challenge:
    """A parsed WWW-Authenticate challenge."""

    scheme: str
    params: dict[str, str] = field(default_factory=dict)


def parse_challenge(header: str) -> Challenge | None:
    """Parse a WWW-Authenticate header value.

    Returns:
        Challenge with a lowercase scheme, or None if the header is empty.
    """
    header = header.strip()
    if not header:
        return None
    scheme, _, rest = header.partition(" ")
    return Challenge(scheme=scheme.lower(), params=dict(_CHALLENGE_PARAM.findall(rest)))


class RegistryAuth(httpx.Auth):
    """httpx auth flow implementing the registry token handshake.

    Requests go out with the last obtained Authorization header. On a 401
    the challenge is answered (Basic with credentials, or Bearer by fetching
    a token from the challenge realm) and the request is sent once more.

    Args:
        credentials: Credentials, or None for anonymous tokens.
        scopes: Extra token scopes requested on top of the challenge's own.
    """

    requires_response_body = True

    def __init__(
        self,
        credentials: Credentials | None = None,
        scopes: Sequence[str] = (),
    ) -> None:
        self._credentials = credentials
        self._scopes = list(scopes)
        self._header: str | None = None

    def _token_request(self, challenge: Challenge) -> httpx.Request:
        realm = challenge.params.get("realm")
        if not realm:
            raise httpx.RequestError("bearer challenge without realm")
        params: list[tuple[str, str]] = []
        if "service" in challenge.params:
            params.append(("service", challenge.params["service"]))
        scopes = [*challenge.params.get("scope", "").split(), *self._scopes]
        for scope in dict.fromkeys(scopes):
            params.append(("scope", scope))
        headers = {}
        if self._credentials is not None:
            headers["Authorization"] = self._credentials.basic_header()
        return httpx.Request("GET", realm, params=params, headers=headers)

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        if self._header:
            request.headers["Authorization"] = self._header

        response = yield request
        if response.status_code != 401:
            return

        challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if challenge is None:
            return

        if challenge.scheme == "basic":
            if self._credentials is None:
                return
            self._header = self._credentials.basic_header()
        elif challenge.scheme == "bearer":
            token_response = yield self._token_request(challenge)
            if token_response.status_code != 200:
                return
            payload = token_response.json()
            token = payload.get("token") or payload.get("access_token")
            if not token:
                return
            self._header = f"Bearer {token}"
        else:
            return

        request.headers["Authorization"] = self._header
        yield request


__all__ = [
    "DOCKER_HUB_AUTH_KEY",
    "Challenge",
    "Credentials",
    "Keychain",
    "RegistryAuth",
    "default_docker_config_path",
    "parse_challenge",
]
