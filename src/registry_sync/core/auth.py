"""Credential resolution for registry requests."""

import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Pre-resolved Authorization value for one registry."""

    scheme: str
    token: str = field(repr=False)

    @classmethod
    def basic(cls, username: str, password: str) -> "Credential":
        raw = f"{username}:{password}".encode("utf-8")
        return cls("Basic", base64.b64encode(raw).decode("ascii"))

    @classmethod
    def bearer(cls, token: str) -> "Credential":
        return cls("Bearer", token)

    @property
    def header(self) -> str:
        return f"{self.scheme} {self.token}"


def default_docker_config_path() -> Path:
    return Path.home() / ".docker" / "config.json"


def load_docker_config(config_path: Path | None = None) -> dict:
    """Read the docker CLI config file, returning {} when it is unusable."""
    path = config_path or default_docker_config_path()
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable docker config %s: %s", path, e)
        return {}


def find_docker_auth(registry: str, config_path: Path | None = None) -> Credential | None:
    """Look up a Basic credential for registry in the docker config ``auths``.

    Keys are matched loosely (either string containing the other) so that
    ``https://index.docker.io/v1/`` matches ``index.docker.io``.
    """
    auths = load_docker_config(config_path).get("auths") or {}
    for key, entry in auths.items():
        if not key:
            continue
        if registry in key or key in registry:
            auth = (entry or {}).get("auth")
            if auth:
                return Credential("Basic", auth)
    return None


def resolve_credential(
    registry: str,
    username: str | None = None,
    password: str | None = None,
    config_path: Path | None = None,
) -> Credential | None:
    """Resolve the credential to attach to requests against registry.

    Explicit username/password wins; otherwise the docker config file is
    consulted; otherwise requests are anonymous.
    """
    if username and password:
        return Credential.basic(username, password)
    return find_docker_auth(registry, config_path)
