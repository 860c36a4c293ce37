"""Core data types for registry synchronization."""

import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import aiohttp

GiB = 1024 * 1024 * 1024

DEFAULT_CONCURRENCY = 5
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10
MAX_QUEUE_SIZE = 1000
ADJUST_INTERVAL = 10.0
MEMORY_THRESHOLD = 3 * GiB
GATE_POLL_INTERVAL = 1.0
INDEX_CONCURRENCY = 2


@dataclass(frozen=True)
class Platform:
    """Platform an index entry targets."""

    os: str
    architecture: str
    variant: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Platform":
        return cls(
            os=data.get("os", ""),
            architecture=data.get("architecture", ""),
            variant=data.get("variant"),
        )

    def matches(self, os: str, architecture: str, variant: str | None = None) -> bool:
        if self.os != os or self.architecture != architecture:
            return False
        return variant is None or self.variant == variant

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


@dataclass(frozen=True)
class Descriptor:
    """Content-addressed object reference: media type, digest and size."""

    media_type: str
    digest: str
    size: int
    platform: Platform | None = None
    annotations: dict[str, str] | None = field(default=None, compare=False)
    urls: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Descriptor":
        platform = data.get("platform")
        return cls(
            media_type=data.get("mediaType", ""),
            digest=data["digest"],
            size=int(data.get("size", 0)),
            platform=Platform.from_dict(platform) if platform else None,
            annotations=data.get("annotations"),
            urls=tuple(data.get("urls", ())),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.urls:
            result["urls"] = list(self.urls)
        if self.annotations:
            result["annotations"] = dict(self.annotations)
        if self.platform:
            platform = {
                "architecture": self.platform.architecture,
                "os": self.platform.os,
            }
            if self.platform.variant:
                platform["variant"] = self.platform.variant
            result["platform"] = platform
        return result

    @property
    def is_foreign(self) -> bool:
        """Cross-registry reference layer; carried in manifests, never copied."""
        return "foreign" in self.media_type


@dataclass(frozen=True)
class Manifest:
    """Single-platform image manifest. Layer order is transfer order."""

    schema_version: int
    media_type: str
    config: Descriptor
    layers: tuple[Descriptor, ...]

    def blobs(self) -> list[Descriptor]:
        """Config and transferable layers, de-duplicated by digest."""
        seen: set[str] = set()
        result = []
        for descriptor in (self.config, *self.layers):
            if descriptor.is_foreign or descriptor.digest in seen:
                continue
            seen.add(descriptor.digest)
            result.append(descriptor)
        return result


@dataclass(frozen=True)
class ManifestIndex:
    """Multi-platform manifest list / image index."""

    schema_version: int
    media_type: str
    manifests: tuple[Descriptor, ...]


@dataclass(frozen=True)
class FetchedManifest:
    """Manifest body exactly as the registry returned it."""

    raw: bytes
    media_type: str
    digest: str
    document: dict[str, Any] = field(compare=False)


class BlobHandle:
    """Live blob byte stream plus its declared size.

    Whoever holds the handle owns the underlying HTTP response and must
    either drain it or close it before the connection can be reused.
    """

    def __init__(
        self,
        digest: str,
        size: int,
        response: aiohttp.ClientResponse,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self.digest = digest
        self.size = size
        self._response = response
        self._chunk_size = chunk_size

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._response.content.iter_chunked(self._chunk_size)

    async def __aenter__(self) -> "BlobHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the response, aborting the connection if it is not drained."""
        self._response.close()


@dataclass(frozen=True)
class MemorySample:
    """Process memory snapshot."""

    heap_used: int
    external: int
    sampled_at: float

    @property
    def total(self) -> int:
        return self.heap_used + self.external


@dataclass
class RegistryConfig:
    """HTTP settings for a single registry client."""

    timeout: float = 300
    retries: int = 3
    retry_backoff: float = 1.0
    chunk_size: int = 64 * 1024


@dataclass
class SyncConfig:
    """Tuning knobs for the synchronizer, its queue and its memory gate."""

    concurrency: int = DEFAULT_CONCURRENCY
    min_concurrency: int = MIN_CONCURRENCY
    max_concurrency: int = MAX_CONCURRENCY
    max_queue_size: int = MAX_QUEUE_SIZE
    adjust_interval: float = ADJUST_INTERVAL
    memory_threshold: int = MEMORY_THRESHOLD
    gate_poll_interval: float = GATE_POLL_INTERVAL
    max_blob_size: int | None = None
    index_concurrency: int = INDEX_CONCURRENCY
    temp_dir: str | None = None
    verify_digests: bool = False
    skip_existing: bool = False
    timeout: float | None = None
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "SyncConfig":
        """Build a config from REGISTRY_SYNC_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if "REGISTRY_SYNC_CONCURRENCY" in env:
            config.concurrency = int(env["REGISTRY_SYNC_CONCURRENCY"])
        if "REGISTRY_SYNC_MEMORY_THRESHOLD" in env:
            config.memory_threshold = int(env["REGISTRY_SYNC_MEMORY_THRESHOLD"])
        if "REGISTRY_SYNC_MAX_BLOB_SIZE" in env:
            config.max_blob_size = int(env["REGISTRY_SYNC_MAX_BLOB_SIZE"])
        if "REGISTRY_SYNC_TEMP_DIR" in env:
            config.temp_dir = env["REGISTRY_SYNC_TEMP_DIR"]
        if "REGISTRY_SYNC_TIMEOUT" in env:
            config.timeout = float(env["REGISTRY_SYNC_TIMEOUT"])
        return config
