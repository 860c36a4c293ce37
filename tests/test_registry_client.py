"""Tests for the registry client against an in-process fake registry."""

import gzip

import pytest

from registry_sync.core.auth import Credential
from registry_sync.core.registry_client import RegistryClient
from registry_sync.core.types import RegistryConfig
from registry_sync.exceptions import (
    BlobPushRejectedError,
    ManifestNotFoundError,
    ManifestPushRejectedError,
    MissingRedirectLocationError,
    UnexpectedStatusError,
    UnknownBlobSizeError,
    UploadSessionRejectedError,
    ValidationError,
)
from tests.helpers import DOCKER_MANIFEST_LIST, DOCKER_MANIFEST_V2, make_index, sha256

CONFIG = b'{"architecture": "amd64", "os": "linux"}'
LAYER = b"\x1f\x8b" + b"layer-bytes" * 500


async def _drain(handle) -> bytes:
    async with handle:
        return b"".join([chunk async for chunk in handle])


@pytest.mark.asyncio
async def test_check_registry_v2(source_registry):
    """Test v2 API detection."""
    async with RegistryClient(source_registry.url) as client:
        assert await client.check_registry_v2() is True


@pytest.mark.asyncio
async def test_check_registry_v2_unreachable():
    """Test v2 API detection against a closed port."""
    async with RegistryClient("http://127.0.0.1:1") as client:
        assert await client.check_registry_v2() is False


class TestManifests:
    """Test manifest GET/PUT."""

    @pytest.mark.asyncio
    async def test_get_manifest_keeps_raw_body(self, source_registry):
        body = source_registry.registry.add_image("app", "v1", CONFIG, [LAYER])

        async with RegistryClient(source_registry.url) as client:
            fetched = await client.get_manifest("app", "v1")

        assert fetched.raw == body
        assert fetched.media_type == DOCKER_MANIFEST_V2
        assert fetched.digest == sha256(body)
        assert fetched.document["config"]["digest"] == sha256(CONFIG)

    @pytest.mark.asyncio
    async def test_media_type_comes_from_content_type(self, source_registry):
        child = source_registry.registry.add_image("app", "amd64", CONFIG, [LAYER])
        index = make_index([(child, "amd64")])
        source_registry.registry.add_manifest("app", "multi", index, DOCKER_MANIFEST_LIST)

        async with RegistryClient(source_registry.url) as client:
            fetched = await client.get_manifest("app", "multi")

        assert fetched.media_type == DOCKER_MANIFEST_LIST
        assert fetched.raw == index

    @pytest.mark.asyncio
    async def test_get_manifest_not_found(self, source_registry):
        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(ManifestNotFoundError) as exc_info:
                await client.get_manifest("app", "missing")
        assert exc_info.value.repository == "app"

    @pytest.mark.asyncio
    async def test_put_manifest(self, destination_registry):
        body = b'{"schemaVersion": 2}'
        async with RegistryClient(destination_registry.url) as client:
            digest = await client.put_manifest("app", "v1", body, DOCKER_MANIFEST_V2)

        assert digest == sha256(body)
        assert destination_registry.registry.manifests[("app", "v1")] == (
            body,
            DOCKER_MANIFEST_V2,
        )

    @pytest.mark.asyncio
    async def test_tag_image_republishes_raw_manifest(self, source_registry):
        registry = source_registry.registry
        child = registry.add_image("app", "amd64", CONFIG, [LAYER])
        index = make_index([(child, "amd64")])
        registry.add_manifest("app", "1.0", index, DOCKER_MANIFEST_LIST)

        async with RegistryClient(source_registry.url) as client:
            digest = await client.tag_image("app", "1.0", "stable")

        assert digest == sha256(index)
        assert registry.manifests[("app", "stable")] == (index, DOCKER_MANIFEST_LIST)
        assert registry.events_of("put_manifest") == ["app:stable"]

    @pytest.mark.asyncio
    async def test_tag_image_missing_source(self, source_registry):
        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(ManifestNotFoundError):
                await client.tag_image("app", "missing", "stable")
        assert source_registry.registry.events_of("put_manifest") == []

    @pytest.mark.asyncio
    async def test_put_manifest_rejected(self, destination_registry):
        destination_registry.registry.reject_manifest_puts.add("v1")
        async with RegistryClient(destination_registry.url) as client:
            with pytest.raises(ManifestPushRejectedError):
                await client.put_manifest("app", "v1", b"{}", DOCKER_MANIFEST_V2)

    @pytest.mark.asyncio
    async def test_retries_rate_limited_requests(self, source_registry):
        source_registry.registry.add_image("app", "v1", CONFIG, [LAYER])
        source_registry.registry.rate_limit_manifest_gets = 2
        config = RegistryConfig(retries=3, retry_backoff=0.01)

        async with RegistryClient(source_registry.url, config=config) as client:
            fetched = await client.get_manifest("app", "v1")

        assert fetched.media_type == DOCKER_MANIFEST_V2
        assert source_registry.registry.rate_limit_manifest_gets == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, source_registry):
        source_registry.registry.add_image("app", "v1", CONFIG, [LAYER])
        source_registry.registry.rate_limit_manifest_gets = 5
        config = RegistryConfig(retries=1, retry_backoff=0.01)

        async with RegistryClient(source_registry.url, config=config) as client:
            with pytest.raises(ManifestNotFoundError, match="429"):
                await client.get_manifest("app", "v1")


class TestBlobPull:
    """Test blob GET, redirects and HEAD probes."""

    @pytest.mark.asyncio
    async def test_pull_blob_stream(self, source_registry):
        digest = source_registry.registry.add_blob(LAYER)
        async with RegistryClient(source_registry.url) as client:
            handle = await client.pull_blob_stream("app", digest)
            assert handle.size == len(LAYER)
            assert await _drain(handle) == LAYER

    @pytest.mark.asyncio
    async def test_content_encoded_blob_is_relayed_verbatim(self, source_registry):
        registry = source_registry.registry
        registry.content_encoding = "gzip"
        blob = gzip.compress(b"layer-bytes" * 1000, mtime=0)
        digest = registry.add_blob(blob)

        async with RegistryClient(source_registry.url) as client:
            handle = await client.pull_blob_stream("app", digest)
            assert handle.size == len(blob)
            data = await _drain(handle)

        assert data == blob
        assert sha256(data) == digest
        assert registry.blob_accept_encodings == ["identity"]

    @pytest.mark.asyncio
    async def test_redirect_drops_authorization(self, source_registry):
        registry = source_registry.registry
        registry.redirect_blobs = True
        digest = registry.add_blob(LAYER)

        credential = Credential.bearer("secret-token")
        async with RegistryClient(source_registry.url, credential) as client:
            data = await _drain(await client.pull_blob_stream("app", digest))

        assert data == LAYER
        assert registry.redirect_auth_headers == [None]

    @pytest.mark.asyncio
    async def test_redirect_without_location(self, source_registry):
        registry = source_registry.registry
        registry.redirect_without_location = True
        digest = registry.add_blob(LAYER)

        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(MissingRedirectLocationError):
                await client.pull_blob_stream("app", digest)

        assert registry.events_of("pull_blob") == []

    @pytest.mark.asyncio
    async def test_unexpected_status(self, source_registry):
        registry = source_registry.registry
        registry.blob_get_status = 500
        digest = registry.add_blob(LAYER)

        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(UnexpectedStatusError) as exc_info:
                await client.pull_blob_stream("app", digest)

        assert exc_info.value.status == 500
        assert exc_info.value.digest == digest

    @pytest.mark.asyncio
    async def test_head_blob_size(self, source_registry):
        digest = source_registry.registry.add_blob(LAYER)
        async with RegistryClient(source_registry.url) as client:
            assert await client.head_blob_size("app", digest) == len(LAYER)
            assert await client.blob_exists("app", digest) is True
            assert await client.blob_exists("app", sha256(b"nope")) is False

    @pytest.mark.asyncio
    async def test_head_blob_size_missing_blob(self, source_registry):
        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(UnknownBlobSizeError):
                await client.head_blob_size("app", sha256(b"nope"))

    @pytest.mark.asyncio
    async def test_head_blob_size_without_length(self, source_registry):
        registry = source_registry.registry
        registry.omit_blob_length = True
        digest = registry.add_blob(LAYER)

        async with RegistryClient(source_registry.url) as client:
            with pytest.raises(UnknownBlobSizeError):
                await client.head_blob_size("app", digest)


class TestBlobPush:
    """Test upload sessions and monolithic PUT."""

    @pytest.mark.asyncio
    async def test_push_blob_bytes(self, destination_registry):
        digest = sha256(LAYER)
        async with RegistryClient(destination_registry.url) as client:
            assert await client.push_blob_stream("app", digest, LAYER, len(LAYER)) == digest

        assert destination_registry.registry.blobs[digest] == LAYER
        assert destination_registry.registry.events_of("push_blob") == [digest]

    @pytest.mark.asyncio
    async def test_push_blob_async_stream(self, destination_registry):
        digest = sha256(LAYER)

        async def chunks():
            for i in range(0, len(LAYER), 1000):
                yield LAYER[i : i + 1000]

        async with RegistryClient(destination_registry.url) as client:
            await client.push_blob_stream("app", digest, chunks(), len(LAYER))

        assert destination_registry.registry.blobs[digest] == LAYER

    @pytest.mark.asyncio
    async def test_push_invalid_digest(self, destination_registry):
        async with RegistryClient(destination_registry.url) as client:
            with pytest.raises(ValidationError):
                await client.push_blob_stream("app", "sha256:short", LAYER, len(LAYER))
        assert destination_registry.registry.events == []

    @pytest.mark.asyncio
    async def test_upload_session_rejected(self, destination_registry):
        destination_registry.registry.upload_status = 403
        async with RegistryClient(destination_registry.url) as client:
            with pytest.raises(UploadSessionRejectedError):
                await client.push_blob_stream("app", sha256(LAYER), LAYER, len(LAYER))

    @pytest.mark.asyncio
    async def test_push_rejected(self, destination_registry):
        digest = sha256(LAYER)
        destination_registry.registry.reject_blob_pushes.add(digest)
        async with RegistryClient(destination_registry.url) as client:
            with pytest.raises(BlobPushRejectedError) as exc_info:
                await client.push_blob_stream("app", digest, LAYER, len(LAYER))

        assert exc_info.value.digest == digest
        assert digest not in destination_registry.registry.blobs
