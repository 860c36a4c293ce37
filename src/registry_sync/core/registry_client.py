"""Docker Registry API v2 async client implementation."""

import json
import logging
from collections.abc import AsyncIterable
from typing import Optional, Union
from urllib.parse import urljoin

import aiohttp

from ..exceptions import (
    BlobPushRejectedError,
    ManifestError,
    ManifestNotFoundError,
    ManifestPushRejectedError,
    MissingRedirectLocationError,
    RegistryConnectionError,
    UnexpectedStatusError,
    UnknownBlobSizeError,
    UploadSessionRejectedError,
    ValidationError,
)
from ..utils.digest import calculate_digest, validate_digest
from .auth import Credential
from .media_types import MANIFEST_ACCEPT
from .session import create_session, send_request
from .types import BlobHandle, FetchedManifest, RegistryConfig

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class RegistryClient:
    """Docker Registry API v2 async client for one registry and one credential."""

    def __init__(
        self,
        registry_url: str,
        credential: Optional[Credential] = None,
        config: Optional[RegistryConfig] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            registry_url: Registry URL (e.g., http://localhost:5000)
            credential: Pre-resolved credential attached to every request
            config: HTTP settings (timeouts, 429 retries, chunk size)
        """
        self.registry_url = registry_url.rstrip("/")
        self.credential = credential
        self.config = config or RegistryConfig()
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def open(self) -> None:
        """Create the underlying session if it does not exist yet."""
        if not self.session or self.session.closed:
            self.session = await create_session(self.config)

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {}
        if self.credential:
            headers["Authorization"] = self.credential.header
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self, method: str, url: str, retries: Optional[int] = None, **kwargs
    ) -> aiohttp.ClientResponse:
        if not self.session:
            await self.open()
        return await send_request(
            self.session,
            method,
            url,
            retries=self.config.retries if retries is None else retries,
            backoff=self.config.retry_backoff,
            **kwargs,
        )

    async def check_registry_v2(self) -> bool:
        """Check if the registry supports v2 API.

        Returns:
            True if v2 API is supported
        """
        try:
            resp = await self._request("GET", f"{self.registry_url}/v2/", headers=self._headers())
        except RegistryConnectionError:
            return False
        async with resp:
            return resp.status in (200, 401)

    async def get_manifest(self, repository: str, reference: str) -> FetchedManifest:
        """Retrieve a manifest or index from the registry.

        The media type is taken from the response Content-Type, never from
        the body, and the raw bytes are kept so they can be republished
        unchanged.

        Args:
            repository: Repository name
            reference: Tag or digest reference

        Returns:
            FetchedManifest with raw body, media type, digest and parsed JSON

        Raises:
            ManifestNotFoundError: If the registry answers non-2xx
            ManifestError: If the body is not valid JSON
        """
        url = f"{self.registry_url}/v2/{repository}/manifests/{reference}"
        resp = await self._request(
            "GET", url, headers=self._headers({"Accept": MANIFEST_ACCEPT})
        )
        async with resp:
            if not _is_success(resp.status):
                raise ManifestNotFoundError(
                    f"Manifest {repository}:{reference} not found (HTTP {resp.status})",
                    repository=repository,
                    digest=reference,
                )
            try:
                raw = await resp.read()
            except aiohttp.ClientError as e:
                raise RegistryConnectionError(f"Failed to read manifest: {e}") from e
            content_type = resp.headers.get("Content-Type", "")
            digest = resp.headers.get("Docker-Content-Digest") or calculate_digest(raw)

        try:
            document = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ManifestError(
                f"Manifest {repository}:{reference} is not valid JSON: {e}",
                repository=repository,
                digest=reference,
            ) from e

        return FetchedManifest(
            raw=raw,
            media_type=content_type.split(";", 1)[0].strip(),
            digest=digest,
            document=document,
        )

    async def put_manifest(
        self, repository: str, reference: str, body: bytes, media_type: str
    ) -> str:
        """Upload a manifest body verbatim.

        Args:
            repository: Repository name
            reference: Tag or digest reference
            body: Exact manifest bytes
            media_type: Manifest media type, sent as Content-Type

        Returns:
            Manifest digest

        Raises:
            ManifestPushRejectedError: If the registry answers non-2xx
        """
        url = f"{self.registry_url}/v2/{repository}/manifests/{reference}"
        resp = await self._request(
            "PUT",
            url,
            data=body,
            headers=self._headers(
                {"Content-Type": media_type, "Content-Length": str(len(body))}
            ),
        )
        async with resp:
            if not _is_success(resp.status):
                detail = await resp.text()
                raise ManifestPushRejectedError(
                    f"Manifest push to {repository}:{reference} rejected "
                    f"(HTTP {resp.status}): {detail[:200]}",
                    repository=repository,
                    digest=reference,
                )
            return resp.headers.get("Docker-Content-Digest") or calculate_digest(body)

    async def tag_image(self, repository: str, source_tag: str, target_tag: str) -> str:
        """Publish an existing manifest under another tag in the same repository.

        The manifest is re-uploaded byte-for-byte with its own media type,
        so indexes and OCI manifests keep their digest.

        Returns:
            Manifest digest
        """
        fetched = await self.get_manifest(repository, source_tag)
        logger.info("Tagging %s:%s as %s", repository, source_tag, target_tag)
        return await self.put_manifest(repository, target_tag, fetched.raw, fetched.media_type)

    async def pull_blob_stream(self, repository: str, digest: str) -> BlobHandle:
        """Open a blob as a byte stream, following redirects by hand.

        Redirect targets (usually object storage) are requested without the
        registry Authorization header.

        Args:
            repository: Repository name
            digest: Blob digest

        Returns:
            BlobHandle owning the open response

        Raises:
            MissingRedirectLocationError: If a 3xx carries no Location
            UnexpectedStatusError: For any other non-2xx status
        """
        url = f"{self.registry_url}/v2/{repository}/blobs/{digest}"
        resp = await self._request(
            "GET", url, headers=self._headers(), allow_redirects=False
        )

        if resp.status in REDIRECT_STATUSES:
            location = resp.headers.get("Location")
            base = str(resp.url)
            resp.close()
            if not location:
                raise MissingRedirectLocationError(
                    f"Blob {digest} redirect (HTTP {resp.status}) without Location",
                    repository=repository,
                    digest=digest,
                )
            logger.debug("Blob %s redirected to %s", digest, location)
            resp = await self._request("GET", urljoin(base, location))

        if not _is_success(resp.status):
            resp.close()
            raise UnexpectedStatusError(
                f"Unexpected status {resp.status} when pulling blob {digest}",
                status=resp.status,
                repository=repository,
                digest=digest,
            )

        length = resp.headers.get("Content-Length", "")
        size = int(length) if length.isdigit() else 0
        return BlobHandle(digest, size, resp, self.config.chunk_size)

    async def head_blob_size(self, repository: str, digest: str) -> int:
        """Probe a blob's size with HEAD.

        Raises:
            UnknownBlobSizeError: If Content-Length is absent or non-numeric
        """
        url = f"{self.registry_url}/v2/{repository}/blobs/{digest}"
        resp = await self._request("HEAD", url, headers=self._headers())
        async with resp:
            length = resp.headers.get("Content-Length", "")
            if not _is_success(resp.status) or not length.isdigit():
                raise UnknownBlobSizeError(
                    f"Cannot determine size of blob {digest} (HTTP {resp.status})",
                    repository=repository,
                    digest=digest,
                )
            return int(length)

    async def blob_exists(self, repository: str, digest: str) -> bool:
        """Check if a blob exists in the registry.

        Args:
            repository: Repository name
            digest: Blob digest

        Returns:
            True if blob exists
        """
        url = f"{self.registry_url}/v2/{repository}/blobs/{digest}"
        try:
            resp = await self._request("HEAD", url, headers=self._headers())
        except RegistryConnectionError:
            return False
        async with resp:
            return resp.status == 200

    async def start_blob_upload(self, repository: str) -> str:
        """Open a new upload session.

        Returns:
            Absolute upload session URL

        Raises:
            UploadSessionRejectedError: If status is not 202 or Location is missing
        """
        url = f"{self.registry_url}/v2/{repository}/blobs/uploads/"
        resp = await self._request(
            "POST",
            url,
            headers=self._headers({"Content-Length": "0"}),
            allow_redirects=False,
        )
        async with resp:
            upload_url = resp.headers.get("Location", "")
            if resp.status != 202 or not upload_url:
                raise UploadSessionRejectedError(
                    f"Upload session for {repository} rejected (HTTP {resp.status})",
                    repository=repository,
                )

        if not upload_url.startswith("http"):
            upload_url = urljoin(self.registry_url, upload_url)
        return upload_url

    async def push_blob_stream(
        self,
        repository: str,
        digest: str,
        data: Union[bytes, AsyncIterable[bytes]],
        size: int,
    ) -> str:
        """Upload a blob in a single monolithic PUT.

        Every call opens a fresh upload session; sessions are never reused
        since registries invalidate them on error.

        Args:
            repository: Repository name
            digest: Blob digest
            data: Blob bytes or async stream of chunks
            size: Exact number of bytes data yields

        Returns:
            Blob digest

        Raises:
            ValidationError: If digest is malformed
            UploadSessionRejectedError: If no session could be opened
            BlobPushRejectedError: If the final status is not 201
        """
        if not validate_digest(digest):
            raise ValidationError(f"Invalid digest format: {digest}", digest=digest)

        upload_url = await self.start_blob_upload(repository)
        final_url = (
            f"{upload_url}&digest={digest}"
            if "?" in upload_url
            else f"{upload_url}?digest={digest}"
        )
        resp = await self._request(
            "PUT",
            final_url,
            retries=0,
            data=data,
            headers=self._headers(
                {
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(size),
                }
            ),
            allow_redirects=False,
        )
        async with resp:
            if resp.status != 201:
                raise BlobPushRejectedError(
                    f"Failed to push blob {digest}: status {resp.status}",
                    repository=repository,
                    digest=digest,
                )
        return digest
