"""Registry-to-registry image replication."""

import asyncio
import functools
import logging
import shutil
import tempfile
from collections.abc import Awaitable, Coroutine
from pathlib import Path
from typing import Any, Optional, TypeVar, Union

from ..exceptions import BlobTooLargeError, TempFileCleanupError, ValidationError
from ..operations.blobs import (
    BUFFER_MODE,
    SYNC_MODES,
    TARBALL_MODE,
    BlobTransfer,
    download_blob,
    staging_path,
)
from ..operations.images import (
    DEFAULT_PLATFORM,
    export_image_from_manifest,
    fetch_platform_manifest,
)
from ..operations.manifests import child_references, resolve_manifest
from ..tar.oci_layout import write_oci_layout
from ..tar.writer import write_docker_tar
from .auth import Credential
from .memory import MemoryGate, MemoryReader, sample_memory, system_memory
from .reference import ImageReference
from .registry_client import RegistryClient
from .types import Descriptor, Manifest, ManifestIndex, Platform, SyncConfig
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Blob transfers started by one sync_image call, keyed by
# (source repository, destination repository, digest)
InFlight = dict[tuple[str, str, str], asyncio.Future]

EXPORT_FORMATS = ("docker", "oci")


async def _run_with_timeout(coro: Coroutine[Any, Any, T], timeout: Optional[float]) -> T:
    if timeout is None:
        return await coro
    return await asyncio.wait_for(coro, timeout)


async def _gather_fail_fast(aws: list[Awaitable[T]]) -> list[T]:
    """Gather awaitables; on the first failure cancel the rest and wait for them."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ImageSynchronizer:
    """Copies images between registries through one memory-gated work queue.

    Blob transfers for every image handled by this instance share the
    queue, so in-flight transfers never exceed the queue's concurrency.
    Multi-platform indexes fan out into at most ``index_concurrency``
    concurrent child copies per index; if each child had its own queue the
    bound would be index_concurrency x concurrency.

    Usage::

        async with ImageSynchronizer(SyncConfig()) as syncer:
            await syncer.sync_image(source, destination, mode="tarball")
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        queue: Optional[WorkQueue] = None,
        gate: Optional[MemoryGate] = None,
        memory_reader: MemoryReader = sample_memory,
    ) -> None:
        self.config = config or SyncConfig()
        self.queue = queue or WorkQueue(
            self.config.concurrency,
            min_concurrency=self.config.min_concurrency,
            max_concurrency=self.config.max_concurrency,
            max_size=self.config.max_queue_size,
            memory_threshold=self.config.memory_threshold,
            adjust_interval=self.config.adjust_interval,
            memory_reader=memory_reader,
        )
        self.gate = gate or MemoryGate(
            threshold=self.config.memory_threshold,
            poll_interval=self.config.gate_poll_interval,
            memory_reader=memory_reader,
        )
        self._clients: dict[tuple[str, Optional[Credential]], RegistryClient] = {}

    async def __aenter__(self) -> "ImageSynchronizer":
        self.queue.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.queue.close()
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def client_for(self, ref: ImageReference) -> RegistryClient:
        """Shared client for the reference's registry and credential."""
        key = (ref.base_url, ref.credential)
        client = self._clients.get(key)
        if client is None:
            client = RegistryClient(ref.base_url, ref.credential, self.config.registry)
            await client.open()
            self._clients[key] = client
        return client

    def get_metrics(self) -> dict[str, Any]:
        """Queue depth, running jobs, concurrency and memory. No side effects."""
        metrics = self.queue.metrics()
        return {
            "queue_depth": metrics["queue_depth"],
            "pending": metrics["pending"],
            "concurrency": metrics["concurrency"],
            "process_memory": metrics["memory"],
            "system_memory": system_memory(),
        }

    async def sync_image(
        self,
        source: ImageReference,
        destination: ImageReference,
        mode: str = BUFFER_MODE,
        timeout: Optional[float] = None,
    ) -> str:
        """Copy one image (or a whole multi-platform index) to destination.

        Args:
            source: Image to copy
            destination: Where to publish it
            mode: "buffer" to stream blobs straight through, "tarball" to
                stage each blob in a temp file first
            timeout: Seconds for the whole call; defaults to config.timeout

        Returns:
            Digest of the republished manifest

        Raises:
            ValidationError: If mode is unknown
            RegistryError: Any failure; nothing is published at destination
                unless every blob made it
        """
        if mode not in SYNC_MODES:
            raise ValidationError(f"Unknown sync mode {mode!r}, expected one of {SYNC_MODES}")

        if timeout is None:
            timeout = self.config.timeout
        deadline = self.gate.deadline_after(timeout)
        staging_dir = self._make_staging_dir() if mode == TARBALL_MODE else None

        logger.info("Syncing %s -> %s (%s mode)", source, destination, mode)
        try:
            digest = await _run_with_timeout(
                self._sync(source, destination, mode, staging_dir, deadline), timeout
            )
        finally:
            if staging_dir is not None:
                self._remove_staging_dir(staging_dir)

        logger.info("Synced %s -> %s (%s)", source, destination, digest)
        return digest

    async def _sync(
        self,
        source: ImageReference,
        destination: ImageReference,
        mode: str,
        staging_dir: Optional[Path],
        deadline: Optional[float],
    ) -> str:
        inflight: InFlight = {}
        try:
            return await self._copy(source, destination, mode, staging_dir, deadline, inflight)
        except BaseException:
            await self.queue.cancel(list(inflight.values()))
            raise

    async def _copy(
        self,
        source: ImageReference,
        destination: ImageReference,
        mode: str,
        staging_dir: Optional[Path],
        deadline: Optional[float],
        inflight: InFlight,
    ) -> str:
        src_client = await self.client_for(source)
        dst_client = await self.client_for(destination)

        fetched = await src_client.get_manifest(source.repository, source.reference)
        resolved = resolve_manifest(fetched)

        if isinstance(resolved, ManifestIndex):
            await self._copy_index_children(
                resolved, source, destination, mode, staging_dir, deadline, inflight
            )
        else:
            await self._copy_blobs(
                resolved,
                src_client,
                dst_client,
                source,
                destination,
                mode,
                staging_dir,
                deadline,
                inflight,
            )

        logger.info("Publishing %s at %s", fetched.media_type or "manifest", destination)
        return await dst_client.put_manifest(
            destination.repository,
            destination.reference,
            fetched.raw,
            fetched.media_type,
        )

    async def _copy_index_children(
        self,
        index: ManifestIndex,
        source: ImageReference,
        destination: ImageReference,
        mode: str,
        staging_dir: Optional[Path],
        deadline: Optional[float],
        inflight: InFlight,
    ) -> None:
        # One limiter per index level, so nested indexes cannot starve each other
        limiter = asyncio.Semaphore(self.config.index_concurrency)

        async def copy_child(child_src: ImageReference, child_dst: ImageReference) -> str:
            async with limiter:
                return await self._copy(
                    child_src, child_dst, mode, staging_dir, deadline, inflight
                )

        children = child_references(index, source, destination)
        logger.info("Index %s has %d platform manifests", source, len(children))
        await _gather_fail_fast([copy_child(s, d) for s, d in children])

    async def _check_blob_sizes(
        self, client: RegistryClient, repository: str, blobs: list[Descriptor]
    ) -> None:
        max_size = self.config.max_blob_size
        sizes = await _gather_fail_fast(
            [client.head_blob_size(repository, blob.digest) for blob in blobs]
        )
        for blob, size in zip(blobs, sizes):
            if size > max_size:
                raise BlobTooLargeError(
                    f"Blob {blob.digest} is {size} bytes, limit is {max_size}",
                    repository=repository,
                    digest=blob.digest,
                )

    async def _copy_blobs(
        self,
        manifest: Manifest,
        src_client: RegistryClient,
        dst_client: RegistryClient,
        source: ImageReference,
        destination: ImageReference,
        mode: str,
        staging_dir: Optional[Path],
        deadline: Optional[float],
        inflight: InFlight,
    ) -> None:
        blobs = manifest.blobs()
        if self.config.max_blob_size is not None:
            await self._check_blob_sizes(src_client, source.repository, blobs)

        # One transfer per blob per sync_image call, shared by sibling index
        # children. Children await it shielded; only _sync cancels it.
        futures: list[asyncio.Future] = []
        for blob in blobs:
            key = (source.repository, destination.repository, blob.digest)
            future = inflight.get(key)
            if future is None:
                transfer = BlobTransfer(
                    source=src_client,
                    destination=dst_client,
                    source_repository=source.repository,
                    destination_repository=destination.repository,
                    descriptor=blob,
                    gate=self.gate,
                    mode=mode,
                    staging_dir=staging_dir,
                    deadline=deadline,
                    verify_digest=self.config.verify_digests,
                    skip_existing=self.config.skip_existing,
                )
                future = inflight[key] = self.queue.enqueue(transfer.run)
            futures.append(future)
        await asyncio.gather(*(asyncio.shield(future) for future in futures))

    async def save_image(
        self,
        source: ImageReference,
        output: Union[str, Path],
        format: str = "docker",
        use_gzip: Optional[bool] = None,
        platform: Platform = DEFAULT_PLATFORM,
        tag: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Path:
        """Pull an image and write it as a docker tarball or an OCI layout.

        Blobs are staged on disk through the work queue, never held in
        memory as a whole.

        Args:
            source: Image to pull; indexes resolve to the given platform
            output: Tarball path ("docker") or layout directory ("oci")
            format: "docker" or "oci"
            use_gzip: OCI layer compression, see write_oci_layout
            platform: Platform picked from a multi-platform index
            tag: Tag recorded in the export; defaults to the source tag
            timeout: Seconds for the whole call; defaults to config.timeout

        Returns:
            Path of the written export
        """
        if format not in EXPORT_FORMATS:
            raise ValidationError(f"Unknown export format {format!r}, expected one of {EXPORT_FORMATS}")

        if timeout is None:
            timeout = self.config.timeout
        deadline = self.gate.deadline_after(timeout)
        staging_dir = self._make_staging_dir()
        try:
            return await _run_with_timeout(
                self._save(source, Path(output), format, use_gzip, platform, tag, staging_dir, deadline),
                timeout,
            )
        finally:
            self._remove_staging_dir(staging_dir)

    async def _save(
        self,
        source: ImageReference,
        output: Path,
        format: str,
        use_gzip: Optional[bool],
        platform: Platform,
        tag: Optional[str],
        staging_dir: Path,
        deadline: Optional[float],
    ) -> Path:
        client = await self.client_for(source)
        _, manifest = await fetch_platform_manifest(
            client, source.repository, source.reference, platform
        )
        if tag is None:
            tag = "latest" if source.is_digest else source.reference

        async def stage(blob: Descriptor) -> int:
            await self.gate.wait(deadline=deadline)
            return await download_blob(
                client,
                source.repository,
                blob,
                staging_path(staging_dir, blob.digest),
                verify=self.config.verify_digests,
            )

        futures: list[asyncio.Future] = []
        try:
            for blob in manifest.blobs():
                futures.append(self.queue.enqueue(functools.partial(stage, blob)))
            await asyncio.gather(*futures)
        except BaseException:
            await self.queue.cancel(futures)
            raise

        image = export_image_from_manifest(manifest, staging_dir, source.repository, tag)
        loop = asyncio.get_running_loop()
        if format == "oci":
            await loop.run_in_executor(None, write_oci_layout, image, output, use_gzip)
        else:
            await loop.run_in_executor(None, write_docker_tar, image, output)

        logger.info("Saved %s as %s export at %s", source, format, output)
        return output

    def _make_staging_dir(self) -> Path:
        return Path(tempfile.mkdtemp(prefix="registry-sync-", dir=self.config.temp_dir))

    def _remove_staging_dir(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            error = TempFileCleanupError(f"Could not remove staging dir {path}: {e}")
            logger.warning("%s", error)
