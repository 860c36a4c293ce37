"""Per-blob transfer jobs: pull from source, push to destination."""

import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles

from ..core.memory import MemoryGate
from ..core.registry_client import RegistryClient
from ..core.types import Descriptor
from ..exceptions import DigestMismatchError, TempFileCleanupError
from ..utils.digest import calculate_file_digest, safe_filename

logger = logging.getLogger(__name__)

BUFFER_MODE = "buffer"
TARBALL_MODE = "tarball"
SYNC_MODES = (BUFFER_MODE, TARBALL_MODE)

FILE_CHUNK_SIZE = 1024 * 1024


class TransferState(str, enum.Enum):
    PENDING = "pending"
    MEMORY_GATED = "memory_gated"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


def staging_path(staging_dir: Path, digest: str) -> Path:
    return staging_dir / safe_filename(digest)


def remove_temp_file(path: Path) -> None:
    """Best-effort removal of a staging file; failures are only logged."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        error = TempFileCleanupError(f"Could not remove temp file {path}: {e}")
        logger.warning("%s", error)


async def read_file_chunks(
    path: Path, chunk_size: int = FILE_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


async def download_blob(
    client: RegistryClient,
    repository: str,
    descriptor: Descriptor,
    path: Path,
    verify: bool = False,
) -> int:
    """Drain a blob into a local file.

    Args:
        client: Source registry client
        repository: Source repository
        descriptor: Blob to fetch
        path: Destination file, overwritten
        verify: Re-hash the file and compare against the descriptor digest

    Returns:
        Number of bytes written

    Raises:
        DigestMismatchError: If verify is set and the bytes do not match
    """
    written = 0
    async with await client.pull_blob_stream(repository, descriptor.digest) as handle:
        async with aiofiles.open(path, "wb") as f:
            async for chunk in handle:
                await f.write(chunk)
                written += len(chunk)

    if verify:
        loop = asyncio.get_running_loop()
        actual = await loop.run_in_executor(None, calculate_file_digest, path)
        if actual != descriptor.digest:
            raise DigestMismatchError(
                f"Blob {descriptor.digest} hashed to {actual}",
                repository=repository,
                digest=descriptor.digest,
            )
    return written


@dataclass
class BlobTransfer:
    """One blob copy, driven Pending -> MemoryGated -> InFlight -> Done/Failed.

    In buffer mode the pull stream is piped straight into the push request,
    so the push side's writes pace the reads. In tarball mode the blob is
    drained to a temp file first and pushed from disk; the file is removed
    whether or not the push succeeds.
    """

    source: RegistryClient
    destination: RegistryClient
    source_repository: str
    destination_repository: str
    descriptor: Descriptor
    gate: MemoryGate
    mode: str = BUFFER_MODE
    staging_dir: Optional[Path] = None
    deadline: Optional[float] = None
    verify_digest: bool = False
    skip_existing: bool = False
    state: TransferState = TransferState.PENDING

    def _set_state(self, state: TransferState) -> None:
        logger.debug("Blob %s: %s -> %s", self.descriptor.digest, self.state.value, state.value)
        self.state = state

    async def run(self) -> Descriptor:
        try:
            self._set_state(TransferState.MEMORY_GATED)
            await self.gate.wait(deadline=self.deadline)
            self._set_state(TransferState.IN_FLIGHT)
            if self.skip_existing and await self.destination.blob_exists(
                self.destination_repository, self.descriptor.digest
            ):
                logger.info("Blob %s already present, skipping", self.descriptor.digest)
            elif self.mode == TARBALL_MODE:
                await self._staged_copy()
            else:
                await self._streamed_copy()
        except (Exception, asyncio.CancelledError):
            self._set_state(TransferState.FAILED)
            raise
        self._set_state(TransferState.DONE)
        return self.descriptor

    async def _streamed_copy(self) -> None:
        digest = self.descriptor.digest
        async with await self.source.pull_blob_stream(self.source_repository, digest) as handle:
            size = handle.size or self.descriptor.size
            await self.destination.push_blob_stream(
                self.destination_repository, digest, handle, size
            )

    async def _staged_copy(self) -> None:
        if self.staging_dir is None:
            raise ValueError("tarball mode requires a staging directory")
        path = staging_path(self.staging_dir, self.descriptor.digest)
        try:
            size = await download_blob(
                self.source,
                self.source_repository,
                self.descriptor,
                path,
                verify=self.verify_digest,
            )
            await self.destination.push_blob_stream(
                self.destination_repository,
                self.descriptor.digest,
                read_file_chunks(path),
                size,
            )
        finally:
            remove_temp_file(path)
