"""Registry Sync - replicate container images between OCI/Docker registries."""

__version__ = "0.1.0"

from .core.auth import Credential, resolve_credential
from .core.memory import MemoryGate, sample_memory
from .core.reference import ImageReference, parse_image_reference, parse_repository_tag
from .core.registry_client import RegistryClient
from .core.synchronizer import ImageSynchronizer
from .core.types import Descriptor, Manifest, ManifestIndex, RegistryConfig, SyncConfig
from .core.work_queue import WorkQueue
from .exceptions import (
    BlobPullError,
    BlobPushRejectedError,
    BlobTooLargeError,
    BlobUploadError,
    DigestMismatchError,
    ExportError,
    ManifestError,
    ManifestNotFoundError,
    ManifestPushRejectedError,
    MemoryGateAbortError,
    MissingRedirectLocationError,
    QueueOverflowError,
    RegistryConnectionError,
    RegistryError,
    TempFileCleanupError,
    UnexpectedStatusError,
    UnknownBlobSizeError,
    UploadSessionRejectedError,
    ValidationError,
)
from .sync import check_registry_connectivity, save_image, sync_image, tag_image

__all__ = [
    "BlobPullError",
    "BlobPushRejectedError",
    "BlobTooLargeError",
    "BlobUploadError",
    "Credential",
    "Descriptor",
    "DigestMismatchError",
    "ExportError",
    "ImageReference",
    "ImageSynchronizer",
    "Manifest",
    "ManifestError",
    "ManifestIndex",
    "ManifestNotFoundError",
    "ManifestPushRejectedError",
    "MemoryGate",
    "MemoryGateAbortError",
    "MissingRedirectLocationError",
    "QueueOverflowError",
    "RegistryClient",
    "RegistryConfig",
    "RegistryConnectionError",
    "RegistryError",
    "SyncConfig",
    "TempFileCleanupError",
    "UnexpectedStatusError",
    "UnknownBlobSizeError",
    "UploadSessionRejectedError",
    "ValidationError",
    "WorkQueue",
    "check_registry_connectivity",
    "parse_image_reference",
    "parse_repository_tag",
    "resolve_credential",
    "sample_memory",
    "save_image",
    "sync_image",
    "tag_image",
]
