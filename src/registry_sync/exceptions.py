"""Custom exceptions for registry synchronization."""


class RegistryError(Exception):
    """Base exception for all registry-related errors.

    Carries the repository and digest the failure relates to, when known,
    so callers of a whole-image sync can tell which blob broke it.
    """

    def __init__(
        self,
        message: str,
        *,
        repository: str | None = None,
        digest: str | None = None,
    ) -> None:
        super().__init__(message)
        self.repository = repository
        self.digest = digest


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    pass


class ValidationError(RegistryError):
    """Raised when an argument or reference is malformed."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class ManifestNotFoundError(ManifestError):
    """Raised when the source manifest endpoint answers non-2xx."""

    pass


class ManifestPushRejectedError(ManifestError):
    """Raised when the destination refuses a manifest PUT."""

    pass


class BlobError(RegistryError):
    """Base for blob transfer failures."""

    pass


class BlobPullError(BlobError):
    """Raised when a blob cannot be pulled from the source."""

    pass


class MissingRedirectLocationError(BlobPullError):
    """Raised when a 302/307 blob response has no Location header."""

    pass


class UnexpectedStatusError(BlobPullError):
    """Raised when a blob GET answers with an unsupported status."""

    def __init__(self, message: str, *, status: int, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class UnknownBlobSizeError(BlobError):
    """Raised when a HEAD probe gives no usable Content-Length."""

    pass


class BlobTooLargeError(BlobError):
    """Raised when a blob exceeds the configured maximum size."""

    pass


class DigestMismatchError(BlobError):
    """Raised when staged bytes do not hash to the declared digest."""

    pass


class BlobUploadError(BlobError):
    """Raised when blob upload fails."""

    pass


class UploadSessionRejectedError(BlobUploadError):
    """Raised when the registry refuses to open an upload session."""

    pass


class BlobPushRejectedError(BlobUploadError):
    """Raised when the final upload PUT does not answer 201."""

    pass


class QueueOverflowError(RegistryError):
    """Raised when the work queue is full. Retry later."""

    pass


class MemoryGateAbortError(RegistryError):
    """Raised when waiting for memory headroom is aborted or times out."""

    pass


class TempFileCleanupError(RegistryError):
    """Temporary staging file could not be removed. Logged, never raised."""

    pass


class ExportError(RegistryError):
    """Raised when writing a docker tarball or OCI layout fails."""

    pass
