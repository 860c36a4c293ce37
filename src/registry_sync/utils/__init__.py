"""Utility functions for registry synchronization."""

from .compression import (
    file_is_gzip,
    gzip_compress,
    gzip_compress_file,
    gzip_decompress,
    gzip_decompress_file,
    is_gzip,
)
from .digest import (
    calculate_digest,
    calculate_file_digest,
    calculate_stream_digest,
    digest_hex,
    safe_filename,
    validate_digest,
    verify_digest,
)

__all__ = [
    "calculate_digest",
    "calculate_file_digest",
    "calculate_stream_digest",
    "digest_hex",
    "file_is_gzip",
    "gzip_compress",
    "gzip_compress_file",
    "gzip_decompress",
    "gzip_decompress_file",
    "is_gzip",
    "safe_filename",
    "validate_digest",
    "verify_digest",
]
