"""Gzip detection and encode/decode helpers for layer blobs."""

import gzip
import shutil
from pathlib import Path
from typing import Union

GZIP_MAGIC = b"\x1f\x8b"

COPY_BUFFER_SIZE = 1024 * 1024


def is_gzip(data: Union[bytes, bytearray]) -> bool:
    """Check the gzip magic bytes at the start of data."""
    return len(data) >= 2 and data[0] == 0x1F and data[1] == 0x8B


def file_is_gzip(path: Union[str, Path]) -> bool:
    """Check whether a file starts with the gzip magic bytes."""
    with open(path, "rb") as f:
        return is_gzip(f.read(2))


def gzip_compress(data: Union[bytes, bytearray]) -> bytes:
    return gzip.compress(bytes(data), mtime=0)


def gzip_decompress(data: Union[bytes, bytearray]) -> bytes:
    return gzip.decompress(bytes(data))


def gzip_compress_file(src: Union[str, Path], dst: Union[str, Path]) -> None:
    """Compress src into dst without loading it into memory."""
    with open(src, "rb") as fin, gzip.GzipFile(dst, "wb", mtime=0) as fout:
        shutil.copyfileobj(fin, fout, COPY_BUFFER_SIZE)


def gzip_decompress_file(src: Union[str, Path], dst: Union[str, Path]) -> None:
    """Decompress src into dst without loading it into memory."""
    with gzip.open(src, "rb") as fin, open(dst, "wb") as fout:
        shutil.copyfileobj(fin, fout, COPY_BUFFER_SIZE)
