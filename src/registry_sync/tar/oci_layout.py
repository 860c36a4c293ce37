"""OCI image layout writer (oci-layout, blobs/sha256, index.json)."""

import json
import os
import shutil
import uuid
from pathlib import Path
from typing import Any, Optional, Union

from ..core.media_types import OCI_CONFIG, OCI_INDEX, OCI_LAYER, OCI_LAYER_GZIP, OCI_MANIFEST
from ..exceptions import ExportError
from ..utils.compression import file_is_gzip, gzip_compress_file, gzip_decompress_file
from ..utils.digest import calculate_digest, calculate_file_digest, digest_hex
from .models import ExportImage, ExportLayer

LAYOUT_VERSION = "1.0.0"
REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"


class _BlobStore:
    """blobs/sha256 directory of an OCI layout."""

    def __init__(self, root: Path) -> None:
        self.dir = root / "blobs" / "sha256"
        self.dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, digest: str) -> Path:
        return self.dir / digest_hex(digest)

    def copy(self, src: Path, digest: str) -> None:
        """Store trusted upstream bytes under their known digest."""
        shutil.copyfile(src, self.path_for(digest))

    def write_bytes(self, data: bytes) -> tuple[str, int]:
        digest = calculate_digest(data)
        self.path_for(digest).write_bytes(data)
        return digest, len(data)

    def temp_path(self) -> Path:
        return self.dir / f".tmp-{uuid.uuid4().hex}"

    def commit(self, tmp: Path) -> tuple[str, int]:
        """Hash a freshly produced file and move it to its content address."""
        digest = calculate_file_digest(tmp)
        size = tmp.stat().st_size
        os.replace(tmp, self.path_for(digest))
        return digest, size


def _write_layer(store: _BlobStore, layer: ExportLayer, use_gzip: Optional[bool]) -> dict[str, Any]:
    """Store one layer, normalising its compression.

    Media type always follows the bytes actually written: gzip input is
    never compressed twice, and use_gzip=False yields a plain tar.
    """
    already_gzip = file_is_gzip(layer.path)
    want_gzip = use_gzip is None or use_gzip

    if want_gzip == already_gzip:
        store.copy(layer.path, layer.digest)
        digest, size = layer.digest, layer.size
    else:
        tmp = store.temp_path()
        try:
            if want_gzip:
                gzip_compress_file(layer.path, tmp)
            else:
                gzip_decompress_file(layer.path, tmp)
            digest, size = store.commit(tmp)
        finally:
            tmp.unlink(missing_ok=True)

    return {
        "mediaType": OCI_LAYER_GZIP if want_gzip else OCI_LAYER,
        "digest": digest,
        "size": size,
    }


def write_oci_layout(
    image: ExportImage,
    output_dir: Union[str, Path],
    use_gzip: Optional[bool] = None,
) -> dict[str, Any]:
    """Write an image as an OCI image layout directory.

    Args:
        image: Staged image
        output_dir: Layout root, created if missing
        use_gzip: None or True for gzip layers, False for plain tar layers

    Returns:
        The index.json document

    Raises:
        ExportError: If the layout cannot be written
    """
    root = Path(output_dir)
    try:
        root.mkdir(parents=True, exist_ok=True)
        (root / "oci-layout").write_text(
            json.dumps({"imageLayoutVersion": LAYOUT_VERSION}), encoding="utf-8"
        )
        store = _BlobStore(root)

        store.copy(image.config_path, image.config_digest)
        config_size = image.config_path.stat().st_size
        layers = [_write_layer(store, layer, use_gzip) for layer in image.layers]

        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": {
                "mediaType": OCI_CONFIG,
                "digest": image.config_digest,
                "size": config_size,
            },
            "layers": layers,
        }
        manifest_digest, manifest_size = store.write_bytes(
            json.dumps(manifest, indent=2).encode("utf-8")
        )

        index = {
            "schemaVersion": 2,
            "mediaType": OCI_INDEX,
            "manifests": [
                {
                    "mediaType": OCI_MANIFEST,
                    "digest": manifest_digest,
                    "size": manifest_size,
                    "annotations": {REF_NAME_ANNOTATION: image.tag},
                }
            ],
        }
        (root / "index.json").write_text(json.dumps(index, indent=2), encoding="utf-8")
    except (OSError, EOFError) as e:
        raise ExportError(f"Failed to write OCI layout {root}: {e}") from e

    return index
