"""Legacy `docker save` tarball writer."""

import io
import json
import tarfile
from pathlib import Path
from typing import Union

from ..exceptions import ExportError
from ..utils.digest import digest_hex
from .models import ExportImage

LAYER_VERSION = b"1.0"


def layer_id(digest: str) -> str:
    """Directory name for a layer: first 12 hex characters of its digest."""
    return digest_hex(digest)[:12]


def _add_bytes(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    tar.addfile(info, fileobj=io.BytesIO(content))


def write_docker_tar(image: ExportImage, output_path: Union[str, Path]) -> Path:
    """Write an image as a legacy docker tarball loadable by `docker load`.

    Layer files are streamed from disk into the archive as-is.

    Args:
        image: Staged image
        output_path: Tarball to create

    Returns:
        Path of the written tarball

    Raises:
        ExportError: If the archive cannot be written
    """
    output_path = Path(output_path)
    layer_paths = []
    written: set[str] = set()
    parent = None

    try:
        with tarfile.open(output_path, "w") as tar:
            for layer in image.layers:
                lid = layer_id(layer.digest)
                layer_paths.append(f"{lid}/layer.tar")
                if lid in written:
                    # Repeated layer: listed again in Layers, stored once
                    continue
                written.add(lid)

                layer_json = {"id": lid}
                if parent:
                    layer_json["parent"] = parent

                _add_bytes(tar, f"{lid}/VERSION", LAYER_VERSION)
                _add_bytes(tar, f"{lid}/json", json.dumps(layer_json).encode("utf-8"))
                tar.add(str(layer.path), arcname=f"{lid}/layer.tar")
                parent = lid

            config_filename = f"{digest_hex(image.config_digest)}.json"
            tar.add(str(image.config_path), arcname=config_filename)

            manifest = [
                {
                    "Config": config_filename,
                    "RepoTags": [f"{image.repository}:{image.tag}"],
                    "Layers": layer_paths,
                }
            ]
            _add_bytes(tar, "manifest.json", json.dumps(manifest, indent=2).encode("utf-8"))

            repositories = {image.repository: {image.tag: parent or ""}}
            _add_bytes(
                tar, "repositories", json.dumps(repositories, indent=2).encode("utf-8")
            )
    except (OSError, tarfile.TarError) as e:
        raise ExportError(f"Failed to write docker tarball {output_path}: {e}") from e

    return output_path
