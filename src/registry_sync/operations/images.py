"""Image-level helpers used when exporting an image to local files."""

import logging
from pathlib import Path

from ..core.registry_client import RegistryClient
from ..core.types import FetchedManifest, Manifest, Platform
from ..tar.models import ExportImage, ExportLayer
from ..utils.digest import safe_filename
from .manifests import parse_manifest, resolve_manifest, select_platform

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = Platform(os="linux", architecture="amd64")


async def fetch_platform_manifest(
    client: RegistryClient,
    repository: str,
    reference: str,
    platform: Platform = DEFAULT_PLATFORM,
) -> tuple[FetchedManifest, Manifest]:
    """Fetch a concrete manifest, descending into an index for one platform."""
    fetched = await client.get_manifest(repository, reference)
    resolved = resolve_manifest(fetched)
    if isinstance(resolved, Manifest):
        return fetched, resolved

    entry = select_platform(
        resolved, platform.os, platform.architecture, platform.variant
    )
    logger.info("Selected %s manifest %s from index", platform, entry.digest)
    child = await client.get_manifest(repository, entry.digest)
    return child, parse_manifest(child.document, child.media_type)


def export_image_from_manifest(
    manifest: Manifest, staging_dir: Path, repository: str, tag: str
) -> ExportImage:
    """Describe where each blob of manifest lands in staging_dir."""
    layers = [
        ExportLayer(
            digest=layer.digest,
            size=layer.size,
            media_type=layer.media_type,
            path=staging_dir / safe_filename(layer.digest),
        )
        for layer in manifest.layers
        if not layer.is_foreign
    ]
    return ExportImage(
        repository=repository,
        tag=tag,
        config_digest=manifest.config.digest,
        config_path=staging_dir / safe_filename(manifest.config.digest),
        layers=layers,
    )
