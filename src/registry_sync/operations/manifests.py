"""Manifest classification: concrete image manifest vs. multi-platform index."""

from typing import Any, Union

from ..core.media_types import INDEX_MEDIA_TYPES
from ..core.reference import ImageReference
from ..core.types import Descriptor, FetchedManifest, Manifest, ManifestIndex
from ..exceptions import ManifestError


def is_index_media_type(media_type: str) -> bool:
    """Check if media type is a manifest list or image index."""
    return media_type in INDEX_MEDIA_TYPES


def parse_index(document: dict[str, Any], media_type: str) -> ManifestIndex:
    try:
        entries = tuple(Descriptor.from_dict(m) for m in document.get("manifests", []))
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"Malformed manifest index entry: {e}") from e
    return ManifestIndex(
        schema_version=document.get("schemaVersion", 2),
        media_type=media_type,
        manifests=entries,
    )


def parse_manifest(document: dict[str, Any], media_type: str) -> Manifest:
    if "config" not in document:
        raise ManifestError(
            f"Unsupported manifest ({media_type or 'no media type'}): missing config"
        )
    try:
        config = Descriptor.from_dict(document["config"])
        layers = tuple(Descriptor.from_dict(layer) for layer in document.get("layers", []))
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"Malformed manifest descriptor: {e}") from e
    return Manifest(
        schema_version=document.get("schemaVersion", 2),
        media_type=media_type,
        config=config,
        layers=layers,
    )


def resolve_manifest(fetched: FetchedManifest) -> Union[Manifest, ManifestIndex]:
    """Dispatch on the fetched Content-Type.

    Args:
        fetched: Manifest as returned by RegistryClient.get_manifest

    Returns:
        ManifestIndex for list/index media types, Manifest otherwise

    Raises:
        ManifestError: If a concrete manifest lacks a config descriptor
    """
    if is_index_media_type(fetched.media_type):
        return parse_index(fetched.document, fetched.media_type)
    return parse_manifest(fetched.document, fetched.media_type)


def child_references(
    index: ManifestIndex, source: ImageReference, destination: ImageReference
) -> list[tuple[ImageReference, ImageReference]]:
    """Pair up source/destination references for every index entry, by digest."""
    return [
        (source.with_reference(entry.digest), destination.with_reference(entry.digest))
        for entry in index.manifests
    ]


def select_platform(
    index: ManifestIndex,
    os: str = "linux",
    architecture: str = "amd64",
    variant: str | None = None,
) -> Descriptor:
    """Pick the index entry for a platform.

    Raises:
        ManifestError: If no entry matches
    """
    for entry in index.manifests:
        if entry.platform and entry.platform.matches(os, architecture, variant):
            return entry
    wanted = "/".join(p for p in (os, architecture, variant) if p)
    raise ManifestError(f"No manifest for platform {wanted} in index")
