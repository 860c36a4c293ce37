"""Data models for local image exports."""

from dataclasses import dataclass
from pathlib import Path
from typing import List


@dataclass
class ExportLayer:
    """Layer blob staged on disk."""

    digest: str
    size: int
    media_type: str
    path: Path


@dataclass
class ExportImage:
    """Image pulled to local files, ready to be written out."""

    repository: str
    tag: str
    config_digest: str
    config_path: Path
    layers: List[ExportLayer]
