"""
Resolved, platform-filtered view of a game version.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ArtifactKind(str, Enum):
    DESCRIPTOR = "descriptor"
    CLIENT = "client"
    LIBRARY = "library"
    NATIVE = "native"
    ASSET_INDEX = "asset_index"
    ASSET = "asset"


@dataclass(frozen=True)
class Artifact:
    """
    One downloadable file.

    Identity is the logical path (relative to the game directory, always with
    forward slashes); two artifacts with the same digest hold the same content.
    """

    path: str
    url: str
    sha1: str
    size: Optional[int]
    kind: ArtifactKind

    def __post_init__(self):
        if not self.path or self.path.startswith("/") or ".." in self.path.split("/"):
            raise ValueError(f"Invalid artifact path: {self.path!r}")


@dataclass(frozen=True)
class VersionDescriptor:
    """Everything needed to run one version on one platform."""

    id: str
    type: str
    main_class: str
    assets_id: str
    artifacts: tuple[Artifact, ...]
    java_major_version: Optional[int] = None

    def by_kind(self, *kinds: ArtifactKind) -> list[Artifact]:
        return [a for a in self.artifacts if a.kind in kinds]

    @property
    def total_size(self) -> int:
        return sum(a.size or 0 for a in self.artifacts)
