"""
Pydantic models for the remote JSON documents consumed by the resolver:
the top-level version manifest, version descriptors and asset indexes.

Only the fields the launcher reads are declared; everything else in the
documents is ignored. Missing or mistyped declared fields fail validation.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Document(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LatestVersions(_Document):
    release: str
    snapshot: str


class ManifestEntry(_Document):
    id: str
    type: str
    url: str
    sha1: Optional[str] = None
    release_time: Optional[str] = Field(default=None, alias="releaseTime")


class VersionManifest(_Document):
    latest: LatestVersions
    versions: list[ManifestEntry]

    def find(self, version_id: str) -> Optional[ManifestEntry]:
        for entry in self.versions:
            if entry.id == version_id:
                return entry
        return None


class DownloadInfo(_Document):
    url: str
    sha1: str
    size: int = Field(ge=0)
    path: Optional[str] = None


class OsRule(_Document):
    name: Optional[str] = None
    arch: Optional[str] = None
    version: Optional[str] = None


class Rule(_Document):
    action: Literal["allow", "disallow"]
    os: Optional[OsRule] = None
    features: Optional[dict[str, bool]] = None


class LibraryDownloads(_Document):
    artifact: Optional[DownloadInfo] = None
    classifiers: Optional[dict[str, DownloadInfo]] = None


class Library(_Document):
    name: str
    downloads: LibraryDownloads
    rules: Optional[list[Rule]] = None
    natives: Optional[dict[str, str]] = None


class AssetIndexRef(_Document):
    id: str
    url: str
    sha1: str
    size: int = Field(ge=0)
    total_size: Optional[int] = Field(default=None, alias="totalSize")


class VersionDownloads(_Document):
    client: DownloadInfo


class JavaVersion(_Document):
    component: Optional[str] = None
    major_version: int = Field(alias="majorVersion")


class VersionJson(_Document):
    id: str
    type: str
    main_class: str = Field(alias="mainClass")
    downloads: VersionDownloads
    libraries: list[Library]
    asset_index: AssetIndexRef = Field(alias="assetIndex")
    assets: Optional[str] = None
    java_version: Optional[JavaVersion] = Field(default=None, alias="javaVersion")


class AssetObject(_Document):
    hash: str = Field(pattern=r"^[0-9a-fA-F]{40}$")
    size: int = Field(ge=0)


class AssetIndexDocument(_Document):
    objects: dict[str, AssetObject]
