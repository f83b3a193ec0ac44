"""
Turns a version id into the complete, platform-filtered list of files needed
to run it.
"""

import asyncio
import json
import logging
import re
from collections.abc import Collection
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from mclaunch_cli.api.client import ServicesClient
from mclaunch_cli.exceptions import (
    ApiResponseError,
    DescriptorError,
    ManifestUnavailableError,
    VersionNotFoundError,
)
from mclaunch_cli.models.config import DEFAULT_MANIFEST_URL
from mclaunch_cli.models.manifest import (
    AssetIndexDocument,
    Library,
    LatestVersions,
    ManifestEntry,
    Rule,
    VersionJson,
    VersionManifest,
)
from mclaunch_cli.models.version import Artifact, ArtifactKind, VersionDescriptor
from mclaunch_cli.storage.cache import CacheManager
from mclaunch_cli.transfer.integrity import IntegrityVerifier
from mclaunch_cli.utils.formatting import format_size
from mclaunch_cli.utils.platform import PlatformInfo
from mclaunch_cli.utils.retry import RetryPolicy, is_transient

log = logging.getLogger(__name__)

ASSET_BASE_URL = "https://resources.download.minecraft.net"
LATEST_ALIASES = ("release", "snapshot")


def rule_matches(rule: Rule, platform: PlatformInfo) -> bool:
    """Whether a single rule's conditions hold on ``platform``."""
    # Feature flags (demo mode, custom resolution...) are never enabled here.
    if rule.features:
        return False
    if rule.os is None:
        return True
    if rule.os.name is not None and rule.os.name != platform.os_name:
        return False
    if rule.os.arch is not None and rule.os.arch != platform.arch:
        return False
    if rule.os.version is not None:
        try:
            if not re.search(rule.os.version, platform.os_version):
                return False
        except re.error as e:
            raise DescriptorError(
                f"Invalid OS version pattern {rule.os.version!r}: {e}"
            ) from e
    return True


def rules_allow(rules: Optional[list[Rule]], platform: PlatformInfo) -> bool:
    """
    Evaluates a rule list: no list means allowed; otherwise the entry starts
    disallowed and the last matching rule decides.
    """
    if rules is None:
        return True
    allowed = False
    for rule in rules:
        if rule_matches(rule, platform):
            allowed = rule.action == "allow"
    return allowed


def maven_path(name: str, classifier: Optional[str] = None) -> str:
    """
    Maps a Maven coordinate to its repository path.

    ``org.lwjgl:lwjgl:3.3.3:natives-linux`` ->
    ``org/lwjgl/lwjgl/3.3.3/lwjgl-3.3.3-natives-linux.jar``
    """
    coordinate, _, extension = name.partition("@")
    parts = coordinate.split(":")
    if len(parts) < 3 or not all(parts):
        raise DescriptorError(f"Malformed library name: {name!r}")
    group, artifact, version = parts[:3]
    if classifier is None and len(parts) > 3:
        classifier = parts[3]
    file_name = f"{artifact}-{version}"
    if classifier:
        file_name += f"-{classifier}"
    file_name += f".{extension or 'jar'}"
    return "/".join([*group.split("."), artifact, version, file_name])


def check_path_segment(value: str, what: str) -> str:
    """Rejects ids that would leave their directory when used as a path segment."""
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise DescriptorError(f"Unsafe {what}: {value!r}")
    return value


def asset_artifact(obj_hash: str, size: int) -> Artifact:
    obj_hash = obj_hash.lower()
    return Artifact(
        path=f"assets/objects/{obj_hash[:2]}/{obj_hash}",
        url=f"{ASSET_BASE_URL}/{obj_hash[:2]}/{obj_hash}",
        sha1=obj_hash,
        size=size,
        kind=ArtifactKind.ASSET,
    )


class AssetResolver:
    """
    Expands a version into a ``VersionDescriptor``.

    The top-level manifest is cached with a TTL; the version descriptor and the
    asset index are read from the local game directory when a copy with the
    expected digest is already there. The resolver never writes into the game
    directory.
    """

    def __init__(
        self,
        client: ServicesClient,
        game_dir: Path,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[CacheManager] = None,
        manifest_url: str = DEFAULT_MANIFEST_URL,
    ):
        self._client = client
        self.game_dir = game_dir
        self._retry = retry_policy or RetryPolicy()
        self._cache = cache
        self.manifest_url = manifest_url

    # Remote documents

    async def _fetch_bytes(self, url: str, what: str) -> bytes:
        try:
            return await self._retry.run(
                lambda: self._client.get_bytes(url), description=f"Fetching {what}"
            )
        except ApiResponseError as e:
            raise ManifestUnavailableError(
                f"Could not fetch {what}: HTTP {e.status} from {url}"
            ) from e
        except Exception as e:
            if is_transient(e):
                raise ManifestUnavailableError(f"Could not fetch {what}: {e}") from e
            raise

    @staticmethod
    def _decode(raw: bytes, what: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as e:
            raise DescriptorError(f"{what} is not valid JSON: {e}") from e

    async def fetch_manifest(self) -> VersionManifest:
        """Returns the top-level version manifest, from the cache when fresh."""
        if self._cache is not None:
            cached = await asyncio.to_thread(self._cache.get, self.manifest_url)
            if cached is not None:
                try:
                    return VersionManifest.model_validate(cached)
                except ValidationError:
                    log.debug("Cached version manifest is invalid, refetching.")

        log.info("Fetching version manifest...")
        data = self._decode(
            await self._fetch_bytes(self.manifest_url, "the version manifest"),
            "The version manifest",
        )
        try:
            manifest = VersionManifest.model_validate(data)
        except ValidationError as e:
            raise DescriptorError(f"Malformed version manifest: {e}") from e
        if self._cache is not None:
            await asyncio.to_thread(self._cache.set, self.manifest_url, data)
        return manifest

    async def list_versions(
        self,
        types: Optional[Collection[str]] = None,
        text: Optional[str] = None,
    ) -> tuple[LatestVersions, list[ManifestEntry]]:
        """Manifest entries in manifest order, optionally filtered by type and id."""
        manifest = await self.fetch_manifest()
        entries = [
            entry
            for entry in manifest.versions
            if (not types or entry.type in types)
            and (not text or text.lower() in entry.id.lower())
        ]
        return manifest.latest, entries

    async def find_version(self, version_id: str) -> ManifestEntry:
        """
        Looks ``version_id`` up in the manifest, expanding the
        ``release``/``snapshot`` aliases to the latest ids.

        Raises:
            VersionNotFoundError: The id is not in the manifest.
        """
        manifest = await self.fetch_manifest()
        if version_id in LATEST_ALIASES:
            resolved_id = getattr(manifest.latest, version_id)
            log.info(f"Latest {version_id} is {resolved_id}")
            version_id = resolved_id

        entry = manifest.find(version_id)
        if entry is None:
            raise VersionNotFoundError(f"Version '{version_id}' does not exist.")
        return entry

    async def _read_local(self, relative: str, sha1: Optional[str]) -> Optional[bytes]:
        """Returns a local copy's content if it exists and matches ``sha1``."""
        if not sha1:
            return None
        path = self.game_dir / relative
        if not await asyncio.to_thread(IntegrityVerifier.verify_file, path, sha1):
            return None
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError:
            return None
        log.debug(f"Reusing local {relative}")
        return raw

    async def _load_document(
        self, relative: str, url: str, sha1: Optional[str], what: str
    ) -> bytes:
        raw = await self._read_local(relative, sha1)
        if raw is not None:
            return raw
        raw = await self._fetch_bytes(url, what)
        if sha1 and not IntegrityVerifier.verify(raw, sha1):
            raise DescriptorError(f"{what} from {url} does not match its published digest.")
        return raw

    # Resolution

    async def resolve(
        self, version_id: str, platform: Optional[PlatformInfo] = None
    ) -> VersionDescriptor:
        """
        Resolves ``version_id`` (or the ``release``/``snapshot`` aliases).

        Raises:
            VersionNotFoundError: The id is not in the manifest.
            ManifestUnavailableError: Remote metadata could not be fetched.
            DescriptorError: A document is malformed or fails its digest.
        """
        platform = platform or PlatformInfo.current()
        entry = await self.find_version(version_id)

        version_dir = check_path_segment(entry.id, "version id")
        descriptor_path = f"versions/{version_dir}/{version_dir}.json"
        raw_descriptor = await self._load_document(
            descriptor_path, entry.url, entry.sha1, f"the descriptor of {entry.id}"
        )
        try:
            version = VersionJson.model_validate(
                self._decode(raw_descriptor, f"The descriptor of {entry.id}")
            )
        except ValidationError as e:
            raise DescriptorError(f"Malformed descriptor for {entry.id}: {e}") from e

        index_ref = version.asset_index
        index_id = check_path_segment(index_ref.id, "asset index id")
        index_path = f"assets/indexes/{index_id}.json"
        raw_index = await self._load_document(
            index_path, index_ref.url, index_ref.sha1, f"asset index {index_ref.id}"
        )
        try:
            index = AssetIndexDocument.model_validate(
                self._decode(raw_index, f"Asset index {index_ref.id}")
            )
        except ValidationError as e:
            raise DescriptorError(f"Malformed asset index {index_ref.id}: {e}") from e

        try:
            artifacts = self._collect(
                entry, raw_descriptor, version, index_path, index, platform
            )
        except ValueError as e:
            raise DescriptorError(f"Invalid artifact in {entry.id}: {e}") from e

        descriptor = VersionDescriptor(
            id=version.id,
            type=version.type,
            main_class=version.main_class,
            assets_id=version.assets or index_ref.id,
            artifacts=tuple(artifacts),
            java_major_version=(
                version.java_version.major_version if version.java_version else None
            ),
        )
        log.info(
            f"Resolved {descriptor.id}: {len(descriptor.artifacts)} files "
            f"({format_size(descriptor.total_size)}) for {platform.os_name}/{platform.arch}"
        )
        return descriptor

    def _collect(
        self,
        entry: ManifestEntry,
        raw_descriptor: bytes,
        version: VersionJson,
        index_path: str,
        index: AssetIndexDocument,
        platform: PlatformInfo,
    ) -> list[Artifact]:
        candidates = [
            Artifact(
                path=f"versions/{entry.id}/{entry.id}.json",
                url=entry.url,
                sha1=entry.sha1 or IntegrityVerifier.digest(raw_descriptor),
                size=len(raw_descriptor),
                kind=ArtifactKind.DESCRIPTOR,
            ),
            Artifact(
                path=f"versions/{entry.id}/{entry.id}.jar",
                url=version.downloads.client.url,
                sha1=version.downloads.client.sha1,
                size=version.downloads.client.size,
                kind=ArtifactKind.CLIENT,
            ),
        ]
        for library in version.libraries:
            candidates.extend(self._library_artifacts(library, platform))

        index_ref = version.asset_index
        candidates.append(
            Artifact(
                path=index_path,
                url=index_ref.url,
                sha1=index_ref.sha1,
                size=index_ref.size,
                kind=ArtifactKind.ASSET_INDEX,
            )
        )
        for name in sorted(index.objects):
            obj = index.objects[name]
            candidates.append(asset_artifact(obj.hash, obj.size))

        artifacts: list[Artifact] = []
        seen: set[str] = set()
        for artifact in candidates:
            if artifact.path in seen:
                continue
            seen.add(artifact.path)
            artifacts.append(artifact)
        return artifacts

    @staticmethod
    def _library_artifacts(library: Library, platform: PlatformInfo) -> list[Artifact]:
        if not rules_allow(library.rules, platform):
            log.debug(f"Skipping library {library.name} (platform rules)")
            return []

        artifacts = []
        main = library.downloads.artifact
        if main is not None:
            artifacts.append(
                Artifact(
                    path="libraries/" + (main.path or maven_path(library.name)),
                    url=main.url,
                    sha1=main.sha1,
                    size=main.size,
                    kind=(
                        ArtifactKind.NATIVE
                        if ":natives-" in library.name
                        else ArtifactKind.LIBRARY
                    ),
                )
            )

        if library.natives:
            classifier = library.natives.get(platform.os_name)
            if classifier:
                classifier = classifier.replace("${arch}", platform.bits)
                info = (library.downloads.classifiers or {}).get(classifier)
                if info is None:
                    raise DescriptorError(
                        f"Library {library.name} has no '{classifier}' native download."
                    )
                artifacts.append(
                    Artifact(
                        path="libraries/"
                        + (info.path or maven_path(library.name, classifier)),
                        url=info.url,
                        sha1=info.sha1,
                        size=info.size,
                        kind=ArtifactKind.NATIVE,
                    )
                )
        return artifacts
