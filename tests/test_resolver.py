import threading

import aiohttp
import pytest

from mclaunch_cli.core.resolver import (
    ASSET_BASE_URL,
    AssetResolver,
    maven_path,
    rules_allow,
)
from mclaunch_cli.exceptions import (
    ApiResponseError,
    DescriptorError,
    ManifestUnavailableError,
    VersionNotFoundError,
)
from mclaunch_cli.models.manifest import Rule
from mclaunch_cli.models.version import ArtifactKind
from mclaunch_cli.storage.cache import CacheManager
from mclaunch_cli.transfer.integrity import IntegrityVerifier
from mclaunch_cli.utils.platform import PlatformInfo
from mclaunch_cli.utils.retry import RetryPolicy
from tests.fakes import MANIFEST_URL, FakeServicesClient, GameVersion

LINUX = PlatformInfo("linux", "x86_64", "6.5.0")
OSX = PlatformInfo("osx", "arm64", "23.1.0")
WINDOWS_32 = PlatformInfo("windows", "x86", "10.0")

DISALLOW_OSX = [{"action": "allow"}, {"action": "disallow", "os": {"name": "osx"}}]
ONLY_LINUX = [{"action": "allow", "os": {"name": "linux"}}]


def _rules(raw):
    return None if raw is None else [Rule.model_validate(r) for r in raw]


def _resolver(client, game_dir, cache=None) -> AssetResolver:
    return AssetResolver(
        client,
        game_dir,
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0),
        cache=cache,
        manifest_url=MANIFEST_URL,
    )


@pytest.fixture
def version() -> GameVersion:
    v = GameVersion("1.20.4")
    v.add_library("com.mojang:brigadier:1.2.9")
    v.add_library("ca.weblite:java-objc-bridge:1.1", rules=[{"action": "allow", "os": {"name": "osx"}}])
    v.add_library("org.lwjgl:lwjgl:3.3.3:natives-linux", rules=ONLY_LINUX)
    v.add_library("org.lwjgl:lwjgl:3.3.3", rules=DISALLOW_OSX)
    return v


# Rules


def test_no_rules_means_allowed() -> None:
    assert rules_allow(None, LINUX)


def test_empty_rule_list_means_disallowed() -> None:
    assert not rules_allow([], LINUX)


def test_last_matching_rule_wins() -> None:
    assert rules_allow(_rules(DISALLOW_OSX), LINUX)
    assert not rules_allow(_rules(DISALLOW_OSX), OSX)
    assert rules_allow(_rules(ONLY_LINUX), LINUX)
    assert not rules_allow(_rules(ONLY_LINUX), WINDOWS_32)


def test_rules_match_arch_and_os_version() -> None:
    x86_only = _rules([{"action": "allow", "os": {"arch": "x86"}}])
    assert rules_allow(x86_only, WINDOWS_32)
    assert not rules_allow(x86_only, LINUX)

    old_osx = _rules(
        [{"action": "allow"}, {"action": "disallow", "os": {"name": "osx", "version": "^10\\.5\\.\\d$"}}]
    )
    assert rules_allow(old_osx, OSX)
    assert not rules_allow(old_osx, PlatformInfo("osx", "x86_64", "10.5.8"))


def test_feature_rules_never_match() -> None:
    demo_only = _rules([{"action": "allow", "features": {"is_demo_user": True}}])
    assert not rules_allow(demo_only, LINUX)


def test_invalid_os_version_pattern() -> None:
    broken = _rules([{"action": "allow", "os": {"version": "(["}}])
    with pytest.raises(DescriptorError):
        rules_allow(broken, LINUX)


# Maven paths


@pytest.mark.parametrize(
    "name, classifier, expected",
    [
        ("com.mojang:brigadier:1.2.9", None, "com/mojang/brigadier/1.2.9/brigadier-1.2.9.jar"),
        (
            "org.lwjgl:lwjgl:3.3.3:natives-linux",
            None,
            "org/lwjgl/lwjgl/3.3.3/lwjgl-3.3.3-natives-linux.jar",
        ),
        (
            "org.lwjgl.lwjgl:lwjgl-platform:2.9.4",
            "natives-windows",
            "org/lwjgl/lwjgl/lwjgl-platform/2.9.4/lwjgl-platform-2.9.4-natives-windows.jar",
        ),
        ("net.example:pack:1.0@zip", None, "net/example/pack/1.0/pack-1.0.zip"),
    ],
)
def test_maven_path(name, classifier, expected) -> None:
    assert maven_path(name, classifier) == expected


@pytest.mark.parametrize("name", ["", "only:two", "a::1"])
def test_malformed_maven_name(name) -> None:
    with pytest.raises(DescriptorError):
        maven_path(name)


# Resolution


@pytest.mark.asyncio
async def test_resolve_orders_and_filters_artifacts(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    descriptor = await _resolver(client, tmp_path).resolve("1.20.4", LINUX)

    assert descriptor.id == "1.20.4"
    assert descriptor.main_class == "net.minecraft.client.main.Main"
    assert descriptor.assets_id == "12"
    assert descriptor.java_major_version == 17

    paths = [a.path for a in descriptor.artifacts]
    assert paths[:2] == ["versions/1.20.4/1.20.4.json", "versions/1.20.4/1.20.4.jar"]
    assert paths[2:5] == [
        "libraries/com/mojang/brigadier/1.2.9/brigadier-1.2.9.jar",
        "libraries/org/lwjgl/lwjgl/3.3.3/lwjgl-3.3.3-natives-linux.jar",
        "libraries/org/lwjgl/lwjgl/3.3.3/lwjgl-3.3.3.jar",
    ]
    assert paths[5] == "assets/indexes/12.json"
    assert [a.kind for a in descriptor.artifacts] == [
        ArtifactKind.DESCRIPTOR,
        ArtifactKind.CLIENT,
        ArtifactKind.LIBRARY,
        ArtifactKind.NATIVE,
        ArtifactKind.LIBRARY,
        ArtifactKind.ASSET_INDEX,
        ArtifactKind.ASSET,
        ArtifactKind.ASSET,
        ArtifactKind.ASSET,
    ]

    # Assets follow the index in name order.
    icon_hash = IntegrityVerifier.digest(b"small icon")
    assert descriptor.artifacts[6].path == f"assets/objects/{icon_hash[:2]}/{icon_hash}"
    assert descriptor.artifacts[6].url == f"{ASSET_BASE_URL}/{icon_hash[:2]}/{icon_hash}"
    assert descriptor.artifacts[6].sha1 == icon_hash


@pytest.mark.asyncio
async def test_resolve_is_deterministic(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    resolver = _resolver(client, tmp_path)
    assert await resolver.resolve("1.20.4", LINUX) == await resolver.resolve("1.20.4", LINUX)


@pytest.mark.asyncio
async def test_platform_rules_change_the_library_set(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    descriptor = await _resolver(client, tmp_path).resolve("1.20.4", OSX)
    libraries = [a.path for a in descriptor.by_kind(ArtifactKind.LIBRARY, ArtifactKind.NATIVE)]
    assert libraries == [
        "libraries/com/mojang/brigadier/1.2.9/brigadier-1.2.9.jar",
        "libraries/ca/weblite/java-objc-bridge/1.1/java-objc-bridge-1.1.jar",
    ]


@pytest.mark.asyncio
async def test_legacy_natives_substitute_pointer_width(tmp_path) -> None:
    version = GameVersion("1.8.9")
    version.add_legacy_natives(
        "org.lwjgl.lwjgl:lwjgl-platform:2.9.4",
        {"linux": "natives-linux", "windows": "natives-windows-${arch}"},
        ["natives-linux", "natives-windows-32", "natives-windows-64"],
    )
    client = version.serve(FakeServicesClient())
    resolver = _resolver(client, tmp_path)

    windows = await resolver.resolve("1.8.9", WINDOWS_32)
    assert [a.path for a in windows.by_kind(ArtifactKind.NATIVE)] == [
        "libraries/org/lwjgl/lwjgl/lwjgl-platform/2.9.4/lwjgl-platform-2.9.4-natives-windows-32.jar"
    ]
    osx = await resolver.resolve("1.8.9", OSX)
    assert osx.by_kind(ArtifactKind.NATIVE) == []


@pytest.mark.asyncio
async def test_missing_native_classifier_is_malformed(tmp_path) -> None:
    version = GameVersion("1.8.9")
    version.add_legacy_natives(
        "org.lwjgl.lwjgl:lwjgl-platform:2.9.4", {"linux": "natives-linux"}, []
    )
    client = version.serve(FakeServicesClient())
    with pytest.raises(DescriptorError):
        await _resolver(client, tmp_path).resolve("1.8.9", LINUX)


@pytest.mark.asyncio
async def test_identical_assets_are_listed_once(tmp_path) -> None:
    version = GameVersion(assets={"a/one.txt": b"same", "b/two.txt": b"same", "c.txt": b"other"})
    client = version.serve(FakeServicesClient())
    descriptor = await _resolver(client, tmp_path).resolve("1.20.4", LINUX)
    assert len(descriptor.by_kind(ArtifactKind.ASSET)) == 2
    paths = [a.path for a in descriptor.artifacts]
    assert len(paths) == len(set(paths))


@pytest.mark.asyncio
async def test_latest_aliases(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    descriptor = await _resolver(client, tmp_path).resolve("release", LINUX)
    assert descriptor.id == "1.20.4"


@pytest.mark.asyncio
async def test_unknown_version(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    with pytest.raises(VersionNotFoundError):
        await _resolver(client, tmp_path).resolve("0.0.0", LINUX)


@pytest.mark.asyncio
async def test_malformed_descriptor(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient(), descriptor_raw=b'{"id": "1.20.4"}')
    with pytest.raises(DescriptorError):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)


@pytest.mark.asyncio
async def test_descriptor_that_is_not_json(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient(), descriptor_raw=b"<html>oops</html>")
    with pytest.raises(DescriptorError):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)


@pytest.mark.asyncio
async def test_tampered_descriptor_fails_digest(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    client.replace("GET", version.descriptor_url, version.descriptor_raw + b" ")
    with pytest.raises(DescriptorError, match="digest"):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)


@pytest.mark.asyncio
async def test_manifest_outage_is_retried_then_reported(tmp_path) -> None:
    client = FakeServicesClient().add("GET", MANIFEST_URL, ApiResponseError(MANIFEST_URL, 503))
    with pytest.raises(ManifestUnavailableError):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)
    assert client.count("GET", MANIFEST_URL) == 2


@pytest.mark.asyncio
async def test_manifest_not_found_is_not_retried(tmp_path) -> None:
    client = FakeServicesClient().add("GET", MANIFEST_URL, ApiResponseError(MANIFEST_URL, 404))
    with pytest.raises(ManifestUnavailableError):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)
    assert client.count("GET", MANIFEST_URL) == 1


@pytest.mark.asyncio
async def test_manifest_connection_failure(tmp_path) -> None:
    client = FakeServicesClient().add(
        "GET", MANIFEST_URL, aiohttp.ClientConnectionError("connection refused")
    )
    with pytest.raises(ManifestUnavailableError):
        await _resolver(client, tmp_path).resolve("1.20.4", LINUX)


@pytest.mark.asyncio
async def test_local_documents_with_matching_digest_are_reused(version, tmp_path) -> None:
    descriptor_file = tmp_path / "versions" / "1.20.4" / "1.20.4.json"
    descriptor_file.parent.mkdir(parents=True)
    descriptor_file.write_bytes(version.descriptor_raw)
    index_file = tmp_path / "assets" / "indexes" / "12.json"
    index_file.parent.mkdir(parents=True)
    index_file.write_bytes(b"stale")

    client = version.serve(FakeServicesClient())
    await _resolver(client, tmp_path).resolve("1.20.4", LINUX)

    assert client.count("GET", version.descriptor_url) == 0
    assert client.count("GET", version.index_url) == 1
    # The resolver never writes into the game directory.
    assert index_file.read_bytes() == b"stale"


@pytest.mark.asyncio
async def test_manifest_is_served_from_cache(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    resolver = _resolver(client, tmp_path / "game", cache=CacheManager(tmp_path))
    await resolver.resolve("1.20.4", LINUX)
    await resolver.resolve("1.20.4", LINUX)
    assert client.count("GET", MANIFEST_URL) == 1


@pytest.mark.asyncio
async def test_list_versions_filters(version, tmp_path) -> None:
    client = version.serve(FakeServicesClient())
    resolver = _resolver(client, tmp_path)

    latest, entries = await resolver.list_versions()
    assert latest.release == "1.20.4"
    assert [e.id for e in entries] == ["24w03a", "1.20.4", "b1.7.3"]

    _, releases = await resolver.list_versions(types=["release"])
    assert [e.id for e in releases] == ["1.20.4"]

    _, matching = await resolver.list_versions(text="B1.7")
    assert [e.id for e in matching] == ["b1.7.3"]


@pytest.mark.asyncio
async def test_manifest_cache_is_read_and_written_off_the_event_loop(version, tmp_path) -> None:
    class RecordingCache(CacheManager):
        threads = []

        def get(self, key):
            self.threads.append(threading.current_thread())
            return super().get(key)

        def set(self, key, value):
            self.threads.append(threading.current_thread())
            return super().set(key, value)

    client = version.serve(FakeServicesClient())
    cache = RecordingCache(tmp_path)
    await _resolver(client, tmp_path / "game", cache=cache).fetch_manifest()

    assert len(cache.threads) == 2
    assert threading.main_thread() not in cache.threads


@pytest.mark.asyncio
async def test_version_id_that_escapes_the_game_directory(tmp_path) -> None:
    hostile = GameVersion("../escape")
    client = hostile.serve(FakeServicesClient())

    with pytest.raises(DescriptorError, match="Unsafe version id"):
        await _resolver(client, tmp_path / "game").resolve("../escape", LINUX)
    assert client.count("GET", hostile.descriptor_url) == 0


@pytest.mark.asyncio
async def test_asset_index_id_that_escapes_the_game_directory(tmp_path) -> None:
    hostile = GameVersion("1.20.4", index_id="..\\..\\escape")
    client = hostile.serve(FakeServicesClient())

    with pytest.raises(DescriptorError, match="Unsafe asset index id"):
        await _resolver(client, tmp_path / "game").resolve("1.20.4", LINUX)
    assert client.count("GET", hostile.index_url) == 0


@pytest.mark.asyncio
async def test_find_version_expands_aliases(version, tmp_path) -> None:
    resolver = _resolver(version.serve(FakeServicesClient()), tmp_path)
    assert (await resolver.find_version("snapshot")).id == "24w03a"
    assert (await resolver.find_version("b1.7.3")).type == "old_beta"
    with pytest.raises(VersionNotFoundError):
        await resolver.find_version("1.99")
