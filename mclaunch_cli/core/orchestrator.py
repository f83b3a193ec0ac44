"""
Sequences authentication, resolution and download into one preparation step
and produces the context handed to the process launcher.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from mclaunch_cli.exceptions import McLaunchError, PreparationError
from mclaunch_cli.models.credential import Credential
from mclaunch_cli.models.report import FetchReport
from mclaunch_cli.models.version import ArtifactKind, VersionDescriptor
from mclaunch_cli.storage.instances import InstanceConfig, InstanceStore
from mclaunch_cli.utils.platform import PlatformInfo

from .resolver import AssetResolver
from .scheduler import DownloadScheduler
from .token_broker import TokenBroker

log = logging.getLogger(__name__)


@dataclass
class LaunchContext:
    """A ready session plus a complete, verified file set."""

    credential: Credential
    descriptor: VersionDescriptor
    game_dir: Path
    paths: dict[str, Path]
    report: FetchReport
    instance: Optional[InstanceConfig] = None

    def local_path(self, logical_path: str) -> Path:
        return self.paths[logical_path]

    def classpath(self) -> list[Path]:
        """Library jars in descriptor order followed by the client jar."""
        libraries = [
            self.paths[a.path] for a in self.descriptor.by_kind(ArtifactKind.LIBRARY)
        ]
        client = [
            self.paths[a.path] for a in self.descriptor.by_kind(ArtifactKind.CLIENT)
        ]
        return libraries + client

    def natives(self) -> list[Path]:
        return [self.paths[a.path] for a in self.descriptor.by_kind(ArtifactKind.NATIVE)]

    def to_dict(self) -> dict[str, Any]:
        """Hand-off document for the external process builder. Holds the access token."""
        return {
            "version": self.descriptor.id,
            "type": self.descriptor.type,
            "main_class": self.descriptor.main_class,
            "assets_id": self.descriptor.assets_id,
            "java_major_version": self.descriptor.java_major_version,
            "game_dir": str(self.game_dir),
            "assets_dir": str(self.game_dir / "assets"),
            "instance": self.instance.name if self.instance else None,
            "player": {
                "name": self.credential.profile.name,
                "uuid": self.credential.profile.id,
            },
            "access_token": self.credential.access_token,
            "expires_at": self.credential.expires_at,
            "classpath": [str(p) for p in self.classpath()],
            "natives": [str(p) for p in self.natives()],
        }


class LaunchOrchestrator:
    """
    Runs TokenBroker, AssetResolver and DownloadScheduler in that order.

    Each stage must succeed before the next starts; nothing is retried across
    stages. Any failure is raised as a ``PreparationError`` naming the stage.
    """

    def __init__(
        self,
        broker: TokenBroker,
        resolver: AssetResolver,
        scheduler: DownloadScheduler,
        game_dir: Path,
        platform: Optional[PlatformInfo] = None,
    ):
        self.broker = broker
        self.resolver = resolver
        self.scheduler = scheduler
        self.game_dir = game_dir
        self.platform = platform or PlatformInfo.current()
        self.instances = InstanceStore(game_dir)

    async def prepare(self, version_id: str, interactive: bool = True) -> LaunchContext:
        """
        Obtains a session and makes every file of ``version_id`` present.

        Raises:
            PreparationError: With ``stage`` set to ``auth``, ``resolution`` or
                ``download``; for downloads, ``failed_tasks`` lists every
                artifact that could not be fetched.
        """
        try:
            credential = await self.broker.obtain_valid_token(interactive=interactive)
        except McLaunchError as e:
            raise PreparationError("auth", f"Authentication failed: {e}", cause=e) from e

        try:
            descriptor = await self.resolver.resolve(version_id, self.platform)
        except McLaunchError as e:
            raise PreparationError(
                "resolution", f"Could not resolve '{version_id}': {e}", cause=e
            ) from e

        log.info(
            f"Checking {len(descriptor.artifacts)} files for [bold]{descriptor.id}[/bold]..."
        )
        report = await self.scheduler.fetch_all(descriptor.artifacts, self.game_dir)
        if report.failed:
            raise PreparationError(
                "download",
                f"{len(report.failed)} of {len(report.tasks)} files could not be downloaded.",
                failed_tasks=report.failed,
            )

        return LaunchContext(
            credential=credential,
            descriptor=descriptor,
            game_dir=self.game_dir,
            paths=report.paths(),
            report=report,
        )

    async def launch(self, instance_ref: str, interactive: bool = True) -> LaunchContext:
        """
        Prepares the version an instance is pinned to.

        Raises:
            InstanceNotFoundError: No such instance.
            PreparationError: As for ``prepare``.
        """
        instance = self.instances.get(instance_ref)
        log.info(f"Instance [bold]{instance.name}[/bold] uses version {instance.version}")
        context = await self.prepare(instance.version, interactive=interactive)
        context.instance = instance
        return context
