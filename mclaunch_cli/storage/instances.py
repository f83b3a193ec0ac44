"""
Instance definitions: named game setups stored under the game directory.
"""

import json
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from mclaunch_cli.exceptions import InstanceError, InstanceNotFoundError

log = logging.getLogger(__name__)

MAX_NAME_LENGTH = 64
_VALID_NAME = re.compile(r"^[A-Za-z0-9_-]+$")


class InstanceConfig(BaseModel):
    """Contents of ``instances/<name>/instance.json``; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    name: str
    version: str
    description: Optional[str] = None
    created: Optional[str] = None


class InstanceStore:
    """Creates, lists and looks up instances in ``<game_dir>/instances``."""

    FILE_NAME = "instance.json"

    def __init__(self, game_dir: Path):
        self.root = game_dir / "instances"

    def list_instances(self) -> list[InstanceConfig]:
        instances = []
        if not self.root.is_dir():
            return instances
        for config_file in sorted(self.root.glob(f"*/{self.FILE_NAME}")):
            try:
                instances.append(self._read(config_file))
            except InstanceNotFoundError as e:
                log.warning(f"Skipping instance: {e}")
        return instances

    def get(self, name: str) -> InstanceConfig:
        """
        Returns the named instance.

        Raises:
            InstanceNotFoundError: When no readable instance with that name exists.
        """
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise InstanceNotFoundError(f"Invalid instance name: {name!r}")
        config_file = self.root / name / self.FILE_NAME
        if not config_file.is_file():
            raise InstanceNotFoundError(f"Instance '{name}' not found in {self.root}")
        return self._read(config_file)

    def create(
        self, name: str, version: str, description: Optional[str] = None
    ) -> InstanceConfig:
        """
        Writes a new instance pinned to ``version``.

        The version id is stored as given; callers check it against the
        manifest first.

        Raises:
            InstanceError: The name is invalid, taken, or the file cannot be written.
        """
        if not _VALID_NAME.match(name):
            raise InstanceError(
                f"Invalid instance name {name!r}: use letters, digits, '-' and '_' only."
            )
        if len(name) > MAX_NAME_LENGTH:
            raise InstanceError(
                f"Instance name is {len(name)} characters long, "
                f"the maximum is {MAX_NAME_LENGTH}."
            )
        instance_dir = self.root / name
        if instance_dir.exists():
            raise InstanceError(f"Instance '{name}' already exists.")

        instance = InstanceConfig(
            name=name,
            version=version,
            description=description,
            created=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        config_file = instance_dir / self.FILE_NAME
        tmp_path = instance_dir / f".{self.FILE_NAME}.{os.getpid()}.tmp"
        try:
            instance_dir.mkdir(parents=True)
            tmp_path.write_text(
                instance.model_dump_json(indent=2, exclude_none=True), encoding="utf-8"
            )
            os.replace(tmp_path, config_file)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise InstanceError(f"Failed to create instance '{name}': {e}") from e
        log.info(f"Created instance '{name}' for version {version}")
        return instance

    def delete(self, name: str) -> None:
        """
        Removes the instance directory and everything in it.

        Raises:
            InstanceNotFoundError: No such instance.
            InstanceError: The directory could not be removed.
        """
        if not _VALID_NAME.match(name) or not (self.root / name).is_dir():
            raise InstanceNotFoundError(f"Instance '{name}' not found in {self.root}")
        try:
            shutil.rmtree(self.root / name)
        except OSError as e:
            raise InstanceError(f"Failed to delete instance '{name}': {e}") from e
        log.info(f"Deleted instance '{name}'")

    @staticmethod
    def _read(config_file: Path) -> InstanceConfig:
        try:
            with open(config_file, encoding="utf-8") as f:
                return InstanceConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise InstanceNotFoundError(
                f"Instance file '{config_file}' is unreadable: {e}"
            ) from e
