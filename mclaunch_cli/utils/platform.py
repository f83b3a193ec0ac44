"""
Platform detection and per-user directory locations.
"""

import os
import platform
import sys
from dataclasses import dataclass
from pathlib import Path

_OS_NAMES = {"win32": "windows", "darwin": "osx", "linux": "linux"}

_ARCH_NAMES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm32",
    "armv6l": "arm32",
}


@dataclass(frozen=True)
class PlatformInfo:
    """The facts that library inclusion rules are evaluated against."""

    os_name: str
    arch: str
    os_version: str = ""

    @property
    def bits(self) -> str:
        """Pointer width as used by legacy ``${arch}`` native classifiers."""
        return "32" if self.arch in ("x86", "arm32") else "64"

    @classmethod
    def current(cls) -> "PlatformInfo":
        os_name = _OS_NAMES.get(sys.platform)
        if os_name is None:
            os_name = "linux" if sys.platform.startswith("linux") else sys.platform
        machine = platform.machine().lower()
        return cls(
            os_name=os_name,
            arch=_ARCH_NAMES.get(machine, machine),
            os_version=platform.release(),
        )


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "mclaunch-cli"


def get_default_game_dir() -> Path:
    """The directory the official launcher uses, so both can share files."""
    if os.name == "nt":
        return Path(os.getenv("APPDATA", "~\\AppData\\Roaming")).expanduser() / ".minecraft"
    if sys.platform == "darwin":
        return Path("~/Library/Application Support/minecraft").expanduser()
    return Path("~/.minecraft").expanduser()
