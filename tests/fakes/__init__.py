"""Test doubles for the network-facing parts of mclaunch_cli (no live network)."""

from .services import (
    PLAYER,
    FakeAuthFlow,
    FakeCodeReceiver,
    FakeServicesClient,
    make_credential,
)
from .transfer import FakeDownloader, make_artifact
from .versions import MANIFEST_URL, GameVersion

__all__ = [
    "MANIFEST_URL",
    "PLAYER",
    "FakeAuthFlow",
    "FakeCodeReceiver",
    "FakeDownloader",
    "FakeServicesClient",
    "GameVersion",
    "make_artifact",
    "make_credential",
]
