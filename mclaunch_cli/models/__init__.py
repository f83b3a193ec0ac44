"""
Data Models Layer.

This package contains the core data structures used throughout the
application: configuration, credentials, resolved versions, remote metadata
documents and download reports.
"""

from .config import LauncherConfig
from .credential import AuthStage, Credential, PlayerProfile, SessionStatus
from .report import DownloadTask, FetchReport, TaskState
from .version import Artifact, ArtifactKind, VersionDescriptor

__all__ = [
    "Artifact",
    "ArtifactKind",
    "AuthStage",
    "Credential",
    "DownloadTask",
    "FetchReport",
    "LauncherConfig",
    "PlayerProfile",
    "SessionStatus",
    "TaskState",
    "VersionDescriptor",
]
