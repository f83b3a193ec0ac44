"""
Core Logic Layer.

This package contains the launch preparation pipeline: session handling,
version resolution, bounded downloading and their orchestration.
"""

from .orchestrator import LaunchContext, LaunchOrchestrator
from .resolver import AssetResolver
from .scheduler import DownloadScheduler
from .token_broker import TokenBroker

__all__ = [
    "AssetResolver",
    "DownloadScheduler",
    "LaunchContext",
    "LaunchOrchestrator",
    "TokenBroker",
]
