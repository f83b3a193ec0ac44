"""
Storage Layer.

This package handles all data persistence: the configuration file, the
persisted session credential, the metadata cache and instance definitions.
"""

from .cache import CacheManager
from .config_manager import ConfigManager
from .credential_store import CredentialStore
from .instances import InstanceConfig, InstanceStore

__all__ = [
    "CacheManager",
    "ConfigManager",
    "CredentialStore",
    "InstanceConfig",
    "InstanceStore",
]
