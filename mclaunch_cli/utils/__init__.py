"""
Shared helpers: retry policy, platform detection and formatting.
"""

from .platform import PlatformInfo, get_config_dir, get_default_game_dir
from .retry import RetryPolicy, is_transient

__all__ = [
    "PlatformInfo",
    "RetryPolicy",
    "get_config_dir",
    "get_default_game_dir",
    "is_transient",
]
