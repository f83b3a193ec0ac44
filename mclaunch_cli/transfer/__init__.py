"""
File Transfer Layer.

This package is responsible for moving bytes: streaming downloads into the
local store and checking their content digests.
"""

from .downloader import Downloader
from .integrity import IntegrityVerifier

__all__ = ["Downloader", "IntegrityVerifier"]
