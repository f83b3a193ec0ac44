"""
Provides content digests used to decide whether a local file is correct.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

log = logging.getLogger(__name__)

CHUNK_SIZE = 1048576  # 1 MB


class IntegrityVerifier:
    """
    Stateless SHA-1 helpers.

    The same methods back both the cache-hit check and the post-download
    check, so both agree on what a correct file is.
    """

    ALGORITHM = "sha1"

    @classmethod
    def new_hasher(cls):
        return hashlib.new(cls.ALGORITHM)

    @classmethod
    def digest(cls, data: bytes) -> str:
        """Hex digest of an in-memory byte string."""
        hasher = cls.new_hasher()
        hasher.update(data)
        return hasher.hexdigest()

    @classmethod
    def digest_file(cls, path: Union[str, Path]) -> str:
        """Hex digest of a file, read in chunks."""
        hasher = cls.new_hasher()
        with open(path, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                hasher.update(chunk)
        return hasher.hexdigest()

    @staticmethod
    def matches(actual: str, expected: str) -> bool:
        return actual.lower() == expected.strip().lower()

    @classmethod
    def verify(cls, data: bytes, expected: str) -> bool:
        return cls.matches(cls.digest(data), expected)

    @classmethod
    def verify_file(
        cls, path: Union[str, Path], expected: str, size: Optional[int] = None
    ) -> bool:
        """
        Checks a file on disk against an expected digest (and size, if known).

        Args:
            path: File to check.
            expected: Expected hex digest.
            size: Expected size in bytes; skipped when None.

        Returns:
            True only if the file exists and matches. Unreadable files count as
            not matching.
        """
        path = Path(path)
        try:
            if not path.is_file():
                return False
            if size is not None and path.stat().st_size != size:
                log.debug(f"Size mismatch for '{path.name}'")
                return False
            return cls.matches(cls.digest_file(path), expected)
        except OSError as e:
            log.debug(f"Could not check '{path}': {e}")
            return False
