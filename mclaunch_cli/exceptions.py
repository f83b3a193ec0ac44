"""
Defines custom exceptions for the application to allow for more specific error handling.
"""

import json
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from mclaunch_cli.models.credential import AuthStage
    from mclaunch_cli.models.report import DownloadTask

EXIT_GENERIC = 1
EXIT_AUTH = 2
EXIT_RESOLUTION = 3
EXIT_DOWNLOAD = 4


class McLaunchError(Exception):
    """Base exception for all application-specific errors."""

    exit_code = EXIT_GENERIC


class ConfigurationError(McLaunchError):
    """Raised for issues related to configuration loading or validation."""


class InstanceError(McLaunchError):
    """Raised when an instance cannot be created or deleted."""


class ApiResponseError(McLaunchError):
    """Raised when a remote service answers with an HTTP error status."""

    def __init__(self, url: str, status: int, body: str = ""):
        super().__init__(f"HTTP {status} from {url}")
        self.url = url
        self.status = status
        self.body = body

    def json(self) -> dict[str, Any]:
        """Best-effort decoding of the error body."""
        try:
            data = json.loads(self.body)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


# Authentication


class AuthError(McLaunchError):
    """Base class for failures of the credential exchange chain."""

    exit_code = EXIT_AUTH

    def __init__(self, message: str, stage: Optional["AuthStage"] = None):
        super().__init__(message)
        self.stage = stage


class AuthNetworkError(AuthError):
    """Raised when an auth exchange keeps failing for transient network reasons."""


class InvalidGrantError(AuthError):
    """Raised when the stored refresh token is rejected as invalid or expired."""


class ConsentDeniedError(AuthError):
    """Raised when the user refuses the authorization request."""


class EntitlementError(AuthError):
    """Raised when the account does not own the game."""


class XboxAccountError(AuthError):
    """Raised when the Xbox Live account cannot be used (child account, region...)."""


class LoginRequiredError(AuthError):
    """Raised when an interactive login is needed but not allowed."""


class AuthProtocolError(AuthError):
    """Raised when an auth endpoint answers with something unexpected."""


# Resolution


class ResolutionError(McLaunchError):
    """Base class for failures while expanding a version into artifacts."""

    exit_code = EXIT_RESOLUTION


class ManifestUnavailableError(ResolutionError):
    """Raised when remote metadata cannot be fetched after retries."""


class VersionNotFoundError(ResolutionError):
    """Raised when the requested version id is not in the manifest."""


class DescriptorError(ResolutionError):
    """Raised when a manifest, descriptor or asset index is malformed."""


class InstanceNotFoundError(ResolutionError):
    """Raised when a launch references an unknown instance."""


# Downloads


class DownloadError(McLaunchError):
    """Base class for per-artifact download failures."""

    exit_code = EXIT_DOWNLOAD


class DigestMismatchError(DownloadError):
    """Raised when a downloaded file fails its digest or size check."""


class ArtifactWriteError(DownloadError):
    """Raised when a verified artifact cannot be written to the local store."""


class PreparationError(McLaunchError):
    """
    Raised by the orchestrator when a preparation stage fails.

    Carries the stage name, the underlying cause and, for the download stage,
    every task that ended in the Failed state.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        cause: Optional[BaseException] = None,
        failed_tasks: Optional[list["DownloadTask"]] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.cause = cause
        self.failed_tasks = failed_tasks or []
        if isinstance(cause, McLaunchError):
            self.exit_code = cause.exit_code
        elif stage == "download":
            self.exit_code = EXIT_DOWNLOAD
