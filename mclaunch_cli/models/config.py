"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mclaunch_cli.utils.platform import get_default_game_dir

DEFAULT_MANIFEST_URL = (
    "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"
)


class LauncherConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Authentication
    client_id: str = ""
    redirect_port: int = 8080
    open_browser: bool = True
    safety_margin: int = 300
    auth_attempts: int = 3

    # Downloads
    max_workers: int = 16
    download_attempts: int = 3
    retry_base_delay: float = 1.5

    # Metadata
    manifest_url: str = DEFAULT_MANIFEST_URL
    manifest_cache_hours: int = 1
    game_dir: str = ""

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 64:
            raise ValueError("Max workers must be between 1 and 64.")
        return v

    @field_validator("download_attempts", "auth_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Attempt counts must be between 1 and 10.")
        return v

    @field_validator("redirect_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"Invalid redirect port: {v}")
        return v

    @field_validator("safety_margin", "manifest_cache_hours")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value cannot be negative.")
        return v

    @field_validator("retry_base_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0 or v > 60:
            raise ValueError("Retry base delay must be between 0 and 60 seconds.")
        return v

    @field_validator("manifest_url")
    @classmethod
    def validate_manifest_url(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("Manifest URL must be an http(s) URL.")
        return v

    @property
    def game_path(self) -> Path:
        """The local artifact store; the platform default when unset."""
        if self.game_dir:
            return Path(self.game_dir).expanduser()
        return get_default_game_dir()

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.redirect_port}"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
