"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from feedvault.exceptions import ConfigurationError

DEFAULT_API_BASE_URL = "https://api.feedvault.local/v1/"


class SyncConfig(BaseModel):
    """A validated configuration model for the application."""

    # Authentication & API
    token: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL

    # Sync Settings
    download_path: str = ""
    default_item_cap: int = 50
    download_concurrency: int = 3
    cooldown_seconds: float = 3.0
    probe_slots: int = 2

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensures the API base URL is absolute and ends with a slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://.")
        return v if v.endswith("/") else v + "/"

    @field_validator("default_item_cap")
    @classmethod
    def validate_item_cap(cls, v: int) -> int:
        """A cap of 0 means unlimited; negative caps are rejected."""
        if v < 0:
            raise ValueError("Default item cap cannot be negative (0 = unlimited).")
        return v

    @field_validator("download_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Ensures a reasonable number of simultaneous item downloads."""
        if v < 1 or v > 32:
            raise ValueError("Download concurrency must be between 1 and 32.")
        return v

    @field_validator("cooldown_seconds")
    @classmethod
    def validate_cooldown(cls, v: float) -> float:
        if v < 0 or v > 300:
            raise ValueError("Cooldown must be between 0 and 300 seconds.")
        return v

    @field_validator("probe_slots")
    @classmethod
    def validate_probe_slots(cls, v: int) -> int:
        if v < 1 or v > 16:
            raise ValueError("Probe slots must be between 1 and 16.")
        return v

    def require_token(self) -> str:
        """Returns the credential token, failing fast if it is not configured."""
        if not self.token:
            raise ConfigurationError(
                "No access token configured. Run 'feedvault init <TOKEN>' first."
            )
        return self.token

    def resolve_download_dir(self) -> Path:
        """Returns the download root, defaulting to a folder next to the config."""
        if self.download_path:
            return Path(self.download_path).expanduser()
        return Path(self.config_path) / "downloads"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
