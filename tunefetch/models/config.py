"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, Field, field_validator

BEST_QUALITY = 0
MIN_BITRATE_KBPS = 96
MAX_BITRATE_KBPS = 320


def validate_quality(v: int) -> int:
    """
    Ensures quality is 0 (best available) or a bitrate between 96 and 320 kbps.
    """
    if v != BEST_QUALITY and not MIN_BITRATE_KBPS <= v <= MAX_BITRATE_KBPS:
        raise ValueError(
            f"Quality must be 0 (best) or between {MIN_BITRATE_KBPS} and "
            f"{MAX_BITRATE_KBPS} kbps."
        )
    return v


def describe_quality(quality: int) -> str:
    """Returns a short human-readable label for a quality setting."""
    return "best available" if quality == BEST_QUALITY else f"MP3 {quality} kbps"


class ServerConfig(BaseModel):
    """A validated configuration model for the application."""

    # Extraction
    downloads_dir: str = "downloads"
    ytdlp_path: str = "yt-dlp"
    default_quality: int = 192
    max_concurrent: int = 4
    cancel_grace_seconds: float = 5.0
    embed_thumbnail: bool = True

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001
    rate_limit_requests: int = 100
    rate_limit_window: float = 15 * 60

    # Logging
    log_dir: str = ""

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("default_quality")
    @classmethod
    def validate_default_quality(cls, v: int) -> int:
        return validate_quality(v)

    @field_validator("max_concurrent")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of simultaneous extractions."""
        if v < 1 or v > 32:
            raise ValueError("Max concurrent extractions must be between 1 and 32.")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Port must be between 1 and 65535, but got: {v}")
        return v

    @field_validator("downloads_dir", "ytdlp_path")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Value cannot be empty.")
        return v

    @field_validator("rate_limit_requests")
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_requests cannot be negative (0 disables).")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
