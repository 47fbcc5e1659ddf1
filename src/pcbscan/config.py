"""Environment-based configuration for PCBScan."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PCBSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PCBSCAN_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Model artifact. model_repo_id takes precedence over model_url.
    model_url: str = "http://localhost:8000/model/model.json"
    model_repo_id: str | None = None
    model_revision: str = "main"
    manifest_filename: str = "model.json"

    # ML device
    device: Literal["cpu", "cuda"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency (1 = forward passes strictly serialized)
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
