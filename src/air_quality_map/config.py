"""
Application settings.

Values come from the environment (``AQM_`` prefix) or a local ``.env`` file,
e.g. ``AQM_SOURCES='["atmoRef", "communautaire.nebuleair"]'`` or
``AQM_SOURCE_URLS='{"atmoRef": "https://example.org/api/ref"}'``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from air_quality_map.reference.pollutants import DEFAULT_POLLUTANT, POLLUTANTS
from air_quality_map.reference.time_steps import DEFAULT_TIME_STEP, TIME_STEPS


class Settings(BaseSettings):
    """Runtime configuration for flows, the CLI and the map page."""

    model_config = SettingsConfigDict(
        env_prefix="AQM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "air-quality-map"
    app_env: str = "development"
    debug: bool = False

    # Storage
    data_dir: Path = Path("data")

    # Default selection
    sources: list[str] = Field(default_factory=lambda: ["atmoRef", "atmoMicro"])
    pollutant: str = DEFAULT_POLLUTANT
    time_step: str = DEFAULT_TIME_STEP
    auto_refresh: bool = True

    # Providers
    source_timeout: float = Field(30.0, gt=0)
    source_urls: dict[str, str] = Field(default_factory=dict)
    static_dir: Path | None = None

    # Spiderfy
    spiderfy_enabled: bool = True
    spiderfy_zoom_threshold: float = 12
    spiderfy_radius: float = Field(0.001, gt=0)
    spiderfy_precision: int = Field(9, ge=0, le=12)

    # Map page
    map_lat: float = 43.6
    map_lon: float = 5.9
    map_zoom: int = 9

    api_port: int = 8000

    @field_validator("pollutant")
    @classmethod
    def _known_pollutant(cls, value: str) -> str:
        if value not in POLLUTANTS:
            msg = f"unknown pollutant {value!r}, expected one of {sorted(POLLUTANTS)}"
            raise ValueError(msg)
        return value

    @field_validator("time_step")
    @classmethod
    def _known_time_step(cls, value: str) -> str:
        if value not in TIME_STEPS:
            msg = f"unknown time step {value!r}, expected one of {sorted(TIME_STEPS)}"
            raise ValueError(msg)
        return value

    @property
    def site_dir(self) -> Path:
        return self.data_dir / "derived" / "site"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
