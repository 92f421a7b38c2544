"""Application configuration."""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from transform import FORMATS


class Settings(BaseSettings):
    """Settings read from ASSETS_* environment variables or a local .env file."""

    model_config = SettingsConfigDict(env_prefix="ASSETS_", env_file=".env", extra="ignore")

    # Storage
    base_directory: Path = Path("storage")
    directories: List[str] = Field(
        default_factory=lambda: ["storage", "storage/assets", "storage/images"]
    )

    # Image cache
    cache_dir: Path = Path(".cache-local/images")
    cache_ttl: int = Field(default=3600, ge=1)
    default_format: str = "png"
    default_quality: int = Field(default=60, ge=1, le=100)
    placeholder_size: int = Field(default=300, ge=1)

    # Metadata index
    database_url: str = "sqlite:///./assets.db"
    backup_dir: Path = Path("backups")

    # Uploads
    upload_original_name: bool = False
    max_upload_size: int = 500 * 1024 * 1024
    max_files_upload: int = 10
    reload_command: Optional[str] = None

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    allow_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )
    allow_origin_regex: Optional[str] = None

    @field_validator("default_format")
    @classmethod
    def check_default_format(cls, value: str) -> str:
        fmt = value.strip().lower()
        if fmt not in FORMATS:
            raise ValueError(f"default_format must be one of {', '.join(sorted(FORMATS))}")
        return fmt

    def source_directories(self) -> List[Path]:
        """Candidate directories in lookup order."""
        return [Path(d) for d in self.directories]


@lru_cache
def get_settings() -> Settings:
    return Settings()
