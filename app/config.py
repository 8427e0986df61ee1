from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Set ENV=local for tracebacks in responses.
    env: Env = Env.prod
    db_url: str = "sqlite+aiosqlite:///ramen_road.db"
    secret_key: str = "change-me"
    token_ttl_hours: int = 10
    admin_emails: list[str] = []
    uploads_dir: Path = Path("uploads")
    uploads_url: str = "/uploads"
    # Set to use an HTTP object store instead of uploads_dir.
    blob_store_url: str | None = None
    max_upload_bytes: int = 10 * 1024 * 1024
    default_banner_url: str = "/uploads/default-banner.webp"
    default_profile_image_url: str = "/uploads/default-profile.png"
    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"
