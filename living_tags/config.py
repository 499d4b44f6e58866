"""Configuration management using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Seeded into an empty glossary (Russian joke categories)
DEFAULT_TAGS: list[str] = [
    "Вовочка",
    "Штирлиц",
    "Программисты",
    "Работа",
    "Семья",
    "Политика",
    "Черный юмор",
    "Каламбур",
    "Абсурд",
    "Советские",
    "Современные",
    "Детские",
    "Медицина",
    "Студенты",
    "Армия",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Living Tags"
    app_version: str = "0.3.0"
    debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./data/living_tags.db"

    # JWT (tokens are issued by the external auth provider)
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # Classifier
    classifier_base_url: str = "https://api.anthropic.com"
    classifier_api_key: str | None = None
    classifier_api_version: str = "2023-06-01"
    classifier_model: str = "claude-3-haiku-20240307"
    classifier_max_tokens: int = 1024
    classifier_timeout_seconds: float = 30.0
    classifier_min_confidence: float = 0.3  # Batch tagging threshold
    auto_tag_on_create: bool = True

    # Tags
    tag_name_max_length: int = 50
    default_tags: list[str] = DEFAULT_TAGS

    # Import / export
    export_format: str = "living-tags-v1"
    import_batch_size: int = 10

    # Remote API (HttpPersistence)
    api_base_url: str = "http://localhost:8000"
    api_timeout_seconds: float = 15.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
