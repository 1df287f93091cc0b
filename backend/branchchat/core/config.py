from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="127.0.0.1", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # Plain string; a list type would make pydantic-settings expect JSON.
    cors_origins: str = Field(
        default="http://127.0.0.1:5173,http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    data_dir: str = Field(default="./data", alias="DATA_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    default_provider: str = Field(default="mock", alias="DEFAULT_PROVIDER")
    default_model: str = Field(default="mock-1", alias="DEFAULT_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    ollama_base_url: str = Field(
        default="http://localhost:11434", alias="OLLAMA_BASE_URL"
    )
    provider_timeout_sec: float = Field(default=90, alias="PROVIDER_TIMEOUT_SEC")
    mock_chunk_size: int = Field(default=4, alias="MOCK_CHUNK_SIZE")
    mock_chunk_delay_sec: float = Field(default=0.0, alias="MOCK_CHUNK_DELAY_SEC")
    max_message_len: int = Field(default=32000, alias="MAX_MESSAGE_LEN")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Split CORS_ORIGINS on commas, or decode it when given as a JSON array."""

        raw = (self.cors_origins or "").strip()
        candidates: list = raw.split(",")
        if raw.startswith("["):
            try:
                decoded = json.loads(raw)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                candidates = decoded
        origins = (str(item).strip() for item in candidates)
        return [origin for origin in origins if origin]

    def data_path(self) -> Path:
        """Return the data directory as an absolute path."""

        return Path(self.data_dir).expanduser().resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
