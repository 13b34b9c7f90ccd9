from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────
    app_name: str = "DocChat"
    app_version: str = "0.1.0"
    debug: bool = False
    api_key: str = "changeme"

    # ── Client (upload controller + REST client) ─────────
    api_base_url: str = "http://localhost:8000"
    request_timeout: float = 60.0
    transfer_chunk_bytes: int = Field(default=64 * 1024, gt=0)
    transfer_max_attempts: int = Field(default=4, ge=1)
    transfer_backoff_base: float = Field(default=0.5, ge=0.0)
    transfer_backoff_max: float = Field(default=8.0, ge=0.0)
    processing_poll_interval: float = Field(default=0.5, gt=0.0)
    processing_timeout: float = Field(default=300.0, gt=0.0)
    max_concurrent_uploads: int = Field(default=4, ge=1)
    upload_display_grace_seconds: float = Field(default=1.5, ge=0.0)

    # ── Server (ingestion) ───────────────────────────────
    upload_dir: Path = BASE_DIR / "data" / "uploads"
    max_upload_bytes: int = 50 * 1024 * 1024
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)
    job_store: Literal["memory", "redis"] = "memory"
    job_ttl_seconds: int = 24 * 60 * 60

    # ── Redis ────────────────────────────────────────────
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""

    @property
    def redis_url(self) -> str:
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # ── Ollama ───────────────────────────────────────────
    ollama_base_url: str = "http://localhost:11434"
    ollama_chat_model: str = "llama3.1:8b"
    ollama_request_timeout: float = 120.0

    # ── Chat ─────────────────────────────────────────────
    chat_top_k: int = Field(default=5, ge=1)
    chat_excerpt_chars: int = Field(default=200, gt=0)
    chat_llm_fallback: bool = True

    # ── Server ───────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000


settings = Settings()
