"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    app_name: str = "Load Coordinator"
    log_level: str = "INFO"
    database_path: str = "./data/load_coordinator.db"
    document_dir: str = "./data/documents"
    max_upload_size: int = 10485760  # 10MB

    # Auth
    auth_enabled: bool = False
    user_tokens: str = ""
    default_user_email: str = "coordinator@willbanks.example"

    # Listing
    max_listed_loads: int = 5000

    def resolved_database_path(self) -> Path:
        path = Path((self.database_path or "").strip() or "./data/load_coordinator.db")
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def resolved_document_dir(self) -> Path:
        path = Path((self.document_dir or "").strip() or "./data/documents")
        path.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
