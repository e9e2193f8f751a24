import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # API settings
    api_base_url: str = os.getenv("BOOKSHELF_API_URL", "http://localhost:3030/api")
    api_token: Optional[str] = os.getenv("BOOKSHELF_API_TOKEN")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "20"))
    connect_timeout: float = float(os.getenv("CONNECT_TIMEOUT", "5"))
    retry_attempts: int = int(os.getenv("RETRY_ATTEMPTS", "3"))

    # Progress tracking
    progress_commit_timeout: float = float(os.getenv("PROGRESS_COMMIT_TIMEOUT", "20"))
    progress_debounce_ms: int = int(os.getenv("PROGRESS_DEBOUNCE_MS", "800"))

    # Cache freshness (seconds)
    library_stale_seconds: float = float(os.getenv("LIBRARY_STALE_SECONDS", "120"))  # 2 minutes
    stats_stale_seconds: float = float(os.getenv("STATS_STALE_SECONDS", "300"))  # 5 minutes
    search_stale_seconds: float = float(os.getenv("SEARCH_STALE_SECONDS", "300"))  # 5 minutes
    default_search_results: int = int(os.getenv("DEFAULT_SEARCH_RESULTS", "10"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Bookshelf")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")

    @property
    def progress_debounce_seconds(self) -> float:
        return self.progress_debounce_ms / 1000.0


settings = Settings()
