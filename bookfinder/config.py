import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_BOOKFINDER_DIR = Path.home() / ".bookfinder"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "5000"))

    # Storage settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", str(_BOOKFINDER_DIR / "library.db"))
    session_file: str = os.getenv("SESSION_FILE", str(_BOOKFINDER_DIR / "session.json"))

    # Google Books API settings
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_max_results: int = int(os.getenv("GOOGLE_BOOKS_MAX_RESULTS", "20"))
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")

    # Cover image relay
    image_timeout: float = float(os.getenv("IMAGE_TIMEOUT", "10"))
    image_cache_ttl: int = int(os.getenv("IMAGE_CACHE_TTL", "86400"))  # 24 hours

    # Redis cache (in-process cache only when unset)
    redis_url: Optional[str] = os.getenv("REDIS_URL")

    # Notifications
    notification_duration: float = float(os.getenv("NOTIFICATION_DURATION", "3"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Book Finder")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
