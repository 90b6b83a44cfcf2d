import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Store settings
    # Either a plain file path or a sqlite:/// URL
    store_url: str = os.getenv("LIBRARY_STORE_URL", "")
    store_timeout: float = float(os.getenv("LIBRARY_STORE_TIMEOUT", "5"))

    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    admin_api_key: str = os.getenv("LIBRARY_ADMIN_API_KEY", "")

    # Lending rules
    overdue_days: int = int(os.getenv("OVERDUE_DAYS", "30"))
    email_domain: str = os.getenv("LIBRARY_EMAIL_DOMAIN", "example.com")

    # Google Books API settings
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Office Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def resolve_store_path(self) -> Optional[str]:
        """Return the SQLite file path behind ``store_url``, or None when unset."""
        url = (self.store_url or "").strip()
        if not url:
            return None
        if url.startswith("sqlite:///"):
            url = url[len("sqlite:///"):]
        return os.path.expanduser(url)


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API server and the CLI."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
