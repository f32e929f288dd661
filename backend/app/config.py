"""Application configuration with environment variable support.

All settings can be overridden via environment variables prefixed with
``COHORTCHAT_``, or via a ``.env`` file in the project root.

Examples::

    COHORTCHAT_PORT=9000 cohortchat start
    COHORTCHAT_DATA_DIR=/var/data/cohortchat cohortchat start
    COHORTCHAT_LOG_LEVEL=DEBUG cohortchat start
    COHORTCHAT_RESEND_API_KEY=re_xxx cohortchat start   # enable e-mail notifications
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (backend/app/config.py -> project/)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Cohort chat configuration; all values overridable via env vars."""

    model_config = SettingsConfigDict(
        env_prefix="COHORTCHAT_",
        env_file=str(_BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    public_host: str = "localhost"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3003"]

    # Paths
    data_dir: Path = _BASE_DIR / "data"

    # Logging
    log_level: str = "INFO"

    # Attachments
    storage_bucket: str = "chat-attachments"
    max_image_bytes: int = 5 * 1024 * 1024
    max_document_bytes: int = 10 * 1024 * 1024

    # E-mail notifications (Resend HTTP API). Empty key = log and skip.
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    email_from: str = "French Language Solutions <portal@frenchlanguagesolutions.com>"
    student_portal_url: str = "https://student.frenchlanguagesolutions.com"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "cohortchat.db"

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def storage_root(self) -> Path:
        """Directory holding one sub-directory per storage bucket."""
        return self.data_dir / "storage"

    @property
    def base_url(self) -> str:
        """The full base URL for the API server (used for public file URLs)."""
        return f"http://{self.public_host}:{self.port}"


# Singleton instance, import this everywhere
settings = Settings()

DATA_DIR = settings.data_dir
DATABASE_URL = settings.database_url
