import logging
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()


def _detect_project_root(backend_dir: Path) -> Path:
    """Resolve project root from the backend directory in the repo layout."""
    return backend_dir.parent.resolve()


_PROJECT_ROOT = _detect_project_root(_BACKEND_DIR)
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "mirror.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"
_LOGGER = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Upstream API Base URLs
    REDVILLAGE_API_URL: str = "https://federation22.theredvillage.com/api/v2"
    NFT_INDEX_API_URL: str = "https://polygon-mainnet.g.alchemy.com/nft/v2"
    NFT_INDEX_API_KEY: Optional[str] = None

    # Summoned champions NFT collection on Polygon
    FIGHTER_CONTRACT_ADDRESS: str = "0x57f698d99d964aef66d974739b98ec694724b1b8"
    # Known minted id as of 2023-01-15; used when the fighter table is empty
    FIGHTER_BASELINE_ID: int = 29000

    # Fetch Settings
    MAX_CONCURRENT_REQUESTS: int = 128
    API_TIMEOUT_SECONDS: float = 30.0
    MAX_RETRY_ATTEMPTS: int = 6
    RETRY_BASE_DELAY: float = 0.5
    RETRY_MAX_DELAY: float = 60.0

    # Sync Settings
    TOURNAMENT_PAGE_SIZE: int = 100
    TOURNAMENT_MAX_PAGES_PER_SCAN: int = 100_000
    SYNC_CHUNK_SIZE: int = 100  # Max domain rows per write transaction
    FIGHTER_SYNC_ENABLED: bool = True
    TOURNAMENT_SYNC_ENABLED: bool = True

    # Scheduler
    SCAN_INTERVAL_SECONDS: int = 2 * 60 * 60
    RUN_ONCE: bool = False

    # Database - canonical path under project-root data directory
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    @field_validator(
        "REDVILLAGE_API_URL",
        "NFT_INDEX_API_URL",
        mode="before",
    )
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text
        return text.rstrip("/")

    @field_validator("FIGHTER_CONTRACT_ADDRESS", mode="before")
    @classmethod
    def _normalize_contract_address(cls, value: object) -> object:
        if value is None:
            return value
        return str(value).strip().strip('"').strip("'").lower()

    @field_validator("MAX_CONCURRENT_REQUESTS", "TOURNAMENT_PAGE_SIZE", "SYNC_CHUNK_SIZE")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Normalize DB URL so worker cwd changes never split databases."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text

        # Convert relative SQLite paths to absolute project-root paths.
        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{prefix}:memory:"
            absolute = (
                Path(path_part).resolve()
                if path_part.startswith("/")
                else (_PROJECT_ROOT / path_part).resolve()
            )
            try:
                absolute.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                _LOGGER.warning(
                    "Could not create SQLite data directory",
                    extra={"path": str(absolute.parent), "error": str(exc)},
                )
            return f"{prefix}{absolute}"

        return text

    class Config:
        # Load project-root .env first (common workflow), then backend/.env
        # as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"


settings = Settings()
