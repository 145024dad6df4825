from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import List, Optional
import os
import logging
import sys

logger = logging.getLogger(__name__)


def get_env_file() -> Optional[str]:
    """
    Determine which .env file to use based on APP_ENV environment variable.

    Available environments:
    - local: Development/testing environment (.env.local)
    - prod: Production environment (.env.prod)

    When APP_ENV is not set, settings come from the process environment only.

    :return: Path to the .env file to load, or None
    :raises SystemExit: If APP_ENV is invalid or its file is missing
    """
    app_env = os.getenv("APP_ENV", "").lower().strip()

    valid_envs = ["local", "prod"]

    if not app_env:
        return None

    if app_env not in valid_envs:
        error_msg = (
            "\n" + "="*70 + "\n"
            f"ERROR: Invalid APP_ENV value: '{app_env}'\n\n"
            f"Valid environments: {', '.join(valid_envs)}\n\n"
            "Please set APP_ENV to one of the valid values:\n"
            "  - APP_ENV=local (for development/testing)\n"
            "  - APP_ENV=prod (for production)\n"
            "="*70
        )
        logger.error(error_msg)
        sys.exit(1)

    env_file = f".env.{app_env}"

    if not os.path.exists(env_file):
        error_msg = (
            "\n" + "="*70 + "\n"
            f"ERROR: Configuration file not found: {env_file}\n\n"
            f"APP_ENV is set to '{app_env}' but {env_file} does not exist.\n\n"
            "Please create the configuration file:\n"
            f"  1. Copy .env.example to {env_file}\n"
            f"  2. Fill in the folder paths and classifier URL\n"
            "="*70
        )
        logger.error(error_msg)
        sys.exit(1)

    logger.info(f"Loading configuration from {env_file} (APP_ENV={app_env})")
    return env_file


class Settings(BaseSettings):
    # API
    API_TITLE: str = "Scanflow Document Triage Service"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Inbox discovery, classification routing, review and disposal of scanned documents"
    CORS_ORIGINS: List[str] = ["*"]

    # Folders and snapshot
    DATA_DIR: Path = Path("./data")  # Root of the managed status folders
    SNAPSHOT_FILE: Optional[Path] = None  # Defaults to DATA_DIR/documents.json
    MAX_UPLOAD_BYTES: int = 25 * 1024 * 1024

    # Classifier service
    CLASSIFIER_URL: str = "http://localhost:8080"
    CLASSIFIER_TIMEOUT: float = 10.0  # Seconds; a timeout counts as "classifier unreachable"

    # Routing policy
    REVIEW_THRESHOLD: float = 0.60  # Below this a document needs manual review
    AUTO_PROCESS_THRESHOLD: float = 0.80  # At or above this a document is processed automatically

    # Sweepers
    SWEEPERS_ENABLED: bool = True
    DISCOVERY_INTERVAL_SECONDS: float = 5.0
    PURGE_INTERVAL_SECONDS: float = 6 * 60 * 60
    RETENTION_DAYS: float = 30.0  # Soft-deleted documents are purged after this many days

    # Concurrency
    LOCK_TIMEOUT: float = 30.0  # Max seconds to wait for a document that is mid-transition

    DEFAULT_ACTOR: str = "system"

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=get_env_file(), extra='ignore')

    @property
    def snapshot_path(self) -> Path:
        return self.SNAPSHOT_FILE or self.DATA_DIR / "documents.json"

    def log_config_summary(self):
        """Log configuration summary."""
        current_env = os.getenv("APP_ENV", "unset")

        logger.info("=" * 70)
        logger.info(f"Configuration Summary (Environment: {current_env})")
        logger.info("=" * 70)
        logger.info(f"Data directory: {self.DATA_DIR.resolve()}")
        logger.info(f"Snapshot file: {self.snapshot_path}")
        logger.info(f"Classifier URL: {self.CLASSIFIER_URL} (timeout {self.CLASSIFIER_TIMEOUT}s)")
        logger.info(f"Routing thresholds: review < {self.REVIEW_THRESHOLD}, auto-process >= {self.AUTO_PROCESS_THRESHOLD}")
        logger.info(f"Sweepers: {'Enabled' if self.SWEEPERS_ENABLED else 'Disabled'}")
        if self.SWEEPERS_ENABLED:
            logger.info(f"Inbox discovery every {self.DISCOVERY_INTERVAL_SECONDS}s")
            logger.info(f"Retention purge every {self.PURGE_INTERVAL_SECONDS}s (retention: {self.RETENTION_DAYS} days)")
        logger.info("=" * 70)


# Initialize settings singleton
settings = Settings()
