"""
Application Configuration
=========================

Runtime settings read from environment variables. A ``.env`` file in the
working directory is loaded first when present (local development); in the
Function App the values come from application settings.

Environment Variables:
- FIRESTORE_PROJECT_ID: Firestore project holding the item collection.
  When unset, an in-memory store is used.
- FIRESTORE_DATABASE: Database id (default: ``(default)``)
- FIRESTORE_API_KEY: Web API key sent with REST calls
- FIRESTORE_BASE_URL: REST endpoint (default: public Firestore endpoint)
- CHROMAFLOW_COLLECTION: Collection name (default: ``products``)
- CHROMAFLOW_CACHE_PATH: Local fallback cache file
- CHROMAFLOW_ADMIN_UID: User id allowed to import and save
- CHROMAFLOW_POLL_INTERVAL: Seconds between change polls (default: 5)
- CHROMAFLOW_STORE_MAX_RETRIES: HTTP retries for transient errors (default: 3)
- CHROMAFLOW_STORE_TIMEOUT: HTTP timeout in seconds (default: 30)
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://firestore.googleapis.com/v1"
DEFAULT_COLLECTION = "products"
DEFAULT_CACHE_FILE = "chromaflow_db_v3.json"


def _default_cache_path() -> str:
    return str(Path.home() / ".chromaflow" / DEFAULT_CACHE_FILE)


@dataclass
class AppConfig:
    """Configuration for the tracker's persistence and access rules."""

    project_id: Optional[str] = None
    database: str = "(default)"
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    collection: str = DEFAULT_COLLECTION
    cache_path: str = ""
    admin_uid: Optional[str] = None

    # Change polling
    poll_interval: float = 5.0

    # HTTP settings
    max_retries: int = 3
    retry_backoff_factor: float = 0.5
    retry_status_codes: tuple = (429, 500, 502, 503, 504)
    timeout: float = 30.0

    def __post_init__(self):
        if not self.cache_path:
            self.cache_path = _default_cache_path()

    @property
    def uses_remote_store(self) -> bool:
        return bool(self.project_id)

    @classmethod
    def from_environment(cls) -> "AppConfig":
        """Load configuration from environment variables (and ``.env``)."""
        load_dotenv()

        return cls(
            project_id=os.environ.get("FIRESTORE_PROJECT_ID") or None,
            database=os.environ.get("FIRESTORE_DATABASE", "(default)"),
            api_key=os.environ.get("FIRESTORE_API_KEY") or None,
            base_url=os.environ.get("FIRESTORE_BASE_URL", DEFAULT_BASE_URL),
            collection=os.environ.get("CHROMAFLOW_COLLECTION", DEFAULT_COLLECTION),
            cache_path=os.environ.get("CHROMAFLOW_CACHE_PATH", ""),
            admin_uid=os.environ.get("CHROMAFLOW_ADMIN_UID") or None,
            poll_interval=float(os.environ.get("CHROMAFLOW_POLL_INTERVAL", "5")),
            max_retries=int(os.environ.get("CHROMAFLOW_STORE_MAX_RETRIES", "3")),
            timeout=float(os.environ.get("CHROMAFLOW_STORE_TIMEOUT", "30")),
        )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Process-wide configuration, read once."""
    config = AppConfig.from_environment()
    if not config.uses_remote_store:
        logger.warning("FIRESTORE_PROJECT_ID not configured - using in-memory document store")
    return config


def reset_config() -> None:
    """Forget the cached configuration (for testing)."""
    get_config.cache_clear()
