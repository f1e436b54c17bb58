"""
Configuration for the timeline viewer client.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Configuration for the timeline viewer."""

    # Edge service
    TIMELINE_API_URL: str = os.getenv("TIMELINE_API_URL", "http://localhost:8787").rstrip("/")
    EDGE_TIMEOUT: float = float(os.getenv("EDGE_TIMEOUT", "30"))
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "40"))

    # Client cache
    CLIENT_CACHE_PATH: str = os.getenv("CLIENT_CACHE_PATH", "data/timeline_client.db")
    # Size cap for the client cache; unset means unbounded
    CLIENT_CACHE_MAX_MB: Optional[float] = (
        float(os.getenv("CLIENT_CACHE_MAX_MB")) if os.getenv("CLIENT_CACHE_MAX_MB") else None
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def configure_logging(cls) -> None:
        """Apply LOG_LEVEL to the root logger."""
        logging.basicConfig(level=cls.LOG_LEVEL.upper(), format="%(levelname)s %(name)s %(message)s")
