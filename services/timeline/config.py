"""
Configuration management for the repository timeline service.

Loads and validates settings from timeline_config.yaml with environment
variable overrides. Tokens always come from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger


@dataclass
class GitHubConfig:
    """Upstream API settings."""
    api_url: str = "https://api.github.com"
    tokens: list[str] = field(default_factory=list)
    per_page: int = 100
    max_pages: int = 10
    metadata_max_pages: int = 50
    timeout: float = 30.0


@dataclass
class CacheConfig:
    """Edge store settings."""
    path: str = "./cache/timeline.db"
    staleness_seconds: int = 3600
    max_items_per_cycle: int = 45
    summary_threshold: int = 100
    default_mode: str = "pull_request"  # or "commit"


@dataclass
class SchedulerConfig:
    """Background refresh pool settings."""
    enabled: bool = True
    max_workers: int = 4
    sweep_interval: int = 0  # seconds, 0 disables the stale sweep


@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 8787
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    default_page_size: int = 40


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = "./logs/timeline.log"
    max_size_mb: int = 50
    backup_count: int = 5


@dataclass
class Config:
    """
    Main configuration container.

    Loads from timeline_config.yaml with optional environment variable overrides.
    """
    github: GitHubConfig = field(default_factory=GitHubConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to timeline_config.yaml. If None, tries default
                locations and falls back to built-in defaults.

        Returns:
            Config instance with loaded settings.
        """
        if config_path is None:
            candidates = [
                Path("timeline_config.yaml"),
                Path(__file__).parent.parent.parent / "timeline_config.yaml",
                Path("/etc/timeline/timeline_config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls._from_dict({})

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from {config_path}")

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "github" in data:
            gh = data["github"]
            config.github = GitHubConfig(
                api_url=gh.get("api_url", config.github.api_url),
                per_page=gh.get("per_page", config.github.per_page),
                max_pages=gh.get("max_pages", config.github.max_pages),
                metadata_max_pages=gh.get("metadata_max_pages", config.github.metadata_max_pages),
                timeout=gh.get("timeout", config.github.timeout),
            )

        if "cache" in data:
            cache = data["cache"]
            config.cache = CacheConfig(
                path=cache.get("path", config.cache.path),
                staleness_seconds=cache.get("staleness_seconds", config.cache.staleness_seconds),
                max_items_per_cycle=cache.get("max_items_per_cycle", config.cache.max_items_per_cycle),
                summary_threshold=cache.get("summary_threshold", config.cache.summary_threshold),
                default_mode=cache.get("default_mode", config.cache.default_mode),
            )

        if "scheduler" in data:
            sched = data["scheduler"]
            config.scheduler = SchedulerConfig(
                enabled=sched.get("enabled", config.scheduler.enabled),
                max_workers=sched.get("max_workers", config.scheduler.max_workers),
                sweep_interval=sched.get("sweep_interval", config.scheduler.sweep_interval),
            )

        if "server" in data:
            srv = data["server"]
            config.server = ServerConfig(
                host=srv.get("host", config.server.host),
                port=srv.get("port", config.server.port),
                cors_origins=srv.get("cors_origins", config.server.cors_origins),
                default_page_size=srv.get("default_page_size", config.server.default_page_size),
            )

        if "logging" in data:
            log_cfg = data["logging"]
            config.logging = LoggingConfig(
                level=log_cfg.get("level", config.logging.level),
                file=log_cfg.get("file", config.logging.file),
                max_size_mb=log_cfg.get("max_size_mb", config.logging.max_size_mb),
                backup_count=log_cfg.get("backup_count", config.logging.backup_count),
            )

        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if os.getenv("GITHUB_TOKENS"):
            self.github.tokens = [
                t.strip() for t in os.getenv("GITHUB_TOKENS").split(",") if t.strip()
            ]
        if os.getenv("GITHUB_API_URL"):
            self.github.api_url = os.getenv("GITHUB_API_URL")

        if os.getenv("TIMELINE_DB_PATH"):
            self.cache.path = os.getenv("TIMELINE_DB_PATH")

        if os.getenv("TIMELINE_HOST"):
            self.server.host = os.getenv("TIMELINE_HOST")
        if os.getenv("TIMELINE_PORT"):
            self.server.port = int(os.getenv("TIMELINE_PORT"))

        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.getenv("LOG_LEVEL")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.
        Empty list means configuration is valid.
        """
        errors = []

        if not self.github.tokens:
            errors.append("No GitHub tokens configured (set GITHUB_TOKENS)")
        if not 1 <= self.github.per_page <= 100:
            errors.append("github.per_page must be between 1 and 100")
        if self.github.max_pages < 1:
            errors.append("github.max_pages must be at least 1")

        if self.cache.staleness_seconds < 0:
            errors.append("cache.staleness_seconds cannot be negative")
        if self.cache.max_items_per_cycle < 1:
            errors.append("cache.max_items_per_cycle must be at least 1")
        if self.cache.default_mode not in ("pull_request", "commit"):
            errors.append("cache.default_mode must be pull_request or commit")

        if self.scheduler.max_workers < 1:
            errors.append("scheduler.max_workers must be at least 1")
        if self.scheduler.sweep_interval < 0:
            errors.append("scheduler.sweep_interval cannot be negative")

        return errors
