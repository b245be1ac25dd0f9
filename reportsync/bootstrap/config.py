"""
bootstrap/config.py - Coordinator configuration

Configuration loading from JSON files, environment variables and defaults.
One dataclass per concern; durations are in seconds.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path
import os
import json
import logging

logger = logging.getLogger("bootstrap.config")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class CacheConfig:
    """Cache housekeeping."""

    stale_after_s: float = 120.0
    gc_after_s: float = 300.0

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(
            stale_after_s=float(os.getenv("REPORTSYNC_STALE_AFTER", "120")),
            gc_after_s=float(os.getenv("REPORTSYNC_GC_AFTER", "300")),
        )


@dataclass
class FetchConfig:
    """Read-miss fetch retries."""

    max_retries: int = 2
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 10.0

    @classmethod
    def from_env(cls) -> "FetchConfig":
        return cls(
            max_retries=int(os.getenv("REPORTSYNC_FETCH_MAX_RETRIES", "2")),
            retry_base_delay_s=float(os.getenv("REPORTSYNC_FETCH_RETRY_BASE", "1.0")),
            retry_max_delay_s=float(os.getenv("REPORTSYNC_FETCH_RETRY_MAX", "10.0")),
        )


@dataclass
class IsolationConfig:
    """Identity isolation and purges."""

    debounce_window_s: float = 1.0
    purge_settle_s: float = 0.1
    max_purge_attempts: int = 3
    partial_purge_enabled: bool = True
    volatile_resources: List[str] = field(default_factory=lambda: ["reports", "evaluations"])
    volatile_hierarchy_views: List[str] = field(
        default_factory=lambda: ["managerReports", "userDetails"]
    )

    @classmethod
    def from_env(cls) -> "IsolationConfig":
        volatile = os.getenv("REPORTSYNC_VOLATILE_RESOURCES", "reports,evaluations")
        return cls(
            debounce_window_s=float(os.getenv("REPORTSYNC_DEBOUNCE_WINDOW", "1.0")),
            purge_settle_s=float(os.getenv("REPORTSYNC_PURGE_SETTLE", "0.1")),
            max_purge_attempts=int(os.getenv("REPORTSYNC_MAX_PURGE_ATTEMPTS", "3")),
            partial_purge_enabled=_env_bool("REPORTSYNC_PARTIAL_PURGE", "true"),
            volatile_resources=[r for r in volatile.split(",") if r],
        )


@dataclass
class MutationConfig:
    """Mutation pipeline."""

    settle_delay_s: float = 1.5

    @classmethod
    def from_env(cls) -> "MutationConfig":
        return cls(
            settle_delay_s=float(os.getenv("REPORTSYNC_SETTLE_DELAY", "1.5")),
        )


@dataclass
class InvalidationConfig:
    """Post-mutation reconciliation."""

    reconcile_timeout_s: float = 5.0
    sweep_delay_s: float = 1.0
    sweep_timeout_s: float = 3.0

    @classmethod
    def from_env(cls) -> "InvalidationConfig":
        return cls(
            reconcile_timeout_s=float(os.getenv("REPORTSYNC_RECONCILE_TIMEOUT", "5.0")),
            sweep_delay_s=float(os.getenv("REPORTSYNC_SWEEP_DELAY", "1.0")),
            sweep_timeout_s=float(os.getenv("REPORTSYNC_SWEEP_TIMEOUT", "3.0")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("REPORTSYNC_LOG_LEVEL", "INFO"),
            format=os.getenv("REPORTSYNC_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=os.getenv("REPORTSYNC_LOG_FILE"),
            json_logs=_env_bool("REPORTSYNC_JSON_LOGS", "false"),
        )


_SECTIONS = ("cache", "fetch", "isolation", "mutation", "invalidation", "logging")


@dataclass
class ReportSyncConfig:
    """Root configuration for a CacheCoordinator."""

    environment: str = "development"
    version: str = "1.0.0"

    cache: CacheConfig = field(default_factory=CacheConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    isolation: IsolationConfig = field(default_factory=IsolationConfig)
    mutation: MutationConfig = field(default_factory=MutationConfig)
    invalidation: InvalidationConfig = field(default_factory=InvalidationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "ReportSyncConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("REPORTSYNC_ENVIRONMENT", "development"),
            cache=CacheConfig.from_env(),
            fetch=FetchConfig.from_env(),
            isolation=IsolationConfig.from_env(),
            mutation=MutationConfig.from_env(),
            invalidation=InvalidationConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "ReportSyncConfig":
        """Load configuration from a JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "ReportSyncConfig":
        """Environment/defaults overridden by dictionary values."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]

        for section in _SECTIONS:
            if section not in data:
                continue
            target = getattr(config, section)
            for key, value in data[section].items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Unknown config key: {section}.{key}")

        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(filepath: str = None) -> ReportSyncConfig:
    """
    Load configuration from file or environment.

    Without a path, the default locations are tried in order and the
    environment is used when none exists.
    """
    if filepath:
        config = ReportSyncConfig.from_file(filepath)
    else:
        default_paths = [
            "./reportsync.json",
            "./config/reportsync.json",
            os.path.expanduser("~/.reportsync/config.json"),
        ]

        config = None
        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                config = ReportSyncConfig.from_file(path)
                break

        if config is None:
            config = ReportSyncConfig.from_env()

    logger.info(f"Configuration loaded: environment={config.environment}")
    return config
