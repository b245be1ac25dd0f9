"""
bootstrap/ - Configuration, wiring and entry points

Builds a CacheCoordinator from a ReportSyncConfig and exposes the
`reportsync` command line.
"""

from .config import (
    CacheConfig,
    FetchConfig,
    IsolationConfig,
    MutationConfig,
    InvalidationConfig,
    LoggingConfig,
    ReportSyncConfig,
    load_config,
)

from .app import (
    CacheCoordinator,
    CoordinatorState,
    CoordinatorStatus,
)

from .entrypoints import (
    JSONFormatter,
    setup_logging,
    cli_main,
)

__all__ = [
    # Config
    "CacheConfig",
    "FetchConfig",
    "IsolationConfig",
    "MutationConfig",
    "InvalidationConfig",
    "LoggingConfig",
    "ReportSyncConfig",
    "load_config",
    # App
    "CacheCoordinator",
    "CoordinatorState",
    "CoordinatorStatus",
    # Entry points
    "JSONFormatter",
    "setup_logging",
    "cli_main",
]
