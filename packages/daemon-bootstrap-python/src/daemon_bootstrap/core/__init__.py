"""核心契约：错误分类。"""

from __future__ import annotations

from daemon_bootstrap.core.errors import (
    AcceptError,
    BootstrapError,
    BootstrapIssue,
    ConfigLoadError,
    InstallationError,
    InstantiationError,
    ListenerSetupError,
    PhaseError,
    ServerNotRunningError,
    TypeLookupError,
)

__all__ = [
    "AcceptError",
    "BootstrapError",
    "BootstrapIssue",
    "ConfigLoadError",
    "InstallationError",
    "InstantiationError",
    "ListenerSetupError",
    "PhaseError",
    "ServerNotRunningError",
    "TypeLookupError",
]
