"""
daemon-bootstrap：可插拔长驻服务应用的生命周期引导器。

对外入口：
- `Bootstrapper`：configure -> bind_boundary -> init -> start -> 等待 shutdown -> stop -> destroy
- `InstallLayout`：安装目录布局与校验
- `ExecutionBoundary`：隔离的模块解析作用域
- `ShutdownListener` / `ShutdownClient`：本地 shutdown 通道
"""

from __future__ import annotations

from daemon_bootstrap.application import DaemonApplication
from daemon_bootstrap.bootstrapper import Bootstrapper, LifecyclePhase
from daemon_bootstrap.boundary import SYSTEM_BOUNDARY, ExecutionBoundary, create_boundary, current_boundary
from daemon_bootstrap.exit_codes import ExitCode
from daemon_bootstrap.layout import InstallLayout
from daemon_bootstrap.shutdown import ShutdownClient, ShutdownListener, send_shutdown_command

__version__ = "0.1.0"

__all__ = [
    "Bootstrapper",
    "DaemonApplication",
    "ExecutionBoundary",
    "ExitCode",
    "InstallLayout",
    "LifecyclePhase",
    "SYSTEM_BOUNDARY",
    "ShutdownClient",
    "ShutdownListener",
    "__version__",
    "create_boundary",
    "current_boundary",
    "send_shutdown_command",
]
