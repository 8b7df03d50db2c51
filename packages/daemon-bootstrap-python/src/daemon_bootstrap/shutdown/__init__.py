"""
本地 shutdown 通道。

实现定位：
- listener 把端口号写入 `<run_dir>/shutdownPort`，在 loopback 上等待一条 `SHUTDOWN` 命令；
- client（另一个进程）读取端口文件并发送命令；
- 不追求网络暴露；安全边界为 loopback + run 目录权限。
"""

from __future__ import annotations

from daemon_bootstrap.shutdown.client import ShutdownClient, send_shutdown_command
from daemon_bootstrap.shutdown.listener import ShutdownListener
from daemon_bootstrap.shutdown.ports import NoAvailablePortError, find_available_port
from daemon_bootstrap.shutdown.protocol import (
    DEFAULT_BASE_PORT,
    SHUTDOWN_COMMAND,
    SHUTDOWN_PORT_FILENAME,
    get_shutdown_paths,
)

__all__ = [
    "DEFAULT_BASE_PORT",
    "NoAvailablePortError",
    "SHUTDOWN_COMMAND",
    "SHUTDOWN_PORT_FILENAME",
    "ShutdownClient",
    "ShutdownListener",
    "find_available_port",
    "get_shutdown_paths",
    "send_shutdown_command",
]
