"""
shutdown 命令发送端（由另一个短生命周期进程调用）。

语义：
- 端口未知时从端口文件读取；文件不存在 -> `ServerNotRunningError`（前置条件失败，不发起连接，不重试）；
- 连接 loopback 上的端口，逐字节写出 `SHUTDOWN`，flush；
- 无论成功与否，先关闭输出流、再关闭 socket。
"""

from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import Optional

from daemon_bootstrap.core.errors import ServerNotRunningError
from daemon_bootstrap.shutdown.protocol import (
    LOOPBACK_HOST,
    SHUTDOWN_COMMAND,
    get_shutdown_paths,
    read_port_file,
)

logger = logging.getLogger(__name__)


class ShutdownClient:
    """
    shutdown 命令客户端。

    参数：
    - run_dir：端口文件所在目录
    - host：listener 地址（默认 127.0.0.1）
    - port：已知端口；为 None 时在首次发送前从端口文件读取
    - timeout_sec：连接/写入超时
    """

    def __init__(
        self,
        *,
        run_dir: Path,
        host: str = LOOPBACK_HOST,
        port: Optional[int] = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self._paths = get_shutdown_paths(run_dir=run_dir)
        self._host = host
        self._port = port
        self._timeout_sec = float(timeout_sec)

    @property
    def port(self) -> Optional[int]:
        return self._port

    def _resolve_port(self) -> int:
        """读取端口文件；不存在或内容非法时抛 `ServerNotRunningError`。"""

        port_file = self._paths.port_file
        if not port_file.exists():
            msg = (
                "The server does not seem to be running!  The shutdown port file\n"
                f"{port_file} does not exist!"
            )
            logger.error(msg)
            raise ServerNotRunningError(
                code="SHUTDOWN_PORT_FILE_MISSING",
                message=msg,
                details={"port_file": str(port_file)},
            )
        try:
            return read_port_file(port_file)
        except (OSError, ValueError) as exc:
            logger.error("Unreadable shutdown port file %s", port_file, exc_info=True)
            raise ServerNotRunningError(
                code="SHUTDOWN_PORT_FILE_INVALID",
                message=f"The shutdown port file {port_file} is not readable: {exc}",
                details={"port_file": str(port_file), "reason": str(exc)},
            ) from exc

    def send_shutdown_command(self) -> int:
        """
        发送 shutdown 命令。

        返回：
        - int：命令发往的端口

        异常：
        - ServerNotRunningError：端口文件缺失/非法
        - OSError：连接或写入失败（例如 listener 已不在，连接被拒绝）
        """

        if self._port is None:
            self._port = self._resolve_port()

        port = self._port
        with socket.create_connection((self._host, port), timeout=self._timeout_sec) as sock:
            with sock.makefile("wb") as stream:
                for b in SHUTDOWN_COMMAND.encode("ascii"):
                    stream.write(bytes((b,)))
                stream.flush()
        logger.debug("Sent shutdown command to %s:%s", self._host, port)
        return port


def send_shutdown_command(*, run_dir: Path, host: str = LOOPBACK_HOST, port: Optional[int] = None) -> int:
    """便捷函数：创建 `ShutdownClient` 并发送一次 shutdown 命令。"""

    return ShutdownClient(run_dir=run_dir, host=host, port=port).send_shutdown_command()
