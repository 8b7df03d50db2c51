"""
shutdown listener：阻塞等待一条合法的 `SHUTDOWN` 命令后返回。

行为：
- 从基准端口向上选择第一个可用的 loopback 端口；
- 若端口文件已存在，视为陈旧文件：记录 warning 后删除（从不信任它）；
- 写入新的端口文件，并注册进程退出时的 best-effort 清理（atexit）；
- 在 loopback 上 listen（backlog=1），逐个 accept 连接：
  - 每个连接 10 秒读超时，逐字节读取，直到控制字符/EOF 或字节预算耗尽；
  - 读完立即关闭连接；
  - 与 `SHUTDOWN` 精确比较：命中则退出循环；否则记录 warning 并继续等待；
- 退出时：清除 `ready`，关闭监听 socket，删除端口文件，撤销 atexit 注册。

错误：
- 建立 listener 过程中的 I/O 错误 -> `ListenerSetupError`（退出码 LISTENER_BIND）；
- accept 的瞬时拒绝（PermissionError/ConnectionAbortedError）-> warning 后重试；
- 其它 accept 错误 -> `AcceptError`（退出码 ACCEPT）。
"""

from __future__ import annotations

import atexit
import contextlib
import logging
import random
import socket
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from daemon_bootstrap.config.loader import ShutdownSettings
from daemon_bootstrap.core.errors import AcceptError, ListenerSetupError
from daemon_bootstrap.shutdown.ports import find_available_port, new_listening_socket
from daemon_bootstrap.shutdown.protocol import (
    SHUTDOWN_COMMAND,
    get_shutdown_paths,
    remove_port_file,
    write_port_file,
)

logger = logging.getLogger(__name__)

# 控制字符（< 空格）终止读取；只有 EOF/CR/LF 作为终止符时命令才可能被接受
_SPACE = 0x20
_LINE_TERMINATORS = (0x0A, 0x0D)


class ShutdownListener:
    """
    单 run 目录的 shutdown listener。

    参数：
    - run_dir：端口文件所在目录
    - settings：shutdown 参数（端口、超时、字节预算）
    - rng：可选随机源；缺省时首次使用时以当前时间为种子创建
    """

    def __init__(
        self,
        *,
        run_dir: Path,
        settings: Optional[ShutdownSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._paths = get_shutdown_paths(run_dir=run_dir)
        self._settings = settings or ShutdownSettings()
        self._rng = rng
        self._port: Optional[int] = None
        self.ready = threading.Event()

    @property
    def port(self) -> Optional[int]:
        """当前监听端口（listen 建立之前为 None）。"""

        return self._port

    @property
    def port_file(self) -> Path:
        return self._paths.port_file

    def command_budget(self) -> int:
        """单个连接的读取预算：基准值 + 有界随机余量。"""

        if self._rng is None:
            self._rng = random.Random(time.time_ns())
        slack = int(self._settings.budget_slack_bytes)
        extra = self._rng.randint(0, slack) if slack > 0 else 0
        return int(self._settings.max_command_bytes) + extra

    def _cleanup_port_file(self) -> None:
        """删除端口文件（atexit 与正常退出共用）。"""

        if remove_port_file(self._paths.port_file):
            logger.info("Deleted shutdown port file: %s (port %s)", self._paths.port_file, self._port)

    def _prepare_port_file(self, stack: contextlib.ExitStack) -> int:
        """选择端口、处理陈旧端口文件、写入新端口文件并注册清理。"""

        host = self._settings.host
        try:
            port = find_available_port(self._settings.base_port, host)
            port_file = self._paths.port_file
            if port_file.exists():
                logger.warning(
                    "Shutdown port file %s exists. "
                    "Either an instance is already running or a previous run exited abruptly.",
                    port_file,
                )
                remove_port_file(port_file)
            write_port_file(port_file, port)
        except (OSError, ValueError) as exc:
            logger.error("Failed to setup shutdown port", exc_info=True)
            raise ListenerSetupError(
                code="SHUTDOWN_PORT_SETUP_FAILED",
                message="Failed to setup shutdown port",
                details={"run_dir": str(self._paths.run_dir), "reason": str(exc)},
            ) from exc

        self._port = port
        # 进程异常退出时 best-effort 删除端口文件；listen 返回时撤销注册
        atexit.register(self._cleanup_port_file)
        stack.callback(atexit.unregister, self._cleanup_port_file)
        stack.callback(self._cleanup_port_file)
        return port

    def _bind(self, port: int) -> socket.socket:
        """在 loopback 上 bind + listen(backlog=1)。"""

        host = self._settings.host
        server = new_listening_socket()
        try:
            server.bind((host, port))
            server.listen(1)
        except OSError as exc:
            server.close()
            logger.error("server wait_for_shutdown: create[%s]", port, exc_info=True)
            raise ListenerSetupError(
                code="SHUTDOWN_BIND_FAILED",
                message=f"Failed to bind shutdown listener on {host}:{port}",
                details={"host": host, "port": port, "reason": str(exc)},
            ) from exc
        logger.debug("waiting for shutdown command on port = %s", port)
        return server

    def read_command(self, conn: socket.socket) -> Tuple[str, Optional[int]]:
        """
        从连接中逐字节读取命令。

        返回：
        - (command, terminator)：terminator 为终止读取的控制字节；EOF/读错误/预算耗尽时为 None
        """

        conn.settimeout(float(self._settings.read_timeout_sec))
        expected = self.command_budget()
        buf = bytearray()
        terminator: Optional[int] = None
        while expected > 0:
            try:
                chunk = conn.recv(1)
            except OSError as exc:
                # 读超时/连接错误按 EOF 处理
                logger.warning("Shutdown listener read failed: %s", exc)
                chunk = b""
            if not chunk:
                break
            ch = chunk[0]
            if ch < _SPACE:
                terminator = ch
                break
            buf.append(ch)
            expected -= 1
        return buf.decode("latin-1"), terminator

    @staticmethod
    def is_shutdown_command(command: str, terminator: Optional[int]) -> bool:
        """精确匹配 `SHUTDOWN`，且终止符只能是 EOF/CR/LF。"""

        if command != SHUTDOWN_COMMAND:
            return False
        return terminator is None or terminator in _LINE_TERMINATORS

    def _accept_loop(self, server: socket.socket) -> None:
        while True:
            try:
                conn, _addr = server.accept()
            except (PermissionError, ConnectionAbortedError) as exc:
                logger.warning("Shutdown listener accept rejected (retrying): %s", exc, exc_info=True)
                continue
            except OSError as exc:
                logger.error("Shutdown listener accept failed on port %s", self._port, exc_info=True)
                raise AcceptError(
                    code="SHUTDOWN_ACCEPT_FAILED",
                    message="Shutdown listener accept failed",
                    details={"port": self._port, "reason": str(exc)},
                ) from exc

            with conn:
                command, terminator = self.read_command(conn)

            if self.is_shutdown_command(command, terminator):
                logger.info("Shutdown command received on port %s", self._port)
                return
            logger.warning("Invalid shutdown command %r received on port %s", command, self._port)

    def listen(self) -> None:
        """
        阻塞直到收到合法的 shutdown 命令。

        异常：
        - ListenerSetupError：端口选择/端口文件/bind 失败
        - AcceptError：不可恢复的 accept 错误
        """

        self.ready.clear()
        with contextlib.ExitStack() as stack:
            port = self._prepare_port_file(stack)
            server = self._bind(port)
            stack.callback(server.close)
            stack.callback(self.ready.clear)
            self.ready.set()
            self._accept_loop(server)
