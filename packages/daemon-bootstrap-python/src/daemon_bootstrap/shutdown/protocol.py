"""
shutdown 通道的协议常量与端口文件（coordination file）读写。

协议：
- 明文 TCP，仅 loopback；客户端写出 8 字节 ASCII `SHUTDOWN` 后关闭连接；
- 服务端不回写任何内容，只关闭连接（客户端只能通过 server 进程是否退出来观察结果）。

端口文件：
- `<run_dir>/shutdownPort`，内容为单行 ASCII 十进制端口号；
- 存在即意味着“已有实例在监听，或上次运行异常退出”。
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from pathlib import Path

SHUTDOWN_COMMAND = "SHUTDOWN"
SHUTDOWN_PORT_FILENAME = "shutdownPort"
LOOPBACK_HOST = "127.0.0.1"
DEFAULT_BASE_PORT = 30003


@dataclass(frozen=True)
class ShutdownPaths:
    """shutdown 通道相关路径。"""

    run_dir: Path
    port_file: Path


def get_shutdown_paths(*, run_dir: Path) -> ShutdownPaths:
    """
    获取 shutdown 通道路径（端口文件位于 run_dir 下）。

    参数：
    - run_dir：安装布局中的运行目录
    """

    rd = Path(run_dir).resolve()
    return ShutdownPaths(run_dir=rd, port_file=rd / SHUTDOWN_PORT_FILENAME)


def write_port_file(path: Path, port: int) -> None:
    """写入端口文件（覆盖；父目录不存在时创建）。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{int(port)}\n", encoding="ascii")


def read_port_file(path: Path) -> int:
    """
    读取端口文件中的端口号（只看第一行）。

    异常：
    - FileNotFoundError：文件不存在
    - ValueError：内容不是合法端口号
    """

    text = path.read_text(encoding="ascii", errors="replace")
    first = text.splitlines()[0].strip() if text.strip() else ""
    port = int(first)
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return port


def remove_port_file(path: Path) -> bool:
    """删除端口文件（不存在视为成功）；返回是否真的删除了文件。"""

    with contextlib.suppress(FileNotFoundError):
        path.unlink()
        return True
    return False
