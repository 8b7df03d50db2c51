"""可用端口查找（从基准端口向上找第一个可 bind 的 TCP 端口）。"""

from __future__ import annotations

import os
import socket

from daemon_bootstrap.shutdown.protocol import LOOPBACK_HOST

MIN_PORT = 1
MAX_PORT = 65535


class NoAvailablePortError(OSError):
    """在 [base, MAX_PORT] 范围内没有可用端口。"""


def new_listening_socket() -> socket.socket:
    """创建 TCP socket；非 Windows 平台开启 SO_REUSEADDR（与 bind 侧保持一致）。"""

    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    if os.name != "nt":
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    return s


def is_port_available(port: int, host: str = LOOPBACK_HOST) -> bool:
    """尝试 bind 一次来判断端口是否可用（立即释放）。"""

    try:
        with new_listening_socket() as s:
            s.bind((host, int(port)))
    except OSError:
        return False
    return True


def find_available_port(base: int, host: str = LOOPBACK_HOST) -> int:
    """
    返回 >= base 的第一个可用端口。

    异常：
    - ValueError：base 超出 [1, 65535]
    - NoAvailablePortError：没有可用端口
    """

    if not MIN_PORT <= int(base) <= MAX_PORT:
        raise ValueError(f"invalid base port: {base}")
    for port in range(int(base), MAX_PORT + 1):
        if is_port_available(port, host):
            return port
    raise NoAvailablePortError(f"no available port at or above {base} on {host}")
