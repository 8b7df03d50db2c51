"""
进程退出码（稳定枚举，供运维/自动化消费）。

说明：
- 每个致命条件对应一个唯一退出码；数值一经发布不得改变。
- stop 与 destroy 共用 `STOP`。
- `VERIFICATION` 只用于 `verify` 子命令；`configure` 期间的校验失败不是致命错误。
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """daemon-bootstrap 的进程退出码。"""

    OK = 0
    CLASS_LOOKUP = 1
    INSTANTIATION = 2
    INITIALIZATION = 4
    START = 5
    STOP = 6
    CONFIG_LOAD = 7
    VERIFICATION = 8
    BAD_ARGUMENTS = 10
    NOT_RUNNING = 11
    UNKNOWN = 12
    LISTENER_BIND = 14
    ACCEPT = 15
