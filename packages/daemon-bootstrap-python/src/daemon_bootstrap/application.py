"""
可插拔应用（DaemonApplication）协议。

说明：
- 具体实现由安装目录中的库制品提供，bootstrap 只按名称解析并调用四个生命周期方法；
- 协议是 runtime-checkable 的结构化类型，不要求继承。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from daemon_bootstrap.layout import InstallLayout


@runtime_checkable
class DaemonApplication(Protocol):
    """由 bootstrap 管理生命周期的应用。"""

    def init(self, layout: "InstallLayout", args: Sequence[str]) -> Any: ...

    def start(self) -> Any: ...

    def stop(self, args: Sequence[str]) -> Any: ...

    def destroy(self) -> Any: ...
