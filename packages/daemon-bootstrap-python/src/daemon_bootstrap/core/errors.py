"""
bootstrap 错误分类（异常类型）。

说明：
- 所有致命条件都以 `BootstrapError` 子类的形式向上抛出，并携带稳定的 `exit_code`；
- 只有顶层入口（`daemon_bootstrap.cli.main`）负责把异常转换为进程退出码，
  核心生命周期逻辑因此可以在测试进程内直接断言，而不会终止解释器；
- `code` 为英文大写下划线的稳定错误码，`message` 为英文可读信息。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from daemon_bootstrap.exit_codes import ExitCode


@dataclass(frozen=True)
class BootstrapIssue:
    """结构化问题对象（可 JSON 序列化；用于 verify 报告与 CLI 输出）。"""

    code: str
    message: str
    details: Dict[str, Any]


class BootstrapError(Exception):
    """bootstrap 结构化错误基类。"""

    default_exit_code: ExitCode = ExitCode.UNKNOWN

    def __init__(
        self,
        *,
        code: str,
        message: str,
        details: Dict[str, Any] | None = None,
        exit_code: Optional[ExitCode] = None,
    ) -> None:
        """创建 bootstrap 错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        - `exit_code`：对应的进程退出码；缺省时使用子类的 `default_exit_code`
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.exit_code = ExitCode(exit_code if exit_code is not None else self.default_exit_code)

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> BootstrapIssue:
        """把异常转换为可序列化问题对象。"""

        return BootstrapIssue(code=self.code, message=self.message, details=dict(self.details))


class InstallationError(BootstrapError):
    """安装目录结构校验失败（目录/文件缺失或权限不足）。"""

    default_exit_code = ExitCode.VERIFICATION


class ConfigLoadError(BootstrapError):
    """bootstrap 配置文件读取/解析/校验失败。"""

    default_exit_code = ExitCode.CONFIG_LOAD


class TypeLookupError(BootstrapError):
    """按名称解析应用类型失败。"""

    default_exit_code = ExitCode.CLASS_LOOKUP


class InstantiationError(BootstrapError):
    """应用类型实例化失败（构造函数抛错或实例不满足 DaemonApplication）。"""

    default_exit_code = ExitCode.INSTANTIATION


class PhaseError(BootstrapError):
    """生命周期阶段调用（init/start/stop/destroy）失败。"""

    def __init__(
        self,
        *,
        phase: str,
        code: str,
        message: str,
        exit_code: ExitCode,
        details: Dict[str, Any] | None = None,
    ) -> None:
        """
        参数：
        - phase：失败的阶段名（init/start/stop/destroy）
        - 其余参数同 `BootstrapError`
        """

        merged = dict(details or {})
        merged.setdefault("phase", phase)
        super().__init__(code=code, message=message, details=merged, exit_code=exit_code)
        self.phase = phase


class ListenerSetupError(BootstrapError):
    """shutdown listener 建立失败（端口查找、端口文件写入、bind）。"""

    default_exit_code = ExitCode.LISTENER_BIND


class AcceptError(BootstrapError):
    """accept 阶段出现不可恢复的 I/O 错误。"""

    default_exit_code = ExitCode.ACCEPT


class ServerNotRunningError(BootstrapError):
    """发送端前置条件失败：端口文件不存在或不可解析（server 未运行）。"""

    default_exit_code = ExitCode.NOT_RUNNING
