"""
生命周期控制器（Bootstrapper）。

阶段（严格线性，不做乱序保护）：
    UNCONFIGURED -> CONFIGURED -> BOUND -> INITIALIZED -> STARTED -> STOPPED -> DESTROYED

语义：
- 每次调用应用的生命周期方法（以及类型解析/实例化）都在应用 boundary 激活的上下文中进行，
  调用结束（成功或失败）后恢复调用前的活动 boundary；
- 任何阶段失败：记录完整上下文日志 -> 进入 ABORTED -> 抛出携带退出码的 `BootstrapError`；
  控制器不支持失败阶段的重试/重启，终止进程由顶层入口负责；
- 安装目录校验失败只记日志，不阻断启动；配置加载失败是致命错误。
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from daemon_bootstrap.application import DaemonApplication
from daemon_bootstrap.boundary import ExecutionBoundary, create_boundary, current_boundary
from daemon_bootstrap.config.loader import BootstrapConfig, ShutdownSettings, load_config_file
from daemon_bootstrap.core.errors import (
    BootstrapError,
    ConfigLoadError,
    InstallationError,
    InstantiationError,
    PhaseError,
    TypeLookupError,
)
from daemon_bootstrap.exit_codes import ExitCode
from daemon_bootstrap.layout import InstallLayout
from daemon_bootstrap.shutdown.client import ShutdownClient
from daemon_bootstrap.shutdown.listener import ShutdownListener

logger = logging.getLogger(__name__)


class LifecyclePhase(str, Enum):
    """控制器状态。"""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    BOUND = "bound"
    INITIALIZED = "initialized"
    STARTED = "started"
    STOPPED = "stopped"
    DESTROYED = "destroyed"
    ABORTED = "aborted"


class Bootstrapper:
    """
    可插拔应用的生命周期控制器。

    参数：
    - env：环境变量映射（传给 `InstallLayout`，用于 var/log/run 目录覆盖；默认 os.environ）
    """

    def __init__(self, *, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = env
        self.phase = LifecyclePhase.UNCONFIGURED
        self._layout: Optional[InstallLayout] = None
        self._config: Optional[BootstrapConfig] = None
        self._boundary: Optional[ExecutionBoundary] = None
        self._parent: Optional[ExecutionBoundary] = None
        self._start: Optional[DaemonApplication] = None
        self._stop: Optional[DaemonApplication] = None
        self._listener: Optional[ShutdownListener] = None
        self._client: Optional[ShutdownClient] = None

    @property
    def layout(self) -> InstallLayout:
        assert self._layout is not None, "configure() has not been called"
        return self._layout

    @property
    def config(self) -> BootstrapConfig:
        assert self._config is not None, "configure() has not been called"
        return self._config

    @property
    def boundary(self) -> ExecutionBoundary:
        assert self._boundary is not None, "bind_boundary() has not been called"
        return self._boundary

    @property
    def parent_boundary(self) -> Optional[ExecutionBoundary]:
        return self._parent

    @property
    def start_class_name(self) -> str:
        return self.config.bootstrap.start_class

    @property
    def stop_class_name(self) -> str:
        return self.config.bootstrap.stop_class

    @property
    def start_instance(self) -> Optional[DaemonApplication]:
        return self._start

    @property
    def stop_instance(self) -> Optional[DaemonApplication]:
        return self._stop

    def _abort(self) -> None:
        self.phase = LifecyclePhase.ABORTED

    def configure(self, installation_base: Path | str) -> InstallLayout:
        """
        解析安装布局、校验目录结构并加载应用描述。

        异常：
        - ConfigLoadError：`conf/bootstrap.yaml` 不可读/不可解析/校验失败
        """

        logger.debug("Setting layout in Bootstrapper using base: %s", installation_base)
        if self._env is None:
            layout = InstallLayout(Path(installation_base))
        else:
            layout = InstallLayout(Path(installation_base), env=self._env)
        self._layout = layout

        try:
            layout.verify_installation()
        except InstallationError:
            logger.error("Installation verification failure!", exc_info=True)

        try:
            self._config = load_config_file(layout.bootstrap_config_file)
        except ConfigLoadError:
            logger.error("Failed while loading: %s", layout.bootstrap_config_file, exc_info=True)
            self._abort()
            raise

        self.phase = LifecyclePhase.CONFIGURED
        return layout

    def bind_boundary(self, parent: Optional[ExecutionBoundary] = None) -> ExecutionBoundary:
        """
        基于布局中的全部库制品构造应用 boundary（只构造一次）。

        参数：
        - parent：parent boundary；缺省时使用调用方当前活动的 boundary
        """

        self._parent = parent if parent is not None else current_boundary()
        self._boundary = create_boundary(self._parent, self.layout.all_artifacts())
        self.phase = LifecyclePhase.BOUND
        return self._boundary

    def _resolve_type(self, name: str) -> Any:
        try:
            return self.boundary.load_type(name)
        except TypeLookupError:
            logger.error("Could not find %s", name, exc_info=True)
            self._abort()
            raise

    def _instantiate(self, type_: Any, name: str) -> DaemonApplication:
        try:
            instance = type_()
        except Exception as exc:
            logger.error("Could not instantiate %s", name, exc_info=True)
            self._abort()
            raise InstantiationError(
                code="TYPE_INSTANTIATION_FAILED",
                message=f"Could not instantiate {name}",
                details={"type_name": name, "reason": repr(exc)},
            ) from exc
        if not isinstance(instance, DaemonApplication):
            logger.error("%s does not implement init/start/stop/destroy", name)
            self._abort()
            raise InstantiationError(
                code="TYPE_NOT_DAEMON_APPLICATION",
                message=f"{name} does not implement init/start/stop/destroy",
                details={"type_name": name},
            )
        return instance

    def _invoke(self, phase: str, signature: str, exit_code: ExitCode, call: Callable[[], Any]) -> None:
        """调用一个生命周期方法；任何异常都转为 `PhaseError`。"""

        try:
            call()
        except Exception as exc:
            logger.error("Failed on %s", signature, exc_info=True)
            self._abort()
            raise PhaseError(
                phase=phase,
                code=f"PHASE_{phase.upper()}_FAILED",
                message=f"Failed on {signature}",
                exit_code=exit_code,
                details={"reason": repr(exc)},
            ) from exc

    def initialize_application(self, args: Sequence[str] = ()) -> DaemonApplication:
        """在 boundary 内解析并实例化 start 类型，然后调用 `init(layout, args)`。"""

        name = self.start_class_name
        argv = list(args)
        with self.boundary.activate():
            start_type = self._resolve_type(name)
            start = self._instantiate(start_type, name)
            self._start = start
            self._invoke("init", f"{name}.init(layout, args)", ExitCode.INITIALIZATION, lambda: start.init(self.layout, argv))
        self.phase = LifecyclePhase.INITIALIZED
        return start

    def start_application(self) -> None:
        """在 boundary 内调用 `start()`。"""

        start = self._start
        assert start is not None, "initialize_application() has not been called"
        with self.boundary.activate():
            self._invoke("start", f"{self.start_class_name}.start()", ExitCode.START, start.start)
        self.phase = LifecyclePhase.STARTED

    def stop_application(self, args: Sequence[str] = ()) -> DaemonApplication:
        """
        在 boundary 内调用 `stop(args)`。

        说明：
        - stop/start 类型名相同且 start 实例存在时，复用同一个实例；
        - 否则按 stop 类型名重新解析并实例化（失败语义同 initialize_application）。
        """

        name = self.stop_class_name
        argv = list(args)
        with self.boundary.activate():
            if name == self.start_class_name and self._start is not None:
                stop = self._start
            else:
                stop_type = self._resolve_type(name)
                stop = self._instantiate(stop_type, name)
            self._stop = stop
            self._invoke("stop", f"{name}.stop(args)", ExitCode.STOP, lambda: stop.stop(argv))
        self.phase = LifecyclePhase.STOPPED
        return stop

    def destroy_application(self) -> None:
        """在 boundary 内对 stop 实例调用 `destroy()`（与 stop 共用退出码）。"""

        stop = self._stop
        assert stop is not None, "stop_application() has not been called"
        with self.boundary.activate():
            self._invoke("destroy", f"{self.stop_class_name}.destroy()", ExitCode.STOP, stop.destroy)
        self.phase = LifecyclePhase.DESTROYED

    def _shutdown_settings(self) -> ShutdownSettings:
        return self._config.shutdown if self._config is not None else ShutdownSettings()

    def shutdown_listener(self) -> ShutdownListener:
        """返回（必要时创建）本实例使用的 shutdown listener。"""

        if self._listener is None:
            self._listener = ShutdownListener(run_dir=self.layout.run_dir, settings=self._shutdown_settings())
        return self._listener

    def wait_for_shutdown(self) -> None:
        """阻塞直到收到合法的 shutdown 命令。"""

        try:
            self.shutdown_listener().listen()
        except BootstrapError:
            self._abort()
            raise

    def send_shutdown_command(self) -> int:
        """向本安装目录正在运行的实例发送 shutdown 命令；返回目标端口。"""

        if self._client is None:
            self._client = ShutdownClient(run_dir=self.layout.run_dir, host=self._shutdown_settings().host)
        return self._client.send_shutdown_command()

    def run(self, args: Sequence[str] = ()) -> None:
        """完整生命周期：init -> start -> 等待 shutdown -> stop -> destroy。"""

        self.initialize_application(args)
        self.start_application()
        logger.info("%s started; waiting for shutdown command", self.start_class_name)
        self.wait_for_shutdown()
        self.stop_application(args)
        self.destroy_application()
        logger.info("%s stopped", self.stop_class_name)
