"""
Execution boundary（隔离的模块解析作用域）。

语义：
- 一个 boundary = 一组有序的库位置（目录或可导入归档）+ 一个显式的 parent；
- 查找是 local-first：先按插入顺序搜索自身位置（先命中者胜），未命中再委托 parent；
- 链的根是 `SYSTEM_BOUNDARY`：没有任何位置，等价于“交给解释器默认 import 系统”。

活动 boundary：
- 当前活动的 boundary 保存在 `ContextVar` 中（按线程/按 task 隔离）；
- `ExecutionBoundary.activate()` 是 context manager，退出时用 token 复位，
  成功/异常路径都会恢复调用前的 boundary；
- `BoundaryFinder` 被插入 `sys.meta_path`（仅一次），应用代码在阶段调用期间执行的
  import 也会优先从活动 boundary 解析。

限制：
- 已存在于 `sys.modules` 的模块不会再经过 finder（解释器全局缓存）。
"""

from __future__ import annotations

import contextlib
import importlib
import importlib.abc
import logging
import sys
import threading
from contextvars import ContextVar
from importlib.machinery import ModuleSpec, PathFinder
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence, Tuple

from daemon_bootstrap.core.errors import TypeLookupError

logger = logging.getLogger(__name__)


class ExecutionBoundary:
    """
    隔离的模块解析作用域。

    参数：
    - locations：有序库位置（目录或 zip/whl/egg/pyz 归档）
    - parent：本地未命中时委托的 parent（None 表示链的根）
    - name：用于日志的名称
    """

    def __init__(
        self,
        locations: Iterable[Path | str] = (),
        parent: Optional["ExecutionBoundary"] = None,
        *,
        name: str = "application",
    ) -> None:
        self._locations: Tuple[Path, ...] = tuple(Path(p) for p in locations)
        self._parent = parent
        self.name = name

    def __repr__(self) -> str:
        return f"ExecutionBoundary(name={self.name!r}, locations={len(self._locations)})"

    @property
    def locations(self) -> Tuple[Path, ...]:
        return self._locations

    @property
    def parent(self) -> Optional["ExecutionBoundary"]:
        return self._parent

    def find_local_spec(self, fullname: str) -> Optional[ModuleSpec]:
        """只在自身位置中查找顶层模块（不委托 parent）。"""

        if not self._locations:
            return None
        return PathFinder.find_spec(fullname, [str(p) for p in self._locations])

    def find_spec(self, fullname: str) -> Optional[ModuleSpec]:
        """
        local-first 查找顶层模块 spec。

        返回：
        - ModuleSpec：命中；None：整条链都未命中（交给解释器默认机制）
        """

        spec = self.find_local_spec(fullname)
        if spec is not None:
            return spec
        if self._parent is not None:
            return self._parent.find_spec(fullname)
        return None

    @contextlib.contextmanager
    def activate(self) -> Iterator["ExecutionBoundary"]:
        """把本 boundary 设为当前上下文的活动 boundary；退出时恢复之前的值。"""

        install_boundary_finder()
        token = _ACTIVE.set(self)
        try:
            yield self
        finally:
            _ACTIVE.reset(token)

    def load_type(self, name: str) -> Any:
        """
        在本 boundary 内按名称解析类型。

        参数：
        - name：`pkg.mod:Qual.Name` 或 `pkg.mod.ClassName`

        返回：
        - 可调用对象（通常是 class）

        异常：
        - TypeLookupError：名称非法、模块无法导入、属性不存在或不可调用
        """

        module_name, qualname = split_type_name(name)
        with self.activate():
            try:
                obj: Any = importlib.import_module(module_name)
            except Exception as exc:
                raise TypeLookupError(
                    code="TYPE_MODULE_NOT_FOUND",
                    message=f"Could not find {name}",
                    details={"type_name": name, "module": module_name, "reason": repr(exc)},
                ) from exc
        for part in qualname.split("."):
            try:
                obj = getattr(obj, part)
            except AttributeError as exc:
                raise TypeLookupError(
                    code="TYPE_ATTRIBUTE_NOT_FOUND",
                    message=f"Could not find {name}",
                    details={"type_name": name, "module": module_name, "attribute": part},
                ) from exc
        if not callable(obj):
            raise TypeLookupError(
                code="TYPE_NOT_CALLABLE",
                message=f"{name} does not name a constructible type",
                details={"type_name": name},
            )
        return obj


SYSTEM_BOUNDARY = ExecutionBoundary((), None, name="system")

_ACTIVE: ContextVar[ExecutionBoundary] = ContextVar("daemon_bootstrap_active_boundary", default=SYSTEM_BOUNDARY)


def current_boundary() -> ExecutionBoundary:
    """返回调用方上下文中当前活动的 boundary（默认 `SYSTEM_BOUNDARY`）。"""

    return _ACTIVE.get()


def split_type_name(name: str) -> Tuple[str, str]:
    """
    把类型名拆分为 (module, qualname)。

    支持：
    - `pkg.mod:Outer.Inner`
    - `pkg.mod.ClassName`（最后一段视为属性名）
    """

    raw = str(name or "").strip()
    if ":" in raw:
        module_name, _, qualname = raw.partition(":")
    else:
        module_name, _, qualname = raw.rpartition(".")
    if not module_name or not qualname:
        raise TypeLookupError(
            code="TYPE_NAME_INVALID",
            message=f"Invalid type name: {name!r}",
            details={"type_name": name},
        )
    return module_name, qualname


class BoundaryFinder(importlib.abc.MetaPathFinder):
    """按当前活动 boundary 解析顶层模块的 meta path finder。"""

    def find_spec(
        self,
        fullname: str,
        path: Optional[Sequence[str]],
        target: Any = None,
    ) -> Optional[ModuleSpec]:
        # 子模块由父包的 __path__ 决定，交给默认 PathFinder
        if path is not None:
            return None
        return _ACTIVE.get().find_spec(fullname)


_FINDER_LOCK = threading.Lock()


def install_boundary_finder() -> None:
    """把 `BoundaryFinder` 插入 `sys.meta_path`（位于 PathFinder 之前；幂等）。"""

    with _FINDER_LOCK:
        if any(isinstance(f, BoundaryFinder) for f in sys.meta_path):
            return
        index = len(sys.meta_path)
        for i, f in enumerate(sys.meta_path):
            if f is PathFinder:
                index = i
                break
        sys.meta_path.insert(index, BoundaryFinder())


def create_boundary(parent: Optional[ExecutionBoundary], artifact_locations: Iterable[Path | str]) -> ExecutionBoundary:
    """
    构造应用 boundary。

    参数：
    - parent：未命中时委托的 boundary（None 时使用 `SYSTEM_BOUNDARY`）
    - artifact_locations：全部库位置；不做过滤，插入顺序即查找优先级
    """

    locations = list(artifact_locations)
    # 安装目录在进程启动前才落盘，清掉 FileFinder 的目录缓存
    importlib.invalidate_caches()
    boundary = ExecutionBoundary(locations, parent if parent is not None else SYSTEM_BOUNDARY)
    if logger.isEnabledFor(logging.DEBUG):
        lines = "".join(f"\t{p}\n" for p in boundary.locations)
        logger.debug("Dependencies loaded by the application boundary: \n%s", lines)
    return boundary
