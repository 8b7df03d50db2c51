"""
bootstrap 配置加载器（YAML + pydantic 校验）。

配置文件：`<install-home>/conf/bootstrap.yaml`

设计目标：
- 内置默认配置 + 安装目录 overlay，按顺序深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；拒绝未知字段（拼写错误不会被静默吞掉）；
- 任何读取/解析/校验失败统一映射为 `ConfigLoadError`（致命，退出码 CONFIG_LOAD）。
"""

from __future__ import annotations

import ipaddress
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from daemon_bootstrap.config.defaults import load_default_config_dict
from daemon_bootstrap.core.errors import ConfigLoadError


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 直接覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ApplicationDescriptor(BaseModel):
    """应用描述：start/stop 两个类型名（`pkg.mod:Class` 或 `pkg.mod.Class`）。"""

    model_config = ConfigDict(extra="forbid")

    start_class: str
    stop_class: str

    @field_validator("start_class", "stop_class")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        """类型名去掉首尾空白后不得为空。"""

        v = value.strip()
        if not v:
            raise ValueError("type name must be non-empty")
        return v


class ShutdownSettings(BaseModel):
    """
    shutdown 通道参数。

    说明：
    - `max_command_bytes` 是单次连接读取预算的基准值；
    - `budget_slack_bytes` 是在基准值之上随机追加的上限（反 DoS/反指纹的余量，不是协议长度字段）。
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1")
    base_port: int = Field(default=30003, ge=1, le=65535)
    read_timeout_sec: float = Field(default=10.0, gt=0)
    max_command_bytes: int = Field(default=1024, ge=8)
    budget_slack_bytes: int = Field(default=64, ge=0)

    @field_validator("host")
    @classmethod
    def _loopback_only(cls, value: str) -> str:
        """shutdown 命令无鉴权，只允许 IPv4 loopback 地址（listener 使用 AF_INET）。"""

        v = value.strip()
        if v.lower() == "localhost":
            return v
        try:
            addr = ipaddress.ip_address(v)
        except ValueError as exc:
            raise ValueError(f"shutdown host must be an IPv4 loopback address, got {value!r}") from exc
        if addr.version != 4 or not addr.is_loopback:
            raise ValueError(f"shutdown host must be an IPv4 loopback address, got {value!r}")
        return v


class BootstrapConfig(BaseModel):
    """bootstrap.yaml 的完整 schema。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    bootstrap: ApplicationDescriptor
    shutdown: ShutdownSettings = Field(default_factory=ShutdownSettings)


def load_config_dicts(overlays: Iterable[Mapping[str, Any]]) -> BootstrapConfig:
    """
    把多个 mapping 按顺序深度合并并校验。

    参数：
    - overlays：mapping 列表（第一个通常是内置默认配置）

    异常：
    - pydantic.ValidationError：schema 校验失败
    """

    merged: Dict[str, Any] = {}
    for overlay in overlays:
        _deep_merge(merged, overlay)
    return BootstrapConfig.model_validate(merged)


def _read_yaml_mapping(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件并确保根节点是 mapping(dict)。"""

    obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"config root must be a mapping(dict), got {type(obj).__name__}")
    return obj


def load_config_file(path: Path) -> BootstrapConfig:
    """
    加载安装目录的 bootstrap 配置（内置默认配置作为底层）。

    参数：
    - path：`bootstrap.yaml` 路径

    异常：
    - ConfigLoadError：文件不可读、YAML 语法错误、根节点非 mapping、schema 校验失败
    """

    p = Path(path)
    try:
        overlay = _read_yaml_mapping(p)
        return load_config_dicts([load_default_config_dict(), overlay])
    except ValidationError as exc:
        raise ConfigLoadError(
            code="CONFIG_INVALID",
            message=f"Bootstrap config is invalid: {p}",
            details={"path": str(p), "errors": exc.errors(include_url=False)},
        ) from exc
    except (OSError, yaml.YAMLError, ValueError) as exc:
        raise ConfigLoadError(
            code="CONFIG_LOAD_FAILED",
            message=f"Failed while loading: {p}",
            details={"path": str(p), "reason": str(exc)},
        ) from exc
