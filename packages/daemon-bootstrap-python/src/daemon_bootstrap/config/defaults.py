"""
内置默认配置加载器。

设计目标：
- 以 package data 的形式随包分发（`importlib.resources`），不依赖 repo 相对路径；
- 默认配置只包含 shutdown 通道参数，应用类型名必须由安装目录配置提供。
"""

from __future__ import annotations

from importlib.resources import files
from typing import Any, Dict

import yaml


def load_default_config_dict() -> Dict[str, Any]:
    """
    读取内置默认配置（YAML）并返回 dict。

    返回：
    - dict：用于与 overlay 做深度合并（合并语义由 `daemon_bootstrap.config.loader` 定义）

    异常：
    - RuntimeError：内容不是 mapping(dict)
    """

    text = files("daemon_bootstrap.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default config root must be a mapping(dict)")
    return obj
