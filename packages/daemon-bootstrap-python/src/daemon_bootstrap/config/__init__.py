"""配置：bootstrap.yaml schema 与加载器。"""

from __future__ import annotations

from daemon_bootstrap.config.loader import (
    ApplicationDescriptor,
    BootstrapConfig,
    ShutdownSettings,
    load_config_dicts,
    load_config_file,
)

__all__ = [
    "ApplicationDescriptor",
    "BootstrapConfig",
    "ShutdownSettings",
    "load_config_dicts",
    "load_config_file",
]
