"""
安装目录布局（path-layout provider）。

布局（以安装根目录 `home` 为锚点）：
- `bin/`、`lib/`、`lib/ext/`、`conf/`
- `var/`、`var/log/`、`var/run/`（可被环境变量覆盖）
- `conf/bootstrap.yaml`（必需）、`conf/logging.yaml`（可选）

说明：
- 库制品（artifact）指 `lib/` 与 `lib/ext/` 下可被 import 的归档（zip/whl/egg/pyz）；
- 制品列表计算一次后缓存，进程生命周期内不变。
"""

from __future__ import annotations

import getpass
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from daemon_bootstrap.core.errors import BootstrapIssue, InstallationError

logger = logging.getLogger(__name__)

VAR_DIR_ENV = "DAEMON_BOOTSTRAP_VAR_DIR"
LOG_DIR_ENV = "DAEMON_BOOTSTRAP_LOG_DIR"
RUN_DIR_ENV = "DAEMON_BOOTSTRAP_RUN_DIR"

BOOTSTRAP_CONFIG_FILENAME = "bootstrap.yaml"
LOGGING_CONFIG_FILENAME = "logging.yaml"

ARTIFACT_SUFFIXES = (".zip", ".whl", ".egg", ".pyz")


def _env_dir(key: str, env: Mapping[str, str]) -> Optional[Path]:
    """读取目录覆盖环境变量（空白视为未设置）。"""

    raw = str(env.get(key) or "").strip()
    if not raw:
        return None
    return Path(raw).expanduser()


def _list_artifacts(directory: Path) -> Tuple[Path, ...]:
    """列出目录下的可导入归档（按文件名排序；目录不存在时返回空）。"""

    if not directory.is_dir():
        return ()
    found = [p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in ARTIFACT_SUFFIXES]
    return tuple(sorted(found, key=lambda p: p.name))


def _current_user() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return "<unknown>"


@dataclass(frozen=True)
class InstallLayout:
    """
    安装目录布局。

    参数：
    - home：安装根目录
    - env：环境变量映射（默认 `os.environ`；用于 var/log/run 目录覆盖）
    """

    home: Path
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ), repr=False, compare=False)
    _artifacts: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "home", Path(self.home).expanduser().resolve())

    @property
    def bin_dir(self) -> Path:
        return self.home / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.home / "lib"

    @property
    def ext_dir(self) -> Path:
        return self.lib_dir / "ext"

    @property
    def conf_dir(self) -> Path:
        return self.home / "conf"

    @property
    def var_dir(self) -> Path:
        return _env_dir(VAR_DIR_ENV, self.env) or self.home / "var"

    @property
    def log_dir(self) -> Path:
        return _env_dir(LOG_DIR_ENV, self.env) or self.var_dir / "log"

    @property
    def run_dir(self) -> Path:
        return _env_dir(RUN_DIR_ENV, self.env) or self.var_dir / "run"

    @property
    def bootstrap_config_file(self) -> Path:
        return self.conf_dir / BOOTSTRAP_CONFIG_FILENAME

    @property
    def logging_config_file(self) -> Path:
        return self.conf_dir / LOGGING_CONFIG_FILENAME

    def init_script(self, name: str = "server.init") -> Path:
        return self.bin_dir / name

    def license_file(self, name: str = "LICENSE") -> Path:
        return self.home / name

    def readme_file(self, name: str = "README") -> Path:
        return self.home / name

    def required_dirs(self) -> List[Path]:
        """必须存在且可写的目录（顺序即校验顺序）。"""

        return [
            self.home,
            self.bin_dir,
            self.lib_dir,
            self.ext_dir,
            self.conf_dir,
            self.var_dir,
            self.log_dir,
            self.run_dir,
        ]

    def required_files(self) -> List[Path]:
        """必须存在且可读的文件。"""

        return [self.bootstrap_config_file]

    def collect_installation_issues(self) -> List[BootstrapIssue]:
        """
        收集安装目录的全部结构问题（不抛异常）。

        返回：
        - list[BootstrapIssue]：空列表表示安装目录完整可用
        """

        issues: List[BootstrapIssue] = []
        user = _current_user()
        for d in self.required_dirs():
            if not d.exists():
                issues.append(BootstrapIssue("LAYOUT_DIR_MISSING", f"{d} does not exist!", {"path": str(d)}))
            elif not d.is_dir():
                issues.append(
                    BootstrapIssue("LAYOUT_NOT_A_DIR", f"{d} is a file when it should be a directory.", {"path": str(d)})
                )
            elif not os.access(d, os.W_OK):
                issues.append(
                    BootstrapIssue(
                        "LAYOUT_DIR_NOT_WRITABLE",
                        f"{d} is write protected from the current user: {user}",
                        {"path": str(d), "user": user},
                    )
                )
        for f in self.required_files():
            if not f.exists():
                issues.append(BootstrapIssue("LAYOUT_FILE_MISSING", f"{f} does not exist!", {"path": str(f)}))
            elif f.is_dir():
                issues.append(
                    BootstrapIssue("LAYOUT_NOT_A_FILE", f"{f} is a directory when it should be a file.", {"path": str(f)})
                )
            elif not os.access(f, os.R_OK):
                issues.append(
                    BootstrapIssue(
                        "LAYOUT_FILE_NOT_READABLE",
                        f"{f} is not readable by the current user: {user}",
                        {"path": str(f), "user": user},
                    )
                )
        return issues

    def verify_installation(self) -> None:
        """
        校验安装目录结构。

        异常：
        - InstallationError：遇到的第一个问题
        """

        issues = self.collect_installation_issues()
        if issues:
            first = issues[0]
            raise InstallationError(code=first.code, message=first.message, details=dict(first.details))

    def mkdirs(self) -> None:
        """创建全部必需目录（已存在则跳过）。"""

        for d in self.required_dirs():
            d.mkdir(parents=True, exist_ok=True)

    def dependent_artifacts(self) -> Tuple[Path, ...]:
        """`lib/` 下的直接依赖制品。"""

        if "dependent" not in self._artifacts:
            self._artifacts["dependent"] = _list_artifacts(self.lib_dir)
        return self._artifacts["dependent"]

    def extension_artifacts(self) -> Tuple[Path, ...]:
        """`lib/ext/` 下的扩展制品。"""

        if "extension" not in self._artifacts:
            self._artifacts["extension"] = _list_artifacts(self.ext_dir)
        return self._artifacts["extension"]

    def all_artifacts(self) -> Tuple[Path, ...]:
        """全部制品：依赖在前、扩展在后（决定 boundary 的查找优先级）。"""

        return self.dependent_artifacts() + self.extension_artifacts()
