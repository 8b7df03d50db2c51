"""命令行入口。"""

from __future__ import annotations

from daemon_bootstrap.cli.main import main

__all__ = ["main"]
