"""
daemon-bootstrap CLI（start/stop/verify/mkdirs）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）；
- `main()` 返回 exit code、不直接 sys.exit；这是唯一把 `BootstrapError` 转换为进程退出码的地方；
- verify/mkdirs 的 stdout 为机器可读 JSON。
"""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import logging.config
import signal
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import yaml

from daemon_bootstrap.bootstrapper import Bootstrapper
from daemon_bootstrap.core.errors import BootstrapError
from daemon_bootstrap.exit_codes import ExitCode
from daemon_bootstrap.layout import InstallLayout

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def configure_logging(layout: InstallLayout, level: str = "INFO") -> Optional[Path]:
    """
    配置进程日志（只在入口调用一次）。

    规则：
    - `conf/logging.yaml` 存在时按 `logging.config.dictConfig` 应用；
    - 否则（或该文件无效时）使用 `logging.basicConfig(level=level)`。

    返回：
    - 实际生效的 logging 配置文件路径；使用 basicConfig 时为 None
    """

    path = layout.logging_config_file
    if path.is_file():
        try:
            obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            if not isinstance(obj, dict):
                raise ValueError("logging config root must be a mapping(dict)")
            logging.config.dictConfig(obj)
            return path
        except Exception:
            logging.basicConfig(level=level, format=_LOG_FORMAT)
            logger.warning("Invalid logging config %s; falling back to basicConfig", path, exc_info=True)
            return None
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    return None


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2, default=str)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)
    print(text)


def _raise_system_exit(signum: int, _frame: Any) -> None:
    """SIGTERM -> SystemExit，让 finally/ExitStack 中的端口文件清理得以执行。"""

    raise SystemExit(128 + int(signum))


@contextlib.contextmanager
def _sigterm_as_system_exit() -> Iterator[None]:
    # signal.signal 只能在主线程调用
    if threading.current_thread() is not threading.main_thread() or not hasattr(signal, "SIGTERM"):
        yield
        return
    previous = signal.signal(signal.SIGTERM, _raise_system_exit)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _handle_start(args: argparse.Namespace) -> int:
    boot = Bootstrapper()
    app_args: List[str] = list(args.app_args or [])
    if app_args and app_args[0] == "--":
        app_args = app_args[1:]
    with _sigterm_as_system_exit():
        boot.configure(args.install_base)
        boot.bind_boundary()
        boot.run(app_args)
    return int(ExitCode.OK)


def _handle_stop(args: argparse.Namespace) -> int:
    boot = Bootstrapper()
    boot.configure(args.install_base)
    try:
        port = boot.send_shutdown_command()
    except OSError as exc:
        # 端口文件存在但 listener 不可达（例如异常退出留下的陈旧文件）
        logger.error("Could not reach the shutdown listener: %s", exc)
        return int(ExitCode.NOT_RUNNING)
    logger.info("Shutdown command sent to port %s", port)
    return int(ExitCode.OK)


def _handle_verify(args: argparse.Namespace) -> int:
    layout = InstallLayout(Path(args.install_base))
    issues = layout.collect_installation_issues()
    _dump_json_to_stdout(
        {"ok": not issues, "home": str(layout.home), "issues": [asdict(it) for it in issues]},
        pretty=bool(args.pretty),
    )
    return int(ExitCode.OK) if not issues else int(ExitCode.VERIFICATION)


def _handle_mkdirs(args: argparse.Namespace) -> int:
    layout = InstallLayout(Path(args.install_base))
    layout.mkdirs()
    _dump_json_to_stdout(
        {"ok": True, "home": str(layout.home), "dirs": [str(d) for d in layout.required_dirs()]},
        pretty=bool(args.pretty),
    )
    return int(ExitCode.OK)


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog="daemon-bootstrap",
        description="Lifecycle bootstrapper for a pluggable long-running server application.",
    )
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("install_base", help="Installation home directory.")
        p.add_argument("--log-level", default="INFO", choices=_LOG_LEVELS, help="Log level when conf/logging.yaml is absent.")

    start = root_sub.add_parser("start", help="Run the application until a shutdown command arrives")
    _add_common_flags(start)
    start.add_argument("app_args", nargs=argparse.REMAINDER, help="Arguments passed to init/stop; use `--` before them.")

    stop = root_sub.add_parser("stop", help="Send the shutdown command to a running instance")
    _add_common_flags(stop)

    verify = root_sub.add_parser("verify", help="Verify the installation layout")
    _add_common_flags(verify)
    verify.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    mkdirs = root_sub.add_parser("mkdirs", help="Create the installation directory skeleton")
    _add_common_flags(mkdirs)
    mkdirs.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]

    返回：
    - int：exit code（见 `daemon_bootstrap.exit_codes.ExitCode`）
    """

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # `--help` 为 0；参数错误统一映射为 BAD_ARGUMENTS
        if exc.code in (0, None):
            return int(ExitCode.OK)
        return int(ExitCode.BAD_ARGUMENTS)

    configure_logging(InstallLayout(Path(args.install_base)), args.log_level)

    try:
        if args.command == "start":
            return _handle_start(args)
        if args.command == "stop":
            return _handle_stop(args)
        if args.command == "verify":
            return _handle_verify(args)
        if args.command == "mkdirs":
            return _handle_mkdirs(args)
    except BootstrapError as exc:
        # 失败现场已在抛出处记录（含 traceback），这里只决定退出码
        logger.error("Aborting with exit code %s (%s)", int(exc.exit_code), exc.code)
        return int(exc.exit_code)
    except Exception:
        logger.exception("Unexpected failure in %s", args.command)
        return int(ExitCode.UNKNOWN)

    return int(ExitCode.BAD_ARGUMENTS)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
