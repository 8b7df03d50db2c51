from __future__ import annotations

import errno
import logging
import random
import socket
import threading
from pathlib import Path
from typing import List, Tuple

import pytest

from daemon_bootstrap.config.loader import ShutdownSettings
from daemon_bootstrap.core.errors import AcceptError, ListenerSetupError
from daemon_bootstrap.exit_codes import ExitCode
from daemon_bootstrap.shutdown import listener as listener_module
from daemon_bootstrap.shutdown.client import ShutdownClient
from daemon_bootstrap.shutdown.listener import ShutdownListener


def _start(listener: ShutdownListener) -> Tuple[threading.Thread, List[BaseException]]:
    """在后台线程运行 listen()，等待 listener 就绪。"""

    errors: List[BaseException] = []

    def _target() -> None:
        try:
            listener.listen()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    t = threading.Thread(target=_target, daemon=True)
    t.start()
    assert listener.ready.wait(10), "listener did not become ready"
    return t, errors


def _send_raw(port: int, payload: bytes) -> None:
    with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
        s.sendall(payload)


def _settings(**overrides) -> ShutdownSettings:  # type: ignore[no-untyped-def]
    values = {"read_timeout_sec": 2.0}
    values.update(overrides)
    return ShutdownSettings(**values)


def test_exact_command_releases_listener_and_removes_port_file(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())
    t, errors = _start(listener)

    assert listener.port is not None
    assert listener.port_file.read_text(encoding="ascii").strip() == str(listener.port)

    ShutdownClient(run_dir=tmp_path / "run").send_shutdown_command()
    t.join(10)
    assert not t.is_alive()
    assert errors == []
    assert not listener.port_file.exists()


@pytest.mark.parametrize("payload", [b"SHUTDOW", b"shutdown", b"SHUTDOWN\x00extra", b"SHUTDOWNX", b"xSHUTDOWN"])
def test_near_miss_commands_are_rejected_and_listening_continues(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, payload: bytes
) -> None:
    caplog.set_level(logging.INFO, logger="daemon_bootstrap.shutdown.listener")
    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())
    t, errors = _start(listener)
    assert listener.port is not None

    _send_raw(listener.port, payload)
    ShutdownClient(run_dir=tmp_path / "run").send_shutdown_command()
    t.join(10)

    assert not t.is_alive()
    assert errors == []
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert any("Invalid shutdown command" in m for m in warnings)


@pytest.mark.parametrize("payload", [b"SHUTDOWN\n", b"SHUTDOWN\r\n", b"SHUTDOWN\r"])
def test_line_terminated_command_is_accepted(tmp_path: Path, payload: bytes) -> None:
    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())
    t, errors = _start(listener)
    assert listener.port is not None

    _send_raw(listener.port, payload)
    t.join(10)
    assert not t.is_alive()
    assert errors == []


def test_stale_port_file_is_replaced(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="daemon_bootstrap.shutdown.listener")
    run_dir = tmp_path / "run"
    run_dir.mkdir()
    (run_dir / "shutdownPort").write_text("1\n", encoding="ascii")

    listener = ShutdownListener(run_dir=run_dir, settings=_settings())
    t, errors = _start(listener)
    assert listener.port_file.read_text(encoding="ascii").strip() == str(listener.port)
    assert any("exists" in r.getMessage() for r in caplog.records)

    ShutdownClient(run_dir=run_dir).send_shutdown_command()
    t.join(10)
    assert errors == []
    assert not listener.port_file.exists()


def test_setup_failure_is_a_listener_setup_error(tmp_path: Path) -> None:
    # run 目录位置被普通文件占用，端口文件无法写入
    blocker = tmp_path / "run"
    blocker.write_text("", encoding="utf-8")

    listener = ShutdownListener(run_dir=blocker, settings=_settings())
    with pytest.raises(ListenerSetupError) as ei:
        listener.listen()
    assert ei.value.exit_code is ExitCode.LISTENER_BIND
    assert not listener.ready.is_set()


def test_read_command_stops_at_control_byte(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path, settings=_settings())
    a, b = socket.socketpair()
    with a, b:
        b.sendall(b"SHUTDOWN\x00extra")
        b.close()
        command, terminator = listener.read_command(a)
    assert (command, terminator) == ("SHUTDOWN", 0)


def test_read_command_stops_at_budget(tmp_path: Path) -> None:
    settings = _settings(max_command_bytes=8, budget_slack_bytes=0)
    listener = ShutdownListener(run_dir=tmp_path, settings=settings)
    a, b = socket.socketpair()
    with a, b:
        b.sendall(b"SHUTDOWNSHUTDOWN")
        command, terminator = listener.read_command(a)
    assert (command, terminator) == ("SHUTDOWN", None)


def test_read_command_treats_timeout_as_eof(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path, settings=_settings(read_timeout_sec=0.2))
    a, b = socket.socketpair()
    with a, b:
        b.sendall(b"SHUT")
        command, terminator = listener.read_command(a)
    assert (command, terminator) == ("SHUT", None)


def test_command_budget_is_base_plus_bounded_slack(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path, settings=_settings(), rng=random.Random(7))
    budgets = {listener.command_budget() for _ in range(500)}
    assert min(budgets) >= 1024
    assert max(budgets) <= 1024 + 64
    assert len(budgets) > 1

    fixed = ShutdownListener(run_dir=tmp_path, settings=_settings(budget_slack_bytes=0))
    assert fixed.command_budget() == 1024


@pytest.mark.parametrize(
    "command, terminator, expected",
    [
        ("SHUTDOWN", None, True),
        ("SHUTDOWN", 0x0A, True),
        ("SHUTDOWN", 0x0D, True),
        ("SHUTDOWN", 0x00, False),
        ("SHUTDOWN", 0x09, False),
        ("SHUTDOW", None, False),
        ("shutdown", None, False),
        ("SHUTDOWN ", None, False),
    ],
)
def test_is_shutdown_command(command: str, terminator: int | None, expected: bool) -> None:
    assert ShutdownListener.is_shutdown_command(command, terminator) is expected


class _ScriptedServer:
    """假监听 socket：accept() 依次抛出/返回预设结果。"""

    def __init__(self, outcomes: list) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def bind(self, _addr) -> None:  # type: ignore[no-untyped-def]
        pass

    def listen(self, _backlog: int) -> None:
        pass

    def accept(self):  # type: ignore[no-untyped-def]
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome, ("127.0.0.1", 0)

    def close(self) -> None:
        pass


def _pending_connection(payload: bytes) -> socket.socket:
    """返回一端已写完 payload 并关闭的 socketpair 另一端。"""

    a, b = socket.socketpair()
    with b:
        b.sendall(payload)
    return a


@pytest.mark.parametrize("transient", [PermissionError("denied"), ConnectionAbortedError("aborted")])
def test_transient_accept_rejection_is_retried(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, transient: OSError
) -> None:
    caplog.set_level(logging.WARNING, logger="daemon_bootstrap.shutdown.listener")
    listener = ShutdownListener(run_dir=tmp_path, settings=_settings())
    server = _ScriptedServer([transient, _pending_connection(b"SHUTDOWN")])

    listener._accept_loop(server)  # type: ignore[arg-type]

    assert server.calls == 2
    assert any("retrying" in r.getMessage() for r in caplog.records)


def test_malformed_then_valid_command_through_accept_loop(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path, settings=_settings())
    server = _ScriptedServer([_pending_connection(b"SHUTDOW"), _pending_connection(b"SHUTDOWN")])
    listener._accept_loop(server)  # type: ignore[arg-type]
    assert server.calls == 2


def test_fatal_accept_error_raises_and_cleans_up(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    server = _ScriptedServer([OSError(errno.EBADF, "Bad file descriptor")])
    monkeypatch.setattr(listener_module, "new_listening_socket", lambda: server)

    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())
    with pytest.raises(AcceptError) as ei:
        listener.listen()

    assert ei.value.code == "SHUTDOWN_ACCEPT_FAILED"
    assert ei.value.exit_code is ExitCode.ACCEPT
    assert server.calls == 1
    assert not listener.port_file.exists()
    assert not listener.ready.is_set()


def test_atexit_cleanup_is_scoped_to_listen(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    registered: list = []
    unregistered: list = []
    monkeypatch.setattr(listener_module.atexit, "register", lambda fn: registered.append(fn))
    monkeypatch.setattr(listener_module.atexit, "unregister", lambda fn: unregistered.append(fn))

    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())
    t, errors = _start(listener)
    assert registered == [listener._cleanup_port_file]
    assert unregistered == []

    # 进程退出时执行的清理会删除端口文件
    port_file_content = listener.port_file.read_text(encoding="ascii")
    registered[0]()
    assert not listener.port_file.exists()
    listener.port_file.write_text(port_file_content, encoding="ascii")

    ShutdownClient(run_dir=tmp_path / "run").send_shutdown_command()
    t.join(10)
    assert errors == []
    assert unregistered == [listener._cleanup_port_file]
    assert not listener.port_file.exists()


def test_listener_can_listen_again_after_release(tmp_path: Path) -> None:
    listener = ShutdownListener(run_dir=tmp_path / "run", settings=_settings())

    for _ in range(2):
        t, errors = _start(listener)
        assert listener.port_file.exists()
        ShutdownClient(run_dir=tmp_path / "run").send_shutdown_command()
        t.join(10)
        assert errors == []
        assert not listener.ready.is_set()
        assert not listener.port_file.exists()
