from __future__ import annotations

from pathlib import Path

import pytest

from daemon_bootstrap.core.errors import InstallationError
from daemon_bootstrap.layout import InstallLayout


def _complete_install(home: Path) -> InstallLayout:
    layout = InstallLayout(home, env={})
    layout.mkdirs()
    layout.bootstrap_config_file.write_text(
        "bootstrap:\n  start_class: a.b:C\n  stop_class: a.b:C\n",
        encoding="utf-8",
    )
    return layout


def test_paths_are_anchored_at_resolved_home(tmp_path: Path) -> None:
    layout = InstallLayout(tmp_path / "x" / ".." / "home", env={})
    home = (tmp_path / "home").resolve()
    assert layout.home == home
    assert layout.bin_dir == home / "bin"
    assert layout.ext_dir == home / "lib" / "ext"
    assert layout.log_dir == home / "var" / "log"
    assert layout.run_dir == home / "var" / "run"
    assert layout.bootstrap_config_file == home / "conf" / "bootstrap.yaml"
    assert layout.logging_config_file == home / "conf" / "logging.yaml"
    assert layout.init_script() == home / "bin" / "server.init"
    assert layout.license_file() == home / "LICENSE"
    assert layout.readme_file() == home / "README"


def test_env_overrides_var_log_and_run_dirs(tmp_path: Path) -> None:
    env = {
        "DAEMON_BOOTSTRAP_VAR_DIR": str(tmp_path / "var2"),
        "DAEMON_BOOTSTRAP_RUN_DIR": str(tmp_path / "run2"),
        "DAEMON_BOOTSTRAP_LOG_DIR": "  ",
    }
    layout = InstallLayout(tmp_path / "home", env=env)
    assert layout.var_dir == tmp_path / "var2"
    assert layout.run_dir == tmp_path / "run2"
    # 空白值视为未设置，跟随 var 目录
    assert layout.log_dir == tmp_path / "var2" / "log"


def test_complete_install_has_no_issues(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    assert layout.collect_installation_issues() == []
    layout.verify_installation()


def test_missing_home_reports_every_missing_path(tmp_path: Path) -> None:
    layout = InstallLayout(tmp_path / "absent", env={})
    issues = layout.collect_installation_issues()
    codes = [it.code for it in issues]
    assert codes.count("LAYOUT_DIR_MISSING") == len(layout.required_dirs())
    assert codes[-1] == "LAYOUT_FILE_MISSING"


def test_file_in_place_of_directory_is_reported(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    layout.bin_dir.rmdir()
    layout.bin_dir.write_text("oops", encoding="utf-8")
    issues = layout.collect_installation_issues()
    assert [it.code for it in issues] == ["LAYOUT_NOT_A_DIR"]
    assert issues[0].details["path"] == str(layout.bin_dir)


def test_directory_in_place_of_config_file_is_reported(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    layout.bootstrap_config_file.unlink()
    layout.bootstrap_config_file.mkdir()
    assert [it.code for it in layout.collect_installation_issues()] == ["LAYOUT_NOT_A_FILE"]


def test_verify_installation_raises_first_issue(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    layout.bootstrap_config_file.unlink()
    with pytest.raises(InstallationError) as ei:
        layout.verify_installation()
    assert ei.value.code == "LAYOUT_FILE_MISSING"
    assert str(layout.bootstrap_config_file) in ei.value.message


def test_mkdirs_is_idempotent(tmp_path: Path) -> None:
    layout = InstallLayout(tmp_path / "home", env={})
    layout.mkdirs()
    layout.mkdirs()
    assert all(d.is_dir() for d in layout.required_dirs())


def test_artifacts_are_filtered_sorted_and_dependents_first(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    for name in ["b.zip", "a.whl", "notes.txt", "c.PYZ"]:
        (layout.lib_dir / name).write_bytes(b"")
    (layout.lib_dir / "pkgdir.zip").mkdir()
    (layout.ext_dir / "ext1.egg").write_bytes(b"")

    assert [p.name for p in layout.dependent_artifacts()] == ["a.whl", "b.zip", "c.PYZ"]
    assert [p.name for p in layout.extension_artifacts()] == ["ext1.egg"]
    assert [p.name for p in layout.all_artifacts()] == ["a.whl", "b.zip", "c.PYZ", "ext1.egg"]


def test_artifact_lists_are_computed_once(tmp_path: Path) -> None:
    layout = _complete_install(tmp_path / "home")
    (layout.lib_dir / "a.zip").write_bytes(b"")
    first = layout.dependent_artifacts()
    (layout.lib_dir / "b.zip").write_bytes(b"")
    assert layout.dependent_artifacts() == first


def test_artifacts_of_missing_lib_dir_are_empty(tmp_path: Path) -> None:
    layout = InstallLayout(tmp_path / "absent", env={})
    assert layout.all_artifacts() == ()
