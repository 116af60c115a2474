import json
import logging
import pathlib
import sys
from collections.abc import Callable

import pytest
import requests

from standalone_packager.backup import backup_path_for
from standalone_packager.cli import _configure_logging, main
from standalone_packager.config import ShellLayout

from conftest import ORIGINAL_ICON, ORIGINAL_MANIFEST, PNG_BYTES, FakeSession, code_xml


URL: str = "http://x/app.zip"


@pytest.fixture
def served_app(
    fake_session: FakeSession,
    make_zip: Callable[..., pathlib.Path],
    monkeypatch: pytest.MonkeyPatch,
) -> FakeSession:
    body: bytes = make_zip({"code.xml": code_xml("Cat &amp; Dog"), "manual_screenshot.png": PNG_BYTES}).read_bytes()
    fake_session.add(URL, body)
    monkeypatch.setattr(requests, "Session", lambda: fake_session)
    return fake_session


def _args(command: str, layout: ShellLayout, *extra: str) -> list[str]:
    return [command, "--project-dir", str(layout.project_dir), *extra]


STANDALONE_ARGS: tuple[str, ...] = ("--download", URL, "--suffix", "demo", "--package-name", "org.example")


def test_prepare_prints_settings_and_cleanup_reverts(
    shell: ShellLayout,
    served_app: FakeSession,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert main(_args("prepare", shell, *STANDALONE_ARGS)) == 0

    settings = json.loads(capsys.readouterr().out)
    assert settings == {
        "application_id": "org.example.demo",
        "app_name": "Cat & Dog",
        "manifest_app_name": "Cat &amp; Dog",
        "manifest_app_icon": "@drawable/icon",
    }
    assert shell.icon_path.read_bytes() == PNG_BYTES
    assert shell.asset_archive_path("demo").is_file()

    # Cleanup runs as a separate invocation, driven by the backup files.
    assert main(_args("cleanup", shell, *STANDALONE_ARGS)) == 0
    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert not shell.asset_archive_path("demo").exists()
    assert not backup_path_for(shell.icon_path).exists()


def test_build_properties_are_accepted(
    shell: ShellLayout,
    served_app: FakeSession,
    capsys: pytest.CaptureFixture[str],
) -> None:
    args = _args("prepare", shell, "-P", f"download={URL}", "-P", "suffix=demo", "-P", "packageName=org.example")
    assert main(args) == 0
    assert json.loads(capsys.readouterr().out)["application_id"] == "org.example.demo"


def test_prepare_without_download_is_a_noop(shell: ShellLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args("prepare", shell)) == 0
    assert json.loads(capsys.readouterr().out)["application_id"] is None
    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert main(_args("cleanup", shell)) == 0


def test_build_runs_assemble_between_phases(shell: ShellLayout, served_app: FakeSession) -> None:
    check = (
        "import pathlib, sys; "
        "sys.exit(0 if pathlib.Path('src/main/assets/demo.zip').is_file() else 5)"
    )
    assert main(_args("build", shell, *STANDALONE_ARGS, "--", sys.executable, "-c", check)) == 0

    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert not shell.asset_archive_path("demo").exists()


def test_failed_assemble_still_cleans_up(
    shell: ShellLayout,
    served_app: FakeSession,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = main(_args("build", shell, *STANDALONE_ARGS, "--", sys.executable, "-c", "import sys; sys.exit(3)"))

    assert code == 1
    assert "exit=3" in capsys.readouterr().err
    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert shell.manifest_path.read_text(encoding="utf-8") == ORIGINAL_MANIFEST
    assert not shell.asset_archive_path("demo").exists()


def test_incomplete_options_exit_with_error(shell: ShellLayout, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args("prepare", shell, "--download", URL)) == 1
    assert "suffix" in capsys.readouterr().err


def test_malformed_property(shell: ShellLayout) -> None:
    assert main(_args("prepare", shell, "-P", "download")) == 1


def test_strip_intent_filters_command(shell: ShellLayout) -> None:
    shell.manifest_path.write_text(
        "<activity>\n"
        "    <intent-filter>\n"
        '        <action android:name="android.intent.action.VIEW" />\n'
        "    </intent-filter>\n"
        "</activity>\n",
        encoding="utf-8",
    )

    assert main(_args("strip-intent-filters", shell)) == 0
    assert shell.manifest_path.read_text(encoding="utf-8") == "<activity>\n    \n</activity>\n"


def test_default_package_name_and_cleanup_without_package_name(
    shell: ShellLayout,
    served_app: FakeSession,
    capsys: pytest.CaptureFixture[str],
) -> None:
    options = ("--download", URL, "--suffix", "demo")
    assert main(_args("prepare", shell, *options, "--default-package-name", "org.shell")) == 0
    assert json.loads(capsys.readouterr().out)["application_id"] == "org.shell.demo"
    assert shell.icon_path.read_bytes() == PNG_BYTES

    # Cleanup only needs the project identifier.
    assert main(_args("cleanup", shell, *options)) == 0
    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert shell.manifest_path.read_text(encoding="utf-8") == ORIGINAL_MANIFEST
    assert not shell.asset_archive_path("demo").exists()
    assert not backup_path_for(shell.icon_path).exists()


def test_prepare_without_any_package_name_fails_cleanly(
    shell: ShellLayout,
    served_app: FakeSession,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert main(_args("prepare", shell, "--download", URL, "--suffix", "demo")) == 1
    assert "packageName" in capsys.readouterr().err
    assert shell.icon_path.read_bytes() == ORIGINAL_ICON
    assert served_app.calls == []


@pytest.mark.parametrize(
    ("verbose", "quiet", "expected"),
    [
        (0, 0, logging.INFO),
        (1, 0, logging.DEBUG),
        (0, 1, logging.WARNING),
        (0, 5, logging.ERROR),
        (1, 1, logging.INFO),
    ],
)
def test_logging_level_follows_net_verbosity(verbose: int, quiet: int, expected: int) -> None:
    logger = _configure_logging(verbose=verbose, quiet=quiet)
    assert logger.level == expected
    assert logger.propagate is False
    assert len(logger.handlers) == 1


def test_double_verbose_routes_http_transport_log(monkeypatch: pytest.MonkeyPatch) -> None:
    http_logger = logging.getLogger("urllib3")
    monkeypatch.setattr(http_logger, "handlers", [])
    monkeypatch.setattr(http_logger, "level", http_logger.level)
    monkeypatch.setattr(http_logger, "propagate", http_logger.propagate)

    logger = _configure_logging(verbose=2, quiet=0)

    assert http_logger.level == logging.DEBUG
    assert http_logger.handlers == logger.handlers
