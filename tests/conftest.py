import logging
import pathlib
import zipfile
from collections.abc import Callable, Iterator

import pytest
import requests

from standalone_packager.config import ShellLayout


PNG_BYTES: bytes = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR fake image body"

ORIGINAL_ICON: bytes = b"\x89PNG\r\n\x1a\n original shell icon"

ORIGINAL_MANIFEST: str = (
    '<?xml version="1.0" encoding="utf-8"?>\n'
    '<manifest xmlns:android="http://schemas.android.com/apk/res/android">\n'
    '    <application android:label="${appName}">\n'
    "    </application>\n"
    "</manifest>\n"
)


def code_xml(program_name: str) -> bytes:
    """Build a minimal ``code.xml`` document (``program_name`` must be pre-escaped)."""

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<program>\n"
        "  <header>\n"
        f"    <programName>{program_name}</programName>\n"
        "  </header>\n"
        "  <scenes/>\n"
        "</program>\n"
    ).encode("utf-8")


class FakeResponse:
    def __init__(self, body: bytes, status_code: int = 200, fail_after: int | None = None) -> None:
        self.body: bytes = body
        self.status_code: int = status_code
        self.fail_after: int | None = fail_after

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for i in range(0, len(self.body), 4):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            yield self.body[i : i + 4]


class FakeSession:
    """Stands in for :class:`requests.Session`; serves canned responses per URL."""

    def __init__(self) -> None:
        self.responses: dict[str, FakeResponse | Exception] = {}
        self.calls: list[str] = []
        self.closed: bool = False

    def add(self, url: str, body: bytes, *, status_code: int = 200, fail_after: int | None = None) -> None:
        self.responses[url] = FakeResponse(body, status_code=status_code, fail_after=fail_after)

    def add_error(self, url: str, error: Exception) -> None:
        self.responses[url] = error

    def get(self, url: str, stream: bool = False, timeout: float | None = None) -> FakeResponse:
        self.calls.append(url)
        response: FakeResponse | Exception | None = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    # The CLI detaches the logger from the root; undo that so caplog sees records.
    logger: logging.Logger = logging.getLogger("standalone_packager")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_zip(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Return a factory writing a zip from ``(name, data)`` pairs in order."""

    def factory(entries: list[tuple[str, bytes]] | dict[str, bytes], name: str = "app.zip") -> pathlib.Path:
        path: pathlib.Path = tmp_path / "zips" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        items: list[tuple[str, bytes]] = list(entries.items()) if isinstance(entries, dict) else list(entries)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry_name, data in items:
                zf.writestr(entry_name, data)
        return path

    return factory


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def shell(tmp_path: pathlib.Path) -> ShellLayout:
    """A shell project with an icon and a manifest."""

    project_dir: pathlib.Path = tmp_path / "shell"
    layout: ShellLayout = ShellLayout.for_project(project_dir)
    layout.icon_path.parent.mkdir(parents=True, exist_ok=True)
    layout.icon_path.write_bytes(ORIGINAL_ICON)
    layout.manifest_path.write_text(ORIGINAL_MANIFEST, encoding="utf-8")
    return layout
