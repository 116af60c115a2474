"""Content cache and archive fetcher.

Archives are cached under ``<root>/.apps/<project_id>.zip`` and never pruned.
A download is streamed into a ``.tmp`` sibling and renamed into place only once
the body has been fully written, so a file at the cache path is always complete.
``file:`` URLs are copied the same way, for local and offline builds.
"""

import logging
import pathlib
import shutil
import time
import urllib.parse
import urllib.request

import requests

from standalone_packager.errors import FilesystemError, NetworkError


CACHE_DIR_NAME: str = ".apps"

_DEFAULT_CHUNK_SIZE: int = 1024 * 1024


def resolve_cache_dir(root_dir: pathlib.Path) -> pathlib.Path:
    """Resolve (and create) the archive cache directory.

    :param root_dir: Build root directory.
    :returns: Cache directory.
    :raises FilesystemError: If the directory cannot be created.
    """

    cache_dir: pathlib.Path = root_dir / CACHE_DIR_NAME
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot create archive cache {cache_dir}: {e}") from e
    return cache_dir


def cached_archive_path(cache_dir: pathlib.Path, project_id: str) -> pathlib.Path:
    """Return the cache path of the archive for ``project_id``."""

    return cache_dir / f"{project_id}.zip"


def ensure_downloaded(
    *,
    url: str,
    destination: pathlib.Path,
    logger: logging.Logger | None = None,
    session: requests.Session | None = None,
    timeout: float | None = None,
    chunk_size: int = _DEFAULT_CHUNK_SIZE,
) -> None:
    """Download ``url`` to ``destination`` unless it is already cached.

    :param url: Source URL.
    :param destination: Cache path of the archive.
    :param logger: Optional logger for progress output.
    :param session: Optional HTTP session (a fresh one is used otherwise).
    :param timeout: Optional socket timeout in seconds; none by default.
    :param chunk_size: Streaming chunk size in bytes.
    :raises NetworkError: If the transfer fails or the server answers with an error.
    :raises FilesystemError: If the archive cannot be written.
    """

    if logger is None:
        logger = logging.getLogger("standalone_packager")

    if destination.exists() is True:
        logger.info(f"standalone-packager: using already downloaded app at {destination}")
        return

    logger.info(f"standalone-packager: downloading {url}")
    tmp_path: pathlib.Path = destination.with_name(destination.name + ".tmp")
    t0: float = time.perf_counter()
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        written: int
        if urllib.parse.urlsplit(url).scheme == "file":
            written = _copy_local_file(url=url, out_path=tmp_path)
        else:
            written = _stream_to_file(
                url=url,
                out_path=tmp_path,
                session=session,
                timeout=timeout,
                chunk_size=chunk_size,
            )
        tmp_path.replace(destination)
    except requests.RequestException as e:
        _discard(tmp_path)
        raise NetworkError(f"Download of {url} failed: {e}") from e
    except OSError as e:
        _discard(tmp_path)
        raise FilesystemError(f"Cannot write downloaded archive to {destination}: {e}") from e
    except BaseException:
        _discard(tmp_path)
        raise
    t1: float = time.perf_counter()

    logger.info(
        f"standalone-packager: downloaded to {destination} ({written / 1024:.1f} KiB) in {t1 - t0:.2f}s"
    )


def _stream_to_file(
    *,
    url: str,
    out_path: pathlib.Path,
    session: requests.Session | None,
    timeout: float | None,
    chunk_size: int,
) -> int:
    """Stream the body of ``url`` into ``out_path``.

    :returns: Number of bytes written.
    """

    owns_session: bool = session is None
    http: requests.Session = session if session is not None else requests.Session()
    written: int = 0
    try:
        with http.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(out_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if len(chunk) == 0:
                        continue
                    f.write(chunk)
                    written += len(chunk)
    finally:
        if owns_session is True:
            http.close()
    return written


def _copy_local_file(*, url: str, out_path: pathlib.Path) -> int:
    """Copy the file named by a ``file:`` URL into ``out_path``.

    :returns: Number of bytes written.
    :raises NetworkError: If the URL does not name an existing file.
    """

    parts: urllib.parse.SplitResult = urllib.parse.urlsplit(url)
    if parts.netloc not in ("", "localhost"):
        raise NetworkError(f"Remote file URLs are not supported: {url}")
    src: pathlib.Path = pathlib.Path(urllib.request.url2pathname(parts.path))
    if src.is_file() is False:
        raise NetworkError(f"Download of {url} failed: no such file {src}")

    shutil.copyfile(src, out_path)
    return out_path.stat().st_size


def _discard(path: pathlib.Path) -> None:
    """Remove a partially written file, ignoring a file that is already gone."""

    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass
