"""Screenshot-to-icon extraction.

Archives may carry a screenshot of the program, captured either manually or
automatically. The first valid PNG among them, in the order of
:data:`SCREENSHOT_NAMES`, replaces the shell's launcher icon.
"""

import logging
import zipfile

from standalone_packager.errors import ArchiveFormatError


PNG_SIGNATURE: bytes = b"\x89PNG\r\n\x1a\n"

SCREENSHOT_NAMES: tuple[str, ...] = (
    "manual_screenshot.png",
    "automatic_screenshot.png",
)


def _candidate_rank(entry_name: str) -> int | None:
    """Return the rank of the screenshot name an entry matches, if any.

    :param entry_name: Archive entry name (``/`` separated).
    :returns: Index into :data:`SCREENSHOT_NAMES`, or ``None``.
    """

    for rank, name in enumerate(SCREENSHOT_NAMES):
        if entry_name == name or entry_name.endswith(f"/{name}") is True:
            return rank
    return None


def find_icon_candidates(archive: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
    """List screenshot entries in preference order.

    Entries matching the same name keep their archive order.

    :param archive: Open content archive.
    :returns: Candidate entries, best first.
    """

    ranked: list[tuple[int, int, zipfile.ZipInfo]] = []
    for position, info in enumerate(archive.infolist()):
        if info.is_dir() is True:
            continue
        rank: int | None = _candidate_rank(info.filename)
        if rank is None:
            continue
        ranked.append((rank, position, info))

    ranked.sort(key=lambda item: (item[0], item[1]))
    return [info for _, _, info in ranked]


def extract_icon(
    archive: zipfile.ZipFile,
    *,
    logger: logging.Logger | None = None,
) -> bytes | None:
    """Return the bytes of the preferred valid PNG screenshot.

    :param archive: Open content archive.
    :param logger: Optional logger for progress output.
    :returns: PNG bytes, or ``None`` if no candidate carries a PNG signature.
    :raises ArchiveFormatError: If a candidate entry cannot be read.
    """

    if logger is None:
        logger = logging.getLogger("standalone_packager")

    for info in find_icon_candidates(archive):
        try:
            data: bytes = archive.read(info)
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveFormatError(f"Cannot read {info.filename!r} from archive: {e}") from e

        if data[0 : len(PNG_SIGNATURE)] == PNG_SIGNATURE:
            logger.info(f"standalone-packager: found screenshot at {info.filename!r}")
            return data

        logger.info(f"standalone-packager: ignoring {info.filename!r} (not a PNG image)")

    logger.info("standalone-packager: could not find a screenshot")
    return None
