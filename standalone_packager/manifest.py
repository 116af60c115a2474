"""Manifest maintenance helpers.

:func:`strip_intent_filters` removes the intent filters that let the shell open
arbitrary content (``VIEW`` and ``GET_CONTENT``). It edits the manifest in
place and keeps no backup of its own; back the file up first if the change must
be reverted.
"""

import logging
import pathlib
import re

from standalone_packager.errors import FilesystemError


STRIPPED_ACTIONS: tuple[str, ...] = (
    "android.intent.action.VIEW",
    "android.intent.action.GET_CONTENT",
)

# An <intent-filter> whose next line is one of the stripped actions, up to the
# first closing tag, never running into another filter's opening tag.
_INTENT_FILTER_RE: re.Pattern[str] = re.compile(
    r"<intent-filter(?:\s[^>]*?)?(?<!/)>\r?\n"
    r"[^\r\n]*?<action\s+android:name=\"(?:"
    + "|".join(re.escape(a) for a in STRIPPED_ACTIONS)
    + r")\""
    r"(?:(?!<intent-filter[\s>/]).)*?"
    r"</intent-filter>",
    re.DOTALL,
)


def remove_intent_filters(text: str) -> tuple[str, int]:
    """Remove matching intent filter blocks from manifest text.

    :param text: Manifest contents.
    :returns: The edited text and the number of removed blocks.
    """

    return _INTENT_FILTER_RE.subn("", text)


def strip_intent_filters(manifest_path: pathlib.Path, *, logger: logging.Logger | None = None) -> int:
    """Remove ``VIEW``/``GET_CONTENT`` intent filters from a manifest file.

    The file is handled as raw UTF-8 so its newline convention is preserved.

    :param manifest_path: Manifest file to edit in place.
    :param logger: Optional logger for progress output.
    :returns: Number of removed blocks.
    :raises FilesystemError: If the manifest cannot be read or written.
    """

    if logger is None:
        logger = logging.getLogger("standalone_packager")

    try:
        text: str = manifest_path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FilesystemError(f"Cannot read manifest {manifest_path}: {e}") from e

    edited, removed = remove_intent_filters(text)
    if removed == 0:
        logger.info(f"standalone-packager: no matching intent filters in {manifest_path}")
        return 0

    try:
        manifest_path.write_bytes(edited.encode("utf-8"))
    except OSError as e:
        raise FilesystemError(f"Cannot write manifest {manifest_path}: {e}") from e

    logger.info(f"standalone-packager: removed {removed} intent filter(s) from {manifest_path}")
    return removed
