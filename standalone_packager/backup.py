"""Sidecar backups of build inputs mutated during a standalone build.

A backup of ``dir/name`` lives at ``dir/bak_name``. It exists from
:func:`backup_file` until :func:`restore_file` puts it back, so cleanup can run
in a different process than preparation.
"""

import logging
import pathlib
import shutil

from standalone_packager.errors import BackupSourceMissingError, FilesystemError


BACKUP_PREFIX: str = "bak_"


def backup_path_for(path: pathlib.Path) -> pathlib.Path:
    """Return the sidecar backup path of ``path``."""

    return path.parent / f"{BACKUP_PREFIX}{path.name}"


def backup_file(path: pathlib.Path, *, logger: logging.Logger | None = None) -> pathlib.Path:
    """Copy ``path`` to its backup path, replacing an older backup.

    :param path: File about to be mutated.
    :param logger: Optional logger for debug output.
    :returns: Backup path.
    :raises BackupSourceMissingError: If ``path`` is not an existing file.
    :raises FilesystemError: If the copy fails.
    """

    if path.is_file() is False:
        raise BackupSourceMissingError(f"Cannot back up missing file: {path}")

    backup: pathlib.Path = backup_path_for(path)
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        raise FilesystemError(f"Cannot back up {path} to {backup}: {e}") from e

    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"standalone-packager: backed up {path} -> {backup}")
    return backup


def restore_file(path: pathlib.Path, *, logger: logging.Logger | None = None) -> bool:
    """Put the backup of ``path`` back in place and delete the backup.

    Without a backup this is a no-op, so calling it twice is safe.

    :param path: File to restore.
    :param logger: Optional logger for debug output.
    :returns: ``True`` if a backup was restored.
    :raises FilesystemError: If copying or deleting the backup fails.
    """

    backup: pathlib.Path = backup_path_for(path)
    if backup.exists() is False:
        if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"standalone-packager: no backup for {path}; nothing to restore")
        return False

    try:
        shutil.copy2(backup, path)
    except OSError as e:
        raise FilesystemError(f"Cannot restore {path} from {backup}: {e}") from e

    try:
        backup.unlink()
    except OSError as e:
        raise FilesystemError(f"Restored {path} but cannot delete backup {backup}: {e}") from e

    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"standalone-packager: restored {path} from {backup}")
    return True
