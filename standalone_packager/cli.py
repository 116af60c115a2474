"""Command line interface for standalone-packager."""

import argparse
import json
import logging
import pathlib
import subprocess
import sys

from standalone_packager.config import (
    OPTION_DOWNLOAD,
    OPTION_PACKAGE_NAME,
    OPTION_SUFFIX,
    ShellLayout,
    StandaloneConfig,
    resolve_standalone_config,
)
from standalone_packager.errors import AssembleError, ConfigError, PackagingError
from standalone_packager.manifest import strip_intent_filters
from standalone_packager.pipeline import StandalonePipeline


_LEVELS: tuple[int, ...] = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG)
_HTTP_LOGGER_NAME: str = "urllib3"


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Send standalone-packager progress to stderr.

    The level starts at INFO and moves one step per ``-v`` (up) or ``-q``
    (down), clamped to ERROR..DEBUG. With ``-vv`` the connection log of the
    HTTP transport is routed to the same handler.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    index: int = max(0, min(len(_LEVELS) - 1, _LEVELS.index(logging.INFO) + verbose - quiet))
    level: int = _LEVELS[index]

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger: logging.Logger = logging.getLogger("standalone_packager")
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(handler)

    if verbose - quiet >= 2:
        http_logger: logging.Logger = logging.getLogger(_HTTP_LOGGER_NAME)
        http_logger.setLevel(logging.DEBUG)
        http_logger.propagate = False
        http_logger.handlers.clear()
        http_logger.addHandler(handler)

    return logger


def _parse_properties(pairs: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` build properties.

    :param pairs: Raw ``-P`` arguments.
    :returns: Property mapping (later keys win).
    :raises ConfigError: If an argument has no ``=``.
    """

    props: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if len(sep) == 0 or len(key.strip()) == 0:
            raise ConfigError(f"Invalid build property {pair!r}; expected KEY=VALUE.")
        props[key.strip()] = value
    return props


def _resolve_options(ns: argparse.Namespace) -> StandaloneConfig | None:
    """Merge ``-P`` properties with the dedicated flags and resolve them.

    :param ns: Parsed arguments.
    :returns: Resolved config, or ``None`` when no download was requested.
    """

    options: dict[str, str] = _parse_properties(ns.property)
    if ns.download is not None:
        options[OPTION_DOWNLOAD] = ns.download
    if ns.suffix is not None:
        options[OPTION_SUFFIX] = ns.suffix
    if ns.package_name is not None:
        options[OPTION_PACKAGE_NAME] = ns.package_name
    return resolve_standalone_config(
        options,
        default_package_name=ns.default_package_name,
        require_package_name=ns.command != "cleanup",
    )


def _layout_from_args(ns: argparse.Namespace) -> ShellLayout:
    project_dir: pathlib.Path = ns.project_dir.resolve()
    root_dir: pathlib.Path | None = ns.root_dir.resolve() if ns.root_dir is not None else None
    return ShellLayout.for_project(project_dir, root_dir=root_dir)


def _run_assemble_command(command: list[str], *, cwd: pathlib.Path, logger: logging.Logger) -> None:
    """Run the external assemble command.

    :param command: Command and arguments.
    :param cwd: Working directory.
    :param logger: Logger for progress output.
    :raises AssembleError: If the command exits non-zero or cannot be started.
    """

    logger.info(f"standalone-packager: running assemble command: {' '.join(command)}")
    try:
        proc = subprocess.run(command, cwd=cwd, check=False)
    except OSError as e:
        raise AssembleError(f"Cannot start assemble command {command[0]!r}: {e}") from e
    if proc.returncode != 0:
        raise AssembleError(f"Assemble command failed (exit={proc.returncode}): {' '.join(command)}")


def _add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--project-dir",
        type=pathlib.Path,
        default=pathlib.Path("."),
        help="Shell project directory (default: current directory).",
    )
    p.add_argument(
        "--root-dir",
        type=pathlib.Path,
        default=None,
        help="Build root holding the .apps archive cache (default: project directory).",
    )
    p.add_argument(
        "--download",
        type=str,
        default=None,
        help="URL of the content archive. Without it, prepare/cleanup do nothing.",
    )
    p.add_argument(
        "--suffix",
        type=str,
        default=None,
        help="Project identifier (cache name and application id suffix).",
    )
    p.add_argument(
        "--package-name",
        type=str,
        default=None,
        help="Application id prefix; the final id is '<package-name>.<suffix>'.",
    )
    p.add_argument(
        "--default-package-name",
        type=str,
        default=None,
        help="Application id prefix used when neither --package-name nor -P packageName is given.",
    )
    p.add_argument(
        "-P",
        "--property",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Build property (download, suffix, packageName). Can be repeated.",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )


def main(argv: list[str] | None = None) -> int:
    """Run the standalone-packager CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="standalone-packager",
        description=(
            "Inject a downloaded program archive into an app shell for a standalone build, "
            "and revert the shell afterwards."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_prepare = subparsers.add_parser(
        "prepare",
        help="Download the archive and inject it into the shell; print the build settings as JSON.",
    )
    _add_common_arguments(p_prepare)

    p_cleanup = subparsers.add_parser(
        "cleanup",
        help="Restore the shell's icon and manifest and remove the injected archive.",
    )
    _add_common_arguments(p_cleanup)

    p_build = subparsers.add_parser(
        "build",
        help="Prepare, run an assemble command, and always clean up.",
    )
    _add_common_arguments(p_build)
    p_build.add_argument(
        "assemble_command",
        nargs=argparse.REMAINDER,
        help="Assemble command to run between preparation and cleanup (after '--').",
    )

    p_strip = subparsers.add_parser(
        "strip-intent-filters",
        help="Remove VIEW/GET_CONTENT intent filters from the shell's manifest (no backup).",
    )
    _add_common_arguments(p_strip)

    ns = parser.parse_args(argv)
    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
    try:
        return _dispatch(ns, parser=parser, logger=logger)
    except PackagingError as e:
        logger.error(f"standalone-packager: error: {e}")
        return 1


def _dispatch(ns: argparse.Namespace, *, parser: argparse.ArgumentParser, logger: logging.Logger) -> int:
    """Run the selected subcommand.

    :returns: Exit code.
    :raises PackagingError: If the subcommand fails.
    """

    layout: ShellLayout = _layout_from_args(ns)

    if ns.command == "strip-intent-filters":
        strip_intent_filters(layout.manifest_path, logger=logger)
        return 0

    config: StandaloneConfig | None = _resolve_options(ns)
    pipeline: StandalonePipeline = StandalonePipeline(config=config, layout=layout, logger=logger)

    if ns.command == "prepare":
        pipeline.prepare()
        sys.stdout.write(json.dumps(pipeline.settings.as_dict(), indent=2, sort_keys=True) + "\n")
        return 0

    if ns.command == "cleanup":
        pipeline.cleanup()
        return 0

    if ns.command == "build":
        command: list[str] = list(ns.assemble_command)
        if len(command) > 0 and command[0] == "--":
            command = command[1:]
        if len(command) == 0:
            parser.error("build requires an assemble command after '--'.")
        pipeline.run_bracketed(lambda: _run_assemble_command(command, cwd=layout.project_dir, logger=logger))
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
