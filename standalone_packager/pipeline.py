"""Standalone packaging pipeline.

The pipeline brackets an externally scheduled assemble step:

- *Preparation* downloads the content archive (cached), derives the application
  id and names, backs up the icon and manifest, injects the archive into the
  shell's assets and replaces the icon with the archive's screenshot.
- *Cleanup* restores the backed up files and removes the injected archive.

Both phases are no-ops when no download was configured. The host build tool
owns the step graph; :func:`register_ordering` only declares how the pipeline's
steps relate to the host's pre-build and assemble steps.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import enum
import logging
import pathlib
import shutil
import time
from typing import Protocol

import requests

from standalone_packager.archive import ProgramName, extract_program_name, open_archive
from standalone_packager.backup import backup_file, restore_file
from standalone_packager.config import (
    STANDALONE_ICON_RESOURCE,
    BuildSettings,
    ShellLayout,
    StandaloneConfig,
)
from standalone_packager.errors import CleanupError, FilesystemError, PackagingError
from standalone_packager.fetch import cached_archive_path, ensure_downloaded, resolve_cache_dir
from standalone_packager.icon import extract_icon


class PipelineState(enum.Enum):
    """Lifecycle of one pipeline run."""

    NOT_APPLICABLE = "not_applicable"
    IDLE = "idle"
    PREPARED = "prepared"
    ASSEMBLED = "assembled"
    CLEANED_UP = "cleaned_up"


class StepRole(enum.Enum):
    """Build steps the pipeline orders itself against.

    Values are the default step names used by the host build.
    """

    PREPARATION = "standalonePreparation"
    CLEANUP = "standaloneCleanup"
    PRE_DEBUG_BUILD = "preStandaloneDebugBuild"
    PRE_RELEASE_BUILD = "preStandaloneSignedReleaseBuild"
    ASSEMBLE = "assembleStandaloneDebug"


class OrderingKind(enum.Enum):
    RUNS_BEFORE = "runs_before"
    FINALIZED_BY = "finalized_by"


@dataclass(frozen=True, slots=True)
class OrderingConstraint:
    """``step`` runs before ``other``, or ``step`` is finalized by ``other``.

    :ivar kind: Constraint kind.
    :ivar step: Step the constraint is declared on.
    :ivar other: Step it relates to.
    """

    kind: OrderingKind
    step: StepRole
    other: StepRole


ORDERING_CONSTRAINTS: tuple[OrderingConstraint, ...] = (
    OrderingConstraint(OrderingKind.RUNS_BEFORE, StepRole.PREPARATION, StepRole.PRE_DEBUG_BUILD),
    OrderingConstraint(OrderingKind.RUNS_BEFORE, StepRole.PREPARATION, StepRole.PRE_RELEASE_BUILD),
    OrderingConstraint(OrderingKind.RUNS_BEFORE, StepRole.ASSEMBLE, StepRole.CLEANUP),
    OrderingConstraint(OrderingKind.FINALIZED_BY, StepRole.ASSEMBLE, StepRole.CLEANUP),
)


class StepScheduler(Protocol):
    """The part of a host build-step scheduler the pipeline talks to."""

    def run_before(self, step: str, successor: str) -> None:
        """Require ``step`` to complete before ``successor`` starts."""

    def finalize_with(self, step: str, finalizer: str) -> None:
        """Run ``finalizer`` after ``step``, even when ``step`` fails."""


def register_ordering(
    scheduler: StepScheduler,
    *,
    step_names: Mapping[StepRole, str] | None = None,
) -> None:
    """Declare the pipeline's ordering constraints on a host scheduler.

    :param scheduler: Host scheduler.
    :param step_names: Host step names per role; missing roles use the role's value.
    """

    names: Mapping[StepRole, str] = step_names if step_names is not None else {}

    def name_of(role: StepRole) -> str:
        return names.get(role, role.value)

    for constraint in ORDERING_CONSTRAINTS:
        if constraint.kind is OrderingKind.RUNS_BEFORE:
            scheduler.run_before(name_of(constraint.step), name_of(constraint.other))
        else:
            scheduler.finalize_with(name_of(constraint.step), name_of(constraint.other))


class StandalonePipeline:
    """Preparation and cleanup around one standalone assemble step.

    :param config: Resolved standalone options, or ``None`` when inactive.
    :param layout: Shell layout.
    :param settings: Build settings to write derived values into.
    :param logger: Optional logger for progress output.
    :param session: Optional HTTP session used for the download.
    :param timeout: Optional download timeout in seconds.
    """

    def __init__(
        self,
        *,
        config: StandaloneConfig | None,
        layout: ShellLayout,
        settings: BuildSettings | None = None,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.config: StandaloneConfig | None = config
        self.layout: ShellLayout = layout
        self.settings: BuildSettings = settings if settings is not None else BuildSettings()
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger("standalone_packager")
        self.state: PipelineState = PipelineState.IDLE if config is not None else PipelineState.NOT_APPLICABLE
        self.program_name: ProgramName | None = None
        self.cached_archive: pathlib.Path | None = None
        self._session: requests.Session | None = session
        self._timeout: float | None = timeout

    def configure(self) -> None:
        """Resolve identifiers, fetch the archive and derive the program names.

        Runs once; later calls return immediately. Nothing in the shell is
        modified here.

        :raises NetworkError: If the archive cannot be downloaded.
        :raises ArchiveFormatError: If the archive metadata is unusable.
        """

        if self.config is None or self.cached_archive is not None:
            return

        config: StandaloneConfig = self.config
        self.settings.application_id = config.application_id
        self.settings.manifest_app_icon = STANDALONE_ICON_RESOURCE
        self.logger.info(f"standalone-packager: application id {config.application_id}")

        cache_dir: pathlib.Path = resolve_cache_dir(self.layout.root_dir)
        archive_path: pathlib.Path = cached_archive_path(cache_dir, config.project_id)
        ensure_downloaded(
            url=config.download_url,
            destination=archive_path,
            logger=self.logger,
            session=self._session,
            timeout=self._timeout,
        )

        with open_archive(archive_path) as archive:
            program_name: ProgramName = extract_program_name(archive)

        self.settings.manifest_app_name = program_name.markup_escaped
        self.settings.app_name = program_name.source_escaped
        self.program_name = program_name
        self.cached_archive = archive_path
        self.logger.info(f"standalone-packager: program name {program_name.raw!r}")

    def prepare(self) -> None:
        """Run preparation: inject the archive and icon into the shell.

        :raises PackagingError: On any fatal failure; completed steps are not rolled back.
        """

        if self.config is None:
            self.logger.info("standalone-packager: no download configured; preparation skipped")
            return
        self._check_can_prepare()

        t0: float = time.perf_counter()
        self.configure()
        if self.cached_archive is None:
            raise PackagingError("Internal error: configure() did not resolve the cached archive.")

        backup_file(self.layout.icon_path, logger=self.logger)
        backup_file(self.layout.manifest_path, logger=self.logger)

        asset_archive: pathlib.Path = self.layout.asset_archive_path(self.config.project_id)
        self.logger.info(f"standalone-packager: copying {self.cached_archive} to {asset_archive}")
        try:
            asset_archive.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.cached_archive, asset_archive)
        except OSError as e:
            raise FilesystemError(f"Cannot copy archive into assets ({asset_archive}): {e}") from e

        with open_archive(asset_archive) as archive:
            icon_bytes: bytes | None = extract_icon(archive, logger=self.logger)

        if icon_bytes is not None:
            try:
                self.layout.icon_path.write_bytes(icon_bytes)
            except OSError as e:
                raise FilesystemError(f"Cannot write icon {self.layout.icon_path}: {e}") from e

        self.state = PipelineState.PREPARED
        t1: float = time.perf_counter()
        self.logger.info(f"standalone-packager: preparation done in {t1 - t0:.2f}s")

    def mark_assembled(self) -> None:
        """Record that the external assemble step has run."""

        if self.state is PipelineState.PREPARED:
            self.state = PipelineState.ASSEMBLED

    def cleanup(self) -> None:
        """Revert everything preparation changed.

        Every step is attempted even if an earlier one fails. Missing backups
        and a missing injected archive are not errors.

        :raises CleanupError: If one or more steps failed.
        """

        if self.config is None:
            self.logger.info("standalone-packager: no download configured; cleanup skipped")
            return

        asset_archive: pathlib.Path = self.layout.asset_archive_path(self.config.project_id)
        steps: list[tuple[str, Callable[[], object]]] = [
            ("restore icon", lambda: restore_file(self.layout.icon_path, logger=self.logger)),
            ("restore manifest", lambda: restore_file(self.layout.manifest_path, logger=self.logger)),
            ("delete injected archive", lambda: _delete_file(asset_archive)),
        ]

        failures: list[PackagingError] = []
        for description, step in steps:
            try:
                step()
            except PackagingError as e:
                self.logger.error(f"standalone-packager: cleanup step {description!r} failed: {e}")
                failures.append(e)

        if len(failures) > 0:
            raise CleanupError(failures)

        self.state = PipelineState.CLEANED_UP
        self.logger.info("standalone-packager: cleanup done")

    def run_bracketed(self, assemble: Callable[[], None]) -> None:
        """Prepare, run ``assemble``, and always clean up afterwards.

        If assembly (or preparation) fails, cleanup still runs and the original
        error is re-raised; a cleanup failure in that case is only logged.
        A pipeline that is already prepared is refused before anything runs,
        so its shell is left as it is.

        :param assemble: Callable running the external assemble step.
        :raises PackagingError: If the pipeline cannot be prepared from its current state.
        """

        if self.config is not None:
            self._check_can_prepare()
        try:
            self.prepare()
            assemble()
            self.mark_assembled()
        except BaseException:
            try:
                self.cleanup()
            except PackagingError as e:
                self.logger.error(f"standalone-packager: cleanup after failed build also failed: {e}")
            raise
        self.cleanup()

    def _check_can_prepare(self) -> None:
        if self.state not in (PipelineState.IDLE, PipelineState.CLEANED_UP):
            raise PackagingError(f"Cannot prepare a pipeline in state {self.state.value!r}.")


def _delete_file(path: pathlib.Path) -> None:
    """Delete ``path`` if it exists.

    :raises FilesystemError: If the file exists but cannot be removed.
    """

    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot delete {path}: {e}") from e
