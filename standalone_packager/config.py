"""Invocation configuration and shell layout.

This module turns the loose key/value options handed over by a build invoker
into typed objects:

- :class:`StandaloneConfig` describes *what* to inject (download URL, project
  identifier, application id prefix). It only exists when a download was
  requested; otherwise standalone mode is inactive.
- :class:`ShellLayout` describes *where* the shell keeps the files the pipeline
  touches.
- :class:`BuildSettings` is the mutable configuration context the pipeline
  writes derived values into.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
import pathlib
import re

from standalone_packager.errors import ConfigError


OPTION_DOWNLOAD: str = "download"
OPTION_SUFFIX: str = "suffix"
OPTION_PACKAGE_NAME: str = "packageName"

STANDALONE_ICON_RESOURCE: str = "@drawable/icon"


@dataclass(frozen=True, slots=True)
class StandaloneConfig:
    """Resolved standalone build options.

    :ivar download_url: URL of the content archive.
    :ivar suffix: Project identifier (cache file stem and application id suffix).
    :ivar package_name: Application id prefix; ``None`` when only the
        project identifier is needed (cleanup).
    """

    download_url: str
    suffix: str
    package_name: str | None

    @property
    def project_id(self) -> str:
        """Identifier naming the archive in the cache and the assets directory."""

        return self.suffix

    @property
    def application_id(self) -> str:
        """Final application id, ``<package_name>.<suffix>``.

        :raises ConfigError: If no application id prefix was resolved.
        """

        if self.package_name is None:
            raise ConfigError(f"No {OPTION_PACKAGE_NAME!r} was given; the application id is unknown.")
        return f"{self.package_name}.{self.suffix}"


@dataclass(frozen=True, slots=True)
class ShellLayout:
    """Paths inside the shell project that the pipeline reads or mutates.

    :ivar root_dir: Root of the build (the archive cache lives under it).
    :ivar project_dir: Shell project directory; relative paths resolve against it.
    :ivar assets_relpath: Asset directory the archive is injected into.
    :ivar manifest_relpath: Manifest file backed up during the build.
    :ivar icon_relpath: Launcher icon overwritten with the screenshot.
    """

    root_dir: pathlib.Path
    project_dir: pathlib.Path
    assets_relpath: str = "src/main/assets"
    manifest_relpath: str = "src/main/AndroidManifest.xml"
    icon_relpath: str = "src/main/res/drawable-nodpi/icon.png"

    @classmethod
    def for_project(
        cls,
        project_dir: pathlib.Path,
        *,
        root_dir: pathlib.Path | None = None,
    ) -> "ShellLayout":
        """Build a layout with the default relative paths.

        :param project_dir: Shell project directory.
        :param root_dir: Build root; defaults to ``project_dir``.
        :returns: Layout instance.
        """

        return cls(root_dir=root_dir if root_dir is not None else project_dir, project_dir=project_dir)

    @property
    def assets_dir(self) -> pathlib.Path:
        return self.project_dir / self.assets_relpath

    @property
    def manifest_path(self) -> pathlib.Path:
        return self.project_dir / self.manifest_relpath

    @property
    def icon_path(self) -> pathlib.Path:
        return self.project_dir / self.icon_relpath

    def asset_archive_path(self, project_id: str) -> pathlib.Path:
        """Path of the archive copy injected for ``project_id``."""

        return self.assets_dir / f"{project_id}.zip"


@dataclass(slots=True)
class BuildSettings:
    """Values the pipeline hands back to the build configuration.

    :ivar application_id: Application id of the produced artifact.
    :ivar app_name: Program name escaped for source-level string literals.
    :ivar manifest_app_name: Program name escaped for markup attributes.
    :ivar manifest_app_icon: Icon resource referenced by the manifest.
    """

    application_id: str | None = None
    app_name: str | None = None
    manifest_app_name: str | None = None
    manifest_app_icon: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        """Return the settings as a plain dict (JSON friendly)."""

        return asdict(self)


_PROJECT_ID_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


def resolve_standalone_config(
    options: Mapping[str, str],
    *,
    default_package_name: str | None = None,
    require_package_name: bool = True,
) -> StandaloneConfig | None:
    """Resolve invocation options into a :class:`~StandaloneConfig`.

    :param options: Build properties (``download``, ``suffix``, ``packageName``).
    :param default_package_name: Application id prefix used when
        ``packageName`` is not given.
    :param require_package_name: Whether an application id prefix must resolve.
        Cleanup only needs the project identifier and passes ``False``.
    :returns: Resolved config, or ``None`` when no download was requested.
    :raises ConfigError: If a download was requested but the options are incomplete.
    """

    download_url: str | None = options.get(OPTION_DOWNLOAD)
    if download_url is None:
        return None

    download_url = download_url.strip()
    if len(download_url) == 0:
        raise ConfigError(f"Option {OPTION_DOWNLOAD!r} is empty.")

    suffix: str | None = options.get(OPTION_SUFFIX)
    if suffix is None or len(suffix.strip()) == 0:
        raise ConfigError(f"Option {OPTION_SUFFIX!r} is required when {OPTION_DOWNLOAD!r} is given.")
    suffix = suffix.strip()
    if _PROJECT_ID_RE.match(suffix) is None or ".." in suffix:
        raise ConfigError(f"Invalid {OPTION_SUFFIX!r} {suffix!r}; it must be usable as a file name.")

    package_name: str | None = options.get(OPTION_PACKAGE_NAME)
    if package_name is None or len(package_name.strip()) == 0:
        package_name = default_package_name
    if package_name is not None and len(package_name.strip()) == 0:
        package_name = None
    if package_name is None and require_package_name is True:
        raise ConfigError(
            f"Option {OPTION_PACKAGE_NAME!r} is required when no default application id is configured."
        )

    return StandaloneConfig(
        download_url=download_url,
        suffix=suffix,
        package_name=package_name.strip() if package_name is not None else None,
    )
