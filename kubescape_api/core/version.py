"""Installed-version detection and update reconciliation."""

import logging
from typing import Optional

from ..models import LATEST
from .errors import NotInstalledError, ReleaseLookupError, SubprocessFailedError
from .models import InstalledVersion, ProcessSpec, ToolPath
from .process import ProcessRunner, run_process
from .protocol import (
    UNKNOWN_VERSION,
    parse_update_notice,
    parse_version_output,
    select_protocol,
)
from .releases import ReleaseFetcher

logger = logging.getLogger(__name__)

# Stops kubescape from contacting the registry during `kubescape version`
SKIP_UPDATE_ENV = {"KUBESCAPE_SKIP_UPDATE_CHECK": "true"}

CHECK_TIMEOUT = 60


def needs_update(
    installed: Optional[InstalledVersion],
    requested: str,
    upstream_tag: Optional[str] = None,
) -> bool:
    """Decide whether kubescape has to be (re)installed.

    * not installed -> True
    * requested "latest" -> installed differs from the upstream tag; when the
      registry could not be reached the installed binary is kept
    * requested concrete version -> installed differs from it
    """
    if installed is None:
        return True
    if requested == LATEST:
        if upstream_tag is None:
            return False
        return installed.version != upstream_tag
    return installed.version != requested


class VersionDetector:
    """Asks the kubescape binary what it is."""

    def __init__(
        self,
        runner: ProcessRunner = run_process,
        releases: Optional[ReleaseFetcher] = None,
    ):
        self.runner = runner
        self.releases = releases or ReleaseFetcher()
        self._latest_tag: Optional[str] = None

    async def is_installed(self, tool_path: ToolPath) -> bool:
        """Check the binary by running its help command.

        A missing file, a corrupt binary, or missing permissions all count as
        "not installed".
        """
        if not tool_path.full_path.is_file():
            return False
        spec = ProcessSpec(
            command=tool_path.full_path,
            args=["--help"],
            env=SKIP_UPDATE_ENV,
            timeout=CHECK_TIMEOUT,
        )
        try:
            result = await self.runner(spec)
        except SubprocessFailedError as e:
            logger.debug(f"Install check failed: {e}")
            return False
        return result.ok

    async def latest_tag(self) -> Optional[str]:
        """Upstream latest tag, or None when the registry is unreachable.

        A successful lookup is remembered for the lifetime of the detector.
        """
        if self._latest_tag is not None:
            return self._latest_tag
        try:
            self._latest_tag = await self.releases.latest_tag()
        except ReleaseLookupError as e:
            logger.warning(f"Could not determine latest kubescape release: {e}")
            return None
        return self._latest_tag

    async def detect(self, tool_path: ToolPath, requested: str) -> InstalledVersion:
        """Read the installed version and whether it is the latest release.

        Raises:
            NotInstalledError: If the binary is missing or the version
                command fails.
        """
        if not tool_path.full_path.is_file():
            raise NotInstalledError(f"Kubescape not found at {tool_path.full_path}")

        spec = ProcessSpec(
            command=tool_path.full_path,
            args=["version"],
            env=SKIP_UPDATE_ENV,
            timeout=CHECK_TIMEOUT,
        )
        try:
            result = await self.runner(spec)
        except SubprocessFailedError as e:
            raise NotInstalledError(f"Cannot query kubescape version: {e}") from e
        if not result.ok:
            raise NotInstalledError(
                f"kubescape version exited with code {result.return_code}"
            )

        version = parse_version_output(result.stdout)
        if version == UNKNOWN_VERSION:
            logger.warning(f"No version found in kubescape output: {result.stdout!r}")

        if requested != LATEST:
            return InstalledVersion(version=version, is_latest=False)

        if select_protocol(version).legacy:
            notice = parse_update_notice(result.stderr)
            if notice is not None:
                return InstalledVersion(version=version, is_latest=notice == version)

        upstream = await self.latest_tag()
        return InstalledVersion(
            version=version,
            is_latest=upstream is not None and upstream == version,
        )
