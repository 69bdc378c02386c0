"""Setup orchestration for kubescape.

KubescapeApi is the one object a host application creates. ``setup()``
takes it through five strictly sequential phases:

1. resolve where the binary lives
2. check whether a working binary is there
3. reconcile the installed version with the requested one
4. download and install kubescape when needed
5. provision framework bundles and select which ones scans use

Setup runs at most once successfully. A failed setup leaves the object
retryable; every accessor refuses to answer until setup has succeeded.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from ..models import ALL_FRAMEWORKS, KubescapeConfig
from ..ui import KubescapeUi, LoggingUi
from .downloader import CancelToken, ProgressCallback, download_file
from .errors import KubescapeError, NotInstalledError
from .frameworks import FrameworkCatalog, FrameworkProvisioner
from .models import Framework, InstalledVersion, ProvisionReport, SetupState, ToolPath
from .paths import default_frameworks_directory, expand_path, is_windows, resolve_tool_path
from .platform import current_asset_name
from .process import ProcessRunner, run_process
from .protocol import OutputProtocol, select_protocol
from .releases import ReleaseFetcher, release_asset_url
from .scanner import ScanInvoker, ScanOptions
from .version import VersionDetector, needs_update

logger = logging.getLogger(__name__)

INSTALL_HELP_URL = "https://github.com/kubescape/kubescape#install"


class KubescapeApi:
    """Installs, provisions and runs kubescape on behalf of a host application."""

    def __init__(
        self,
        ui: Optional[KubescapeUi] = None,
        runner: ProcessRunner = run_process,
        client: Optional[httpx.AsyncClient] = None,
        releases: Optional[ReleaseFetcher] = None,
        asset_name: Optional[str] = None,
    ):
        self.ui = ui or LoggingUi()
        self.runner = runner
        self.client = client
        self.releases = releases or ReleaseFetcher(client=client)
        self.detector = VersionDetector(runner, self.releases)
        self.asset_name = asset_name

        self.state = SetupState.UNINITIALIZED
        self._setup_task: Optional["asyncio.Future[bool]"] = None

        self._tool_path: Optional[ToolPath] = None
        self._version: Optional[InstalledVersion] = None
        self._frameworks_dir: Optional[Path] = None
        self._protocol: Optional[OutputProtocol] = None
        self._catalog = FrameworkCatalog()
        self._failures: Dict[str, str] = {}
        self._provisioner: Optional[FrameworkProvisioner] = None
        self._scanner: Optional[ScanInvoker] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    def _require_ready(self) -> None:
        if self.state != SetupState.READY:
            raise NotInstalledError(
                f"Kubescape is not set up (state: {self.state.value}); call setup() first"
            )

    @property
    def is_ready(self) -> bool:
        return self.state == SetupState.READY

    @property
    def path(self) -> Path:
        self._require_ready()
        return self._tool_path.full_path

    @property
    def directory(self) -> Path:
        self._require_ready()
        return self._tool_path.base_dir

    @property
    def version(self) -> str:
        self._require_ready()
        return self._version.version

    @property
    def is_latest_version(self) -> bool:
        self._require_ready()
        return self._version.is_latest

    @property
    def frameworks_directory(self) -> Path:
        self._require_ready()
        return self._frameworks_dir

    @property
    def protocol(self) -> OutputProtocol:
        self._require_ready()
        return self._protocol

    @property
    def catalog(self) -> FrameworkCatalog:
        self._require_ready()
        return self._catalog

    @property
    def frameworks(self) -> List[Framework]:
        self._require_ready()
        return list(self._catalog)

    @property
    def frameworks_names(self) -> List[str]:
        """Frameworks selected for scanning."""
        self._require_ready()
        return self._catalog.active_names

    @property
    def framework_failures(self) -> Dict[str, str]:
        """Frameworks that could not be downloaded during setup, with reasons."""
        self._require_ready()
        return dict(self._failures)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def setup(
        self, config: KubescapeConfig, cancel: Optional[CancelToken] = None
    ) -> bool:
        """Bring kubescape to a ready state; True on success.

        Calling again after success is a no-op. A call made while another
        setup is in flight waits for that one instead of starting over.
        """
        if self.state == SetupState.READY:
            return True
        if self.state == SetupState.INITIALIZING and self._setup_task is not None:
            return await asyncio.shield(self._setup_task)

        self.state = SetupState.INITIALIZING
        self._setup_task = asyncio.ensure_future(self._run_setup(config, cancel))
        return await asyncio.shield(self._setup_task)

    async def _run_setup(
        self, config: KubescapeConfig, cancel: Optional[CancelToken]
    ) -> bool:
        try:
            ok = await self._initialize(config, cancel)
        except KubescapeError as e:
            logger.error(f"Kubescape setup failed: {e}")
            self.ui.error(f"Kubescape setup failed: {e}")
            ok = False
        except Exception as e:
            logger.error(f"Unexpected error during kubescape setup: {e}", exc_info=True)
            self.ui.error(f"Kubescape setup failed: {e}")
            ok = False

        self.state = SetupState.READY if ok else SetupState.FAILED
        self._setup_task = None
        logger.info(f"Kubescape setup finished: {self.state.value}")
        return ok

    async def _initialize(
        self, config: KubescapeConfig, cancel: Optional[CancelToken]
    ) -> bool:
        self._catalog = FrameworkCatalog()
        self._failures = {}

        # 1. Path resolution
        tool_path = resolve_tool_path(config.base_directory)
        self.ui.debug(f"Kubescape location: {tool_path.full_path}")

        # 2. Install check
        installed = await self.detector.is_installed(tool_path)

        # 3. Version reconciliation
        current: Optional[InstalledVersion] = None
        upstream: Optional[str] = None
        if installed:
            current = await self.detector.detect(tool_path, config.version)
            if config.wants_latest:
                upstream = await self.detector.latest_tag()
            self.ui.debug(f"Installed kubescape version: {current.version}")
        else:
            self.ui.info("Kubescape is not installed")

        # 4. Conditional install
        if needs_update(current, config.version, upstream):
            if not await self._install(tool_path, config, cancel):
                self.ui.error("Failed to install kubescape")
                self.ui.show_help("Install kubescape manually:", INSTALL_HELP_URL)
                return False
            if not await self.detector.is_installed(tool_path):
                self.ui.error(f"Kubescape at {tool_path.full_path} does not run")
                return False
            current = await self.detector.detect(tool_path, config.version)
            self.ui.info(f"Kubescape {current.version} installed")

        protocol = select_protocol(current.version)
        logger.debug(f"Using {protocol.name} output protocol for {current.version}")

        # 5. Framework provisioning
        if config.frameworks_directory:
            frameworks_dir = expand_path(config.frameworks_directory)
        else:
            frameworks_dir = default_frameworks_directory()
        provisioner = FrameworkProvisioner(
            tool_path, frameworks_dir, protocol, self._catalog, self.runner
        )
        await self._provision(provisioner, config)
        active = self._catalog.activate(config.scan_frameworks)
        self.ui.debug(f"Frameworks selected for scanning: {', '.join(active)}")

        self._tool_path = tool_path
        self._version = current
        self._protocol = protocol
        self._frameworks_dir = frameworks_dir
        self._provisioner = provisioner
        self._scanner = ScanInvoker(tool_path, frameworks_dir, self._catalog, self.runner)
        return True

    async def _download_url(self, config: KubescapeConfig) -> str:
        asset = self.asset_name or current_asset_name()
        if config.wants_latest:
            base = await self.releases.latest_download_url()
            return f"{base}/{asset}"
        return release_asset_url(config.version, asset)

    async def _install(
        self,
        tool_path: ToolPath,
        config: KubescapeConfig,
        cancel: Optional[CancelToken],
    ) -> bool:
        try:
            url = await self._download_url(config)
        except (KubescapeError, ValueError) as e:
            logger.error(f"Cannot determine kubescape download URL: {e}")
            self.ui.error(f"Cannot determine kubescape download URL: {e}")
            return False

        logger.info(f"Installing kubescape from {url}")

        async def work(progress: ProgressCallback) -> str:
            return await download_file(
                url,
                tool_path.base_dir,
                tool_path.full_path.name,
                cancel=cancel,
                progress=progress,
                executable=not is_windows(),
                client=self.client,
            )

        local_path = await self.ui.progress("Downloading Kubescape", cancel, work)
        if not local_path:
            return False
        self.ui.info(f"Successfully downloaded {tool_path.full_path.name} into {tool_path.base_dir}")
        return True

    async def _provision(
        self, provisioner: FrameworkProvisioner, config: KubescapeConfig
    ) -> None:
        try:
            found = provisioner.scan_disk()
        except OSError as e:
            logger.error(f"Cannot read frameworks directory {provisioner.frameworks_dir}: {e}")
            self.ui.error(f"Cannot read frameworks directory {provisioner.frameworks_dir}: {e}")
            found = []
        if found:
            self.ui.debug(f"Frameworks found on disk: {', '.join(found)}")

        required = config.required_frameworks or []
        bulk = config.requires_all_frameworks or (not required and not len(self._catalog))

        if bulk:
            try:
                added = await self.ui.slow(
                    "Downloading all frameworks", provisioner.download_all
                )
            except (KubescapeError, OSError) as e:
                self._failures[ALL_FRAMEWORKS] = str(e)
                logger.error(f"Failed to download frameworks: {e}")
                self.ui.error(f"Failed to download frameworks: {e}")
                return
            self.ui.debug(f"Downloaded frameworks: {', '.join(added)}")
            return

        missing = self._catalog.missing(required)
        if not missing:
            return

        try:
            report = await self.ui.slow(
                f"Downloading frameworks: {', '.join(missing)}",
                functools.partial(provisioner.download_selected, missing),
            )
        except OSError as e:
            logger.error(f"Failed to download frameworks {', '.join(missing)}: {e}")
            report = ProvisionReport(failed={name: str(e) for name in missing})
        self._failures.update(report.failed)
        for name, reason in report.failed.items():
            self.ui.error(f"Failed to download framework '{name}': {reason}")

    # ------------------------------------------------------------------
    # Operations on a ready installation
    # ------------------------------------------------------------------

    async def list_frameworks(self) -> List[str]:
        """Frameworks kubescape can download.

        Raises:
            NotInstalledError: Before a successful setup.
            SubprocessFailedError: If kubescape fails.
        """
        self._require_ready()
        return await self._provisioner.list_available()

    async def scan_file(
        self, path: Union[str, Path], overrides: Optional[ScanOptions] = None
    ) -> Dict[str, Any]:
        """Scan a manifest file. Returns ``{}`` (and reports an error) on failure."""
        self._require_ready()
        report = await self.ui.slow(
            f"Kubescape scanning {path}",
            functools.partial(self._scanner.scan_file, path, overrides),
        )
        if not report:
            self.ui.error(f"Kubescape produced no results for {path}")
        return report

    async def scan_cluster(
        self,
        context: Optional[str] = None,
        kubeconfig: Optional[Union[str, Path]] = None,
        overrides: Optional[ScanOptions] = None,
    ) -> Dict[str, Any]:
        """Scan a live cluster. Returns ``{}`` (and reports an error) on failure."""
        self._require_ready()
        title = f"Kubescape scanning cluster {context}" if context else "Kubescape scanning cluster"
        report = await self.ui.slow(
            title,
            functools.partial(self._scanner.scan_cluster, context, kubeconfig, overrides),
        )
        if not report:
            self.ui.error("Kubescape produced no cluster scan results")
        return report
