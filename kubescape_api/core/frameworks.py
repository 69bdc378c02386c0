"""Framework bundle catalog and provisioning.

The catalog is filled from three sources, in this order: bundles already on
disk, frameworks downloaded one by one on request, and a bulk download of
every artifact. An entry is never replaced once cataloged, so whatever was
discovered first for a framework is what scans use.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..models import ALL_FRAMEWORKS
from .errors import MalformedOutputError
from .models import Framework, ProcessSpec, ProvisionReport, ToolPath
from .process import ProcessRunner, run_checked, run_process
from .protocol import OutputProtocol, parse_framework_list
from .version import SKIP_UPDATE_ENV

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".json"

DOWNLOAD_TIMEOUT = 300


def read_bundle(path: Path) -> Optional[Dict[str, Any]]:
    """Load a framework bundle, or None if the file is not one."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"Skipping {path}: {e}")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("controls"), list):
        return None
    return data


def scan_directory(directory: Path) -> Dict[str, Framework]:
    """Find framework bundles in ``directory``, keyed by lower-cased file stem."""
    found: Dict[str, Framework] = {}
    if not directory.is_dir():
        return found

    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() != BUNDLE_SUFFIX:
            continue
        if read_bundle(path) is None:
            continue
        name = path.stem.lower()
        found.setdefault(name, Framework(name=name, location=path.resolve()))

    logger.debug(f"Found {len(found)} framework bundles in {directory}")
    return found


class FrameworkCatalog:
    """Name -> Framework mapping with first-write-wins insertion."""

    def __init__(self) -> None:
        self._frameworks: Dict[str, Framework] = {}
        self._controls: Optional[Dict[str, Dict[str, Any]]] = None

    def add(self, framework: Framework) -> bool:
        """Catalog ``framework`` unless its name is already present."""
        key = framework.name.lower()
        if key in self._frameworks:
            return False
        self._frameworks[key] = framework
        self._controls = None
        return True

    def merge(self, frameworks: Iterable[Framework]) -> List[str]:
        """Add every framework not yet cataloged; return the names added."""
        return [f.name for f in frameworks if self.add(f)]

    def get(self, name: str) -> Optional[Framework]:
        return self._frameworks.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._frameworks

    def __len__(self) -> int:
        return len(self._frameworks)

    def __iter__(self) -> Iterator[Framework]:
        return iter(self._frameworks.values())

    @property
    def names(self) -> List[str]:
        return list(self._frameworks)

    @property
    def active_names(self) -> List[str]:
        return [name for name, f in self._frameworks.items() if f.is_installed]

    def missing(self, names: Iterable[str]) -> List[str]:
        """Names from ``names`` that are not cataloged, de-duplicated."""
        result: List[str] = []
        for name in names:
            key = name.lower()
            if key != ALL_FRAMEWORKS and key not in self._frameworks and key not in result:
                result.append(key)
        return result

    def activate(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """Select which cataloged frameworks scans run against.

        No names, or the "all" sentinel, selects everything. Unknown names are
        logged and ignored.
        """
        wanted = {n.lower() for n in names or ()}
        select_all = not wanted or ALL_FRAMEWORKS in wanted

        for unknown in sorted(wanted - set(self._frameworks) - {ALL_FRAMEWORKS}):
            logger.warning(f"Framework '{unknown}' is not available and will not be scanned")

        for name, framework in self._frameworks.items():
            framework.is_installed = select_all or name in wanted
        return self.active_names

    def control_lookup(self) -> Dict[str, Dict[str, Any]]:
        """Map control ID -> control definition across every cataloged bundle.

        Built on first use and cached until the catalog changes. The first
        bundle defining a control wins.
        """
        if self._controls is not None:
            return self._controls

        controls: Dict[str, Dict[str, Any]] = {}
        for framework in self._frameworks.values():
            bundle = read_bundle(framework.location)
            if bundle is None:
                logger.warning(f"Framework {framework.name}: cannot read {framework.location}")
                continue
            for control in bundle["controls"]:
                if not isinstance(control, dict):
                    continue
                control_id = control.get("controlID") or control.get("id")
                if control_id and control_id not in controls:
                    controls[control_id] = control

        self._controls = controls
        return controls

    def reset_controls(self) -> None:
        self._controls = None


class FrameworkProvisioner:
    """Downloads framework bundles with the kubescape binary itself."""

    def __init__(
        self,
        tool_path: ToolPath,
        frameworks_dir: Path,
        protocol: OutputProtocol,
        catalog: FrameworkCatalog,
        runner: ProcessRunner = run_process,
    ):
        self.tool_path = tool_path
        self.frameworks_dir = frameworks_dir
        self.protocol = protocol
        self.catalog = catalog
        self.runner = runner

    def _spec(self, *args: str) -> ProcessSpec:
        return ProcessSpec(
            command=self.tool_path.full_path,
            args=list(args),
            env=SKIP_UPDATE_ENV,
            timeout=DOWNLOAD_TIMEOUT,
        )

    def scan_disk(self) -> List[str]:
        """Catalog bundles already present in the frameworks directory."""
        return self.catalog.merge(scan_directory(self.frameworks_dir).values())

    async def download_framework(self, name: str) -> Framework:
        """Download one framework and return its catalog entry.

        Raises:
            SubprocessFailedError: If kubescape fails.
            MalformedOutputError: If the output does not say where the
                bundle went and it is not at the expected location either.
        """
        name = name.lower()
        target = self.frameworks_dir / f"{name}{BUNDLE_SUFFIX}"
        result = await run_checked(
            self.runner,
            self._spec("download", "framework", name, "--output", str(target)),
        )

        records = [r for r in self.protocol.parse_download(result) if r.is_framework]
        for record in records:
            if record.name.lower() == name:
                return Framework(name=name, location=record.path)
        if records:
            return Framework(name=name, location=records[0].path)
        if target.is_file():
            logger.debug(f"No download record for {name}, using {target}")
            return Framework(name=name, location=target)
        raise MalformedOutputError(f"Cannot tell where framework '{name}' was saved")

    async def download_selected(self, names: Iterable[str]) -> ProvisionReport:
        """Download ``names`` concurrently.

        Every download runs to completion; a failure is recorded for its name
        and does not affect the others.
        """
        wanted = list(dict.fromkeys(n.lower() for n in names))
        report = ProvisionReport()
        if not wanted:
            return report

        self.frameworks_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading frameworks: {', '.join(wanted)}")

        outcomes = await asyncio.gather(
            *(self.download_framework(name) for name in wanted),
            return_exceptions=True,
        )
        for name, outcome in zip(wanted, outcomes):
            if isinstance(outcome, Exception):
                report.failed[name] = str(outcome) or outcome.__class__.__name__
                logger.error(f"Failed to download framework '{name}': {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.downloaded[name] = outcome
                self.catalog.add(outcome)
        return report

    async def download_all(self) -> List[str]:
        """Download every artifact kubescape offers and catalog the frameworks.

        Raises:
            SubprocessFailedError: If kubescape fails.
        """
        self.frameworks_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading all frameworks into {self.frameworks_dir}")
        result = await run_checked(
            self.runner,
            self._spec("download", "artifacts", "--output", str(self.frameworks_dir)),
        )
        frameworks = [
            Framework(name=record.name, location=record.path)
            for record in self.protocol.parse_download(result)
            if record.is_framework
        ]
        return self.catalog.merge(frameworks)

    async def list_available(self) -> List[str]:
        """Names of the frameworks kubescape can download.

        Raises:
            SubprocessFailedError: If kubescape fails.
        """
        result = await run_checked(
            self.runner, self._spec("list", "frameworks", "--format", "json")
        )
        return parse_framework_list(result.stdout)
