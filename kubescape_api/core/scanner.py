"""Running kubescape scans and post-processing their JSON reports."""

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import SubprocessFailedError
from .frameworks import FrameworkCatalog
from .models import ProcessSpec, ToolPath
from .process import ProcessRunner, run_process
from .version import SKIP_UPDATE_ENV

logger = logging.getLogger(__name__)

# Flag value: True -> bare flag, None/False -> flag dropped
FlagValue = Union[str, int, bool, None]
ScanOptions = Mapping[str, FlagValue]

RESULT_FILE_NAME = "results.json"

SCAN_TIMEOUT = 1800


def _flag(key: str) -> str:
    return key if key.startswith("-") else f"--{key}"


def build_flags(
    defaults: ScanOptions, overrides: Optional[ScanOptions] = None
) -> List[str]:
    """Merge flag mappings (later keys win) and render them as arguments."""
    merged: Dict[str, FlagValue] = {}
    for options in (defaults, overrides or {}):
        for key, value in options.items():
            merged[_flag(key)] = value

    args: List[str] = []
    for flag, value in merged.items():
        if value is None or value is False:
            continue
        if value is True:
            args.append(flag)
        else:
            args.extend([flag, str(value)])
    return args


def enrich_report(report: Dict[str, Any], controls: Mapping[str, Mapping[str, Any]]) -> int:
    """Attach description and remediation text to the report's control summaries.

    Works in place on ``summaryDetails.controls``, which kubescape emits as
    a mapping keyed by control ID (or, in some versions, as a list). Returns
    how many entries were enriched.
    """
    summary = report.get("summaryDetails")
    if not isinstance(summary, dict):
        return 0
    entries = summary.get("controls")
    if isinstance(entries, dict):
        pairs = list(entries.items())
    elif isinstance(entries, list):
        pairs = [(None, entry) for entry in entries]
    else:
        return 0

    enriched = 0
    for key, entry in pairs:
        if not isinstance(entry, dict):
            continue
        control_id = entry.get("controlID") or key
        control = controls.get(control_id) if control_id else None
        if not control:
            continue
        for field in ("description", "remediation"):
            if control.get(field):
                entry[field] = control[field]
        enriched += 1
    return enriched


def read_report(path: Path) -> Dict[str, Any]:
    """Load a result file; anything but a JSON object yields ``{}``."""
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except FileNotFoundError:
        logger.error(f"Kubescape did not write a report to {path}")
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read kubescape report {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Unexpected kubescape report shape in {path}")
        return {}
    return data


class ScanInvoker:
    """Builds and runs ``kubescape scan framework`` for files and clusters."""

    def __init__(
        self,
        tool_path: ToolPath,
        frameworks_dir: Path,
        catalog: FrameworkCatalog,
        runner: ProcessRunner = run_process,
        timeout: float = SCAN_TIMEOUT,
    ):
        self.tool_path = tool_path
        self.frameworks_dir = frameworks_dir
        self.catalog = catalog
        self.runner = runner
        self.timeout = timeout
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def default_options(self, output: Path) -> Dict[str, FlagValue]:
        return {
            "--format": "json",
            "--output": str(output),
            "--use-artifacts-from": str(self.frameworks_dir),
            "--keep-local": True,
        }

    def build_spec(
        self,
        output: Path,
        target: Optional[str] = None,
        extra: Optional[ScanOptions] = None,
        overrides: Optional[ScanOptions] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessSpec:
        frameworks = ",".join(self.catalog.active_names)
        args = ["scan", "framework", frameworks]
        if target:
            args.append(target)
        defaults = {**self.default_options(output), **(extra or {})}
        args.extend(build_flags(defaults, overrides))
        return ProcessSpec(
            command=self.tool_path.full_path,
            args=args,
            env={**SKIP_UPDATE_ENV, **(env or {})},
            timeout=self.timeout,
        )

    async def _scan(
        self,
        target: Optional[str] = None,
        extra: Optional[ScanOptions] = None,
        overrides: Optional[ScanOptions] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if not self.catalog.active_names:
            self.logger.error("No frameworks selected for scanning")
            return {}

        with tempfile.TemporaryDirectory(prefix="kubescape-scan-") as tmp:
            output = Path(tmp) / RESULT_FILE_NAME
            spec = self.build_spec(output, target, extra, overrides, env)
            self.logger.info(f"Running kubescape: {' '.join(spec.argv)}")

            try:
                result = await self.runner(spec)
            except SubprocessFailedError as e:
                self.logger.error(f"Kubescape scan failed: {e}")
                return {}

            # A non-zero exit may still leave a usable report behind
            if not result.ok:
                self.logger.warning(
                    f"Kubescape scan exited with code {result.return_code}: "
                    f"{result.stderr.strip()}"
                )
            report = read_report(output)

        if report:
            count = enrich_report(report, self.catalog.control_lookup())
            self.logger.debug(f"Enriched {count} control summaries")
        return report

    async def scan_file(
        self, path: Union[str, Path], overrides: Optional[ScanOptions] = None
    ) -> Dict[str, Any]:
        """Scan one manifest file; returns ``{}`` when no report is produced."""
        return await self._scan(target=str(path), overrides=overrides)

    async def scan_cluster(
        self,
        context: Optional[str] = None,
        kubeconfig: Optional[Union[str, Path]] = None,
        overrides: Optional[ScanOptions] = None,
    ) -> Dict[str, Any]:
        """Scan a live cluster; returns ``{}`` when no report is produced."""
        extra: Dict[str, FlagValue] = {}
        if context:
            extra["--kube-context"] = context
        env = {"KUBECONFIG": str(kubeconfig)} if kubeconfig else None
        return await self._scan(extra=extra, overrides=overrides, env=env)
