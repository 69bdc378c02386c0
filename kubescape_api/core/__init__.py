"""Kubescape lifecycle core.

Installation and version reconciliation, framework provisioning, and scan
invocation for the kubescape CLI.
"""

from .errors import (
    DownloadCancelledError,
    DownloadFailedError,
    KubescapeError,
    MalformedOutputError,
    NotInstalledError,
    ReleaseLookupError,
    SubprocessFailedError,
)
from .models import (
    DownloadedArtifact,
    Framework,
    InstalledVersion,
    ProcessResult,
    ProcessSpec,
    ProvisionReport,
    SetupState,
    ToolPath,
)

__all__ = [
    "DownloadCancelledError",
    "DownloadFailedError",
    "KubescapeError",
    "MalformedOutputError",
    "NotInstalledError",
    "ReleaseLookupError",
    "SubprocessFailedError",
    "DownloadedArtifact",
    "Framework",
    "InstalledVersion",
    "ProcessResult",
    "ProcessSpec",
    "ProvisionReport",
    "SetupState",
    "ToolPath",
]
