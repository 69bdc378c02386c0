"""Pydantic v2 models for the kubescape lifecycle core."""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SetupState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class InstalledVersion(BaseModel):
    """Version reported by the installed binary at setup time."""

    version: str
    is_latest: bool = False

    model_config = ConfigDict(frozen=True)


class ToolPath(BaseModel):
    """Canonical location of the kubescape binary."""

    full_path: Path
    base_dir: Path

    model_config = ConfigDict(frozen=True)


class Framework(BaseModel):
    """One framework rule bundle.

    ``is_installed`` means the bundle is selected for scanning, not merely
    present on disk.
    """

    name: str
    location: Path
    is_installed: bool = False

    @field_validator("name")
    @classmethod
    def _lower_name(cls, value: str) -> str:
        return value.lower()


class DownloadedArtifact(BaseModel):
    """A single artifact record parsed from a kubescape download command."""

    artifact: str = "framework"
    name: str
    path: Path

    @property
    def is_framework(self) -> bool:
        return self.artifact.lower() == "framework"


class ProvisionReport(BaseModel):
    """Per-framework outcome of a selective framework download."""

    downloaded: Dict[str, Framework] = Field(default_factory=dict)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ProcessSpec(BaseModel):
    """Everything needed to launch kubescape once, without a shell."""

    command: Union[Path, str]
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[Path] = None
    timeout: Optional[float] = None

    @property
    def argv(self) -> List[str]:
        return [str(self.command), *self.args]


class ProcessResult(BaseModel):
    """Captured outcome of a finished process."""

    return_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.return_code == 0
