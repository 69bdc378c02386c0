from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

# Requested version meaning "whatever the newest upstream release is"
LATEST = "latest"

# Framework list meaning "every framework"
ALL_FRAMEWORKS = "all"


class KubescapeConfig(BaseModel):
    version: str = LATEST
    base_directory: str = "~/.kubescape/bin"
    frameworks_directory: Optional[str] = None
    required_frameworks: Optional[List[str]] = None
    scan_frameworks: Optional[List[str]] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("required_frameworks", "scan_frameworks", mode="before")
    @classmethod
    def _split_names(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        if value is None:
            return None
        return [str(v).strip().lower() for v in value if str(v).strip()]

    @property
    def wants_latest(self) -> bool:
        return self.version == LATEST

    @property
    def requires_all_frameworks(self) -> bool:
        return bool(self.required_frameworks) and ALL_FRAMEWORKS in self.required_frameworks


class LoggingConfig(BaseModel):
    level: str = "INFO"
    logs_dir: str = "./logs"

    model_config = ConfigDict(extra="forbid")
