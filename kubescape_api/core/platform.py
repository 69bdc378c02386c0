"""Release asset selection for the current OS and CPU architecture."""

import platform
from typing import Dict, Optional, Tuple

# Architecture normalization map
_ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "arm64": "arm64",
    "aarch64": "arm64",
}

_OS_MAP = {
    "linux": "linux",
    "darwin": "darwin",
    "windows": "windows",
    "win32": "windows",
}

# (os, arch) -> release asset name
ASSET_NAMES: Dict[Tuple[str, str], str] = {
    ("linux", "amd64"): "kubescape-ubuntu-latest",
    ("linux", "arm64"): "kubescape-arm64-ubuntu-latest",
    ("darwin", "amd64"): "kubescape-macos-latest",
    ("darwin", "arm64"): "kubescape-arm64-macos-latest",
    ("windows", "amd64"): "kubescape-windows-latest",
}


def normalize_os(system: str) -> Optional[str]:
    return _OS_MAP.get(system.lower())


def normalize_arch(machine: str) -> Optional[str]:
    return _ARCH_MAP.get(machine.lower())


def choose_asset_name(os_name: str, arch: str) -> str:
    """Return the release asset for ``(os_name, arch)``.

    Raises:
        ValueError: If the combination has no published asset.
    """
    key = (normalize_os(os_name) or os_name.lower(), normalize_arch(arch) or arch.lower())
    try:
        return ASSET_NAMES[key]
    except KeyError:
        raise ValueError(
            f"Unsupported platform: {os_name}/{arch}. "
            f"Supported: {', '.join(f'{o}/{a}' for o, a in sorted(ASSET_NAMES))}"
        ) from None


def current_asset_name() -> str:
    """Asset name for the machine we are running on."""
    return choose_asset_name(platform.system(), platform.machine())
