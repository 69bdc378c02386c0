"""Resolution of the kubescape binary location.

Base directories may arrive URL-encoded (editor settings do this) and may
contain ``~`` or ``$VAR`` shorthand.
"""

import os
import re
import sys
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import unquote

from .models import ToolPath

TOOL_NAME = "kubescape"

# Default kubescape artifacts location, shared with the kubescape CLI itself
DEFAULT_FRAMEWORKS_DIR = "~/.kubescape"

_ENV_TOKEN = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


def is_windows() -> bool:
    return (
        sys.platform == "win32"
        or os.environ.get("OSTYPE") in ("cygwin", "msys")
    )


def binary_name() -> str:
    """OS-appropriate executable file name."""
    return f"{TOOL_NAME}.exe" if is_windows() else TOOL_NAME


def expand_path(raw: str, env: Optional[Mapping[str, str]] = None) -> Path:
    """Decode and expand a user-supplied path into an absolute, normalized Path.

    A leading ``~`` becomes the home directory and every ``$NAME`` or
    ``${NAME}`` token is replaced with its environment value. Unset
    variables are left as written.
    """
    environ = os.environ if env is None else env
    decoded = unquote(raw)

    if decoded == "~" or decoded.startswith(("~/", "~\\")):
        decoded = str(Path.home()) + decoded[1:]

    def _substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        return environ.get(name, match.group(0))

    expanded = _ENV_TOKEN.sub(_substitute, decoded)
    return Path(os.path.normpath(os.path.abspath(expanded)))


def resolve_tool_path(base_dir: str) -> ToolPath:
    """Compute where the binary lives under ``base_dir``. Existence is not checked."""
    directory = expand_path(base_dir)
    return ToolPath(full_path=directory / binary_name(), base_dir=directory)


def default_frameworks_directory() -> Path:
    return expand_path(DEFAULT_FRAMEWORKS_DIR)
