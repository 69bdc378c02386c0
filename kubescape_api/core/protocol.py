"""Parsers for kubescape's version-dependent command output.

Kubescape changed how it reports downloaded artifacts in v2.0.150:

* before: single-quoted text on stdout, e.g.
  ``'nsa' downloaded successfully and saved at: '/home/u/.kubescape/nsa.json'``
* from v2.0.150: one JSON log object per line on stderr, e.g.
  ``{"level":"success","msg":"Downloaded","artifact":"framework","name":"nsa","path":"..."}``

A protocol is picked once from the detected version and reused for every
later parse. When the version is unknown the output itself is sniffed.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .models import DownloadedArtifact, ProcessResult

logger = logging.getLogger(__name__)

PROTOCOL_THRESHOLD = "v2.0.150"
UNKNOWN_VERSION = "unknown"

VERSION_PATTERN = re.compile(r"v(\d+)\.(\d+)\.(\d+)")

# Legacy artifacts that share the download output but are not frameworks
NON_FRAMEWORK_ARTIFACTS = frozenset(
    {"controls-inputs", "exceptions", "attack-tracks", "controls", "cloud"}
)


def parse_semver(text: str) -> Optional[Tuple[int, int, int]]:
    """First ``v<major>.<minor>.<patch>`` token in ``text`` as a tuple."""
    match = VERSION_PATTERN.search(text or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 comparing two version strings.

    Raises:
        ValueError: If either side has no version token.
    """
    a, b = parse_semver(left), parse_semver(right)
    if a is None or b is None:
        raise ValueError(f"Cannot compare versions {left!r} and {right!r}")
    return (a > b) - (a < b)


def parse_version_output(stdout: str) -> str:
    """Version token from ``kubescape version`` output, or ``"unknown"``."""
    match = VERSION_PATTERN.search(stdout or "")
    return match.group(0) if match else UNKNOWN_VERSION


def parse_update_notice(stderr: str) -> Optional[str]:
    """Newer release advertised on stderr by old kubescape builds, if any."""
    match = VERSION_PATTERN.search(stderr or "")
    return match.group(0) if match else None


def parse_framework_list(stdout: str) -> List[str]:
    """Framework names from ``kubescape list frameworks``.

    Accepts the JSON array printed with ``--format json`` as well as the
    older bullet list (``* nsa``). Names are lower-cased.
    """
    text = (stdout or "").strip()
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, list):
            return [str(name).lower() for name in data if str(name).strip()]

    names: List[str] = []
    for line in text.splitlines():
        line = line.strip().lstrip("*-").strip()
        if not line or line.endswith(":") or " " in line:
            continue
        names.append(line.lower())
    return names


# ---------------------------------------------------------------------------
# Legacy quoted-text grammar
# ---------------------------------------------------------------------------


class Token(NamedTuple):
    kind: str  # "quoted" or "word"
    value: str


def tokenize_legacy(line: str) -> List[Token]:
    """Split a legacy output line into quoted strings and bare words.

    An unterminated quote runs to the end of the line.
    """
    tokens: List[Token] = []
    i, n = 0, len(line)
    while i < n:
        ch = line[i]
        if ch.isspace():
            i += 1
        elif ch == "'":
            end = line.find("'", i + 1)
            if end == -1:
                end = n
            tokens.append(Token("quoted", line[i + 1:end]))
            i = end + 1
        else:
            start = i
            while i < n and not line[i].isspace() and line[i] != "'":
                i += 1
            tokens.append(Token("word", line[start:i]))
    return tokens


_SAVED_PHRASE = ("downloaded", "successfully", "and", "saved", "at:")
_LEGACY_KEYS = ("artifact", "name", "path")


def parse_legacy_line(line: str) -> Optional[DownloadedArtifact]:
    """Parse one legacy line into an artifact record.

    Two shapes are understood::

        'nsa' downloaded successfully and saved at: '/p/nsa.json'
        artifact: 'framework' name: 'nsa' path: '/p/nsa.json'
    """
    tokens = tokenize_legacy(line)
    if not tokens:
        return None

    fields = {}
    for key, value in zip(tokens, tokens[1:]):
        if key.kind == "word" and key.value.endswith(":") and value.kind == "quoted":
            name = key.value[:-1].lower()
            if name in _LEGACY_KEYS:
                fields.setdefault(name, value.value)

    if "name" in fields and "path" in fields:
        return DownloadedArtifact(
            artifact=fields.get("artifact", "framework"),
            name=fields["name"],
            path=fields["path"],
        )

    words = tuple(t.value.lower() for t in tokens if t.kind == "word")
    quoted = [t.value for t in tokens if t.kind == "quoted"]
    if len(quoted) < 2 or not _contains(words, _SAVED_PHRASE):
        return None

    name, path = quoted[0], quoted[-1]
    if len(quoted) > 2:
        # 'framework' 'nsa' downloaded successfully ...
        artifact, name = quoted[0], quoted[1]
    else:
        artifact = "other" if name.lower() in NON_FRAMEWORK_ARTIFACTS else "framework"
    return DownloadedArtifact(artifact=artifact, name=name, path=path)


def _contains(words: Tuple[str, ...], phrase: Tuple[str, ...]) -> bool:
    size = len(phrase)
    return any(words[i:i + size] == phrase for i in range(len(words) - size + 1))


def parse_json_line(line: str) -> Optional[DownloadedArtifact]:
    """Parse one JSON log line; lines without ``name`` and ``path`` are ignored."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not data.get("name") or not data.get("path"):
        return None
    return DownloadedArtifact(
        artifact=str(data.get("artifact") or "framework"),
        name=str(data["name"]),
        path=str(data["path"]),
    )


def _lines(*chunks: str) -> Iterable[str]:
    for chunk in chunks:
        for line in (chunk or "").splitlines():
            line = line.strip()
            if line:
                yield line


# ---------------------------------------------------------------------------
# Protocol strategies
# ---------------------------------------------------------------------------


class OutputProtocol(ABC):
    """How to read artifact records from a download command."""

    name: str = ""
    legacy: bool = False

    @abstractmethod
    def parse_download(self, result: ProcessResult) -> List[DownloadedArtifact]:
        """Return every artifact record found in ``result``."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class LegacyTextProtocol(OutputProtocol):
    """Kubescape before v2.0.150: quoted text on stdout."""

    name = "legacy-text"
    legacy = True

    def parse_download(self, result: ProcessResult) -> List[DownloadedArtifact]:
        records = [parse_legacy_line(line) for line in _lines(result.stdout)]
        return [r for r in records if r is not None]


class JsonLinesProtocol(OutputProtocol):
    """Kubescape v2.0.150 and later: JSON objects on stderr."""

    name = "json-lines"

    def parse_download(self, result: ProcessResult) -> List[DownloadedArtifact]:
        records = [parse_json_line(line) for line in _lines(result.stderr)]
        return [r for r in records if r is not None]


class SniffingProtocol(OutputProtocol):
    """Fallback when the version is unknown: decide per line from its shape."""

    name = "sniffing"
    legacy = True

    def parse_download(self, result: ProcessResult) -> List[DownloadedArtifact]:
        records = []
        for line in _lines(result.stdout, result.stderr):
            if line.startswith("{"):
                records.append(parse_json_line(line))
            else:
                records.append(parse_legacy_line(line))
        return [r for r in records if r is not None]


def select_protocol(version: str) -> OutputProtocol:
    """Pick the output protocol for a detected kubescape version."""
    if parse_semver(version) is None:
        logger.debug(f"Version {version!r} not recognised, sniffing output format")
        return SniffingProtocol()
    if compare_versions(version, PROTOCOL_THRESHOLD) >= 0:
        return JsonLinesProtocol()
    return LegacyTextProtocol()
