"""Tests for version parsing and the two download-output protocols."""

import json
from pathlib import Path

import pytest

from kubescape_api.core.models import ProcessResult
from kubescape_api.core.protocol import (
    JsonLinesProtocol,
    LegacyTextProtocol,
    SniffingProtocol,
    Token,
    compare_versions,
    parse_framework_list,
    parse_json_line,
    parse_legacy_line,
    parse_semver,
    parse_update_notice,
    parse_version_output,
    select_protocol,
    tokenize_legacy,
)

# Recorded from kubescape v2.0.144
LEGACY_DOWNLOAD_STDOUT = (
    "'nsa' downloaded successfully and saved at: '/home/dev/.kubescape/nsa.json'\n"
)
LEGACY_ARTIFACTS_STDOUT = "\n".join([
    "'controls-inputs' downloaded successfully and saved at: '/home/dev/.kubescape/controls-inputs.json'",
    "'exceptions' downloaded successfully and saved at: '/home/dev/.kubescape/exceptions.json'",
    "'framework' 'mitre' downloaded successfully and saved at: '/home/dev/.kubescape/mitre.json'",
    "'nsa' downloaded successfully and saved at: '/home/dev/.kubescape/nsa.json'",
    "Download completed",
])

# Recorded from kubescape v2.0.150+
JSON_DOWNLOAD_STDERR = "\n".join([
    json.dumps({"level": "info", "ts": "2022-05-01T10:00:00Z", "msg": "Downloading framework"}),
    json.dumps({
        "level": "success",
        "ts": "2022-05-01T10:00:01Z",
        "msg": "Downloaded",
        "artifact": "framework",
        "name": "nsa",
        "path": "/home/dev/.kubescape/nsa.json",
    }),
])


class TestVersionParsing:
    def test_parse_semver(self):
        assert parse_semver("Your current version is: v2.0.144 [git enabled]") == (2, 0, 144)

    def test_parse_semver_without_token(self):
        assert parse_semver("kubescape dev build") is None

    @pytest.mark.parametrize(
        "left, right, expected",
        [
            ("v2.0.144", "v2.0.150", -1),
            ("v2.0.150", "v2.0.150", 0),
            ("v2.1.0", "v2.0.150", 1),
            ("v10.0.0", "v9.9.9", 1),
        ],
    )
    def test_compare_versions(self, left, right, expected):
        assert compare_versions(left, right) == expected

    def test_compare_versions_rejects_garbage(self):
        with pytest.raises(ValueError):
            compare_versions("unknown", "v2.0.150")

    def test_version_output_first_match(self):
        stdout = "Your current version is: v2.0.161 (built from v2.0.160)"
        assert parse_version_output(stdout) == "v2.0.161"

    def test_version_output_unknown(self):
        assert parse_version_output("") == "unknown"

    def test_update_notice(self):
        stderr = "Warning: You are not updated to the latest release: v2.0.158"
        assert parse_update_notice(stderr) == "v2.0.158"
        assert parse_update_notice("") is None


class TestProtocolSelection:
    def test_before_threshold_is_legacy(self):
        assert isinstance(select_protocol("v2.0.149"), LegacyTextProtocol)

    def test_threshold_is_json(self):
        assert isinstance(select_protocol("v2.0.150"), JsonLinesProtocol)

    def test_newer_is_json(self):
        assert isinstance(select_protocol("v3.0.1"), JsonLinesProtocol)

    def test_unknown_sniffs(self):
        protocol = select_protocol("unknown")
        assert isinstance(protocol, SniffingProtocol)
        assert protocol.legacy is True


class TestLegacyGrammar:
    def test_tokenize(self):
        tokens = tokenize_legacy("'nsa' saved at: '/tmp/a b.json'")
        assert tokens == [
            Token("quoted", "nsa"),
            Token("word", "saved"),
            Token("word", "at:"),
            Token("quoted", "/tmp/a b.json"),
        ]

    def test_tokenize_unterminated_quote(self):
        assert tokenize_legacy("'abc") == [Token("quoted", "abc")]

    def test_saved_at_line(self):
        record = parse_legacy_line(LEGACY_DOWNLOAD_STDOUT.strip())
        assert record.name == "nsa"
        assert record.path == Path("/home/dev/.kubescape/nsa.json")
        assert record.is_framework

    def test_key_value_line(self):
        record = parse_legacy_line(
            "artifact: 'framework' name: 'mitre' path: '/opt/ks/mitre.json'"
        )
        assert record.name == "mitre"
        assert record.path == Path("/opt/ks/mitre.json")
        assert record.is_framework

    def test_key_value_non_framework(self):
        record = parse_legacy_line(
            "artifact: 'exceptions' name: 'exceptions' path: '/opt/ks/exceptions.json'"
        )
        assert record.is_framework is False

    def test_known_non_framework_artifact(self):
        record = parse_legacy_line(
            "'controls-inputs' downloaded successfully and saved at: '/x/controls-inputs.json'"
        )
        assert record.is_framework is False

    def test_unrelated_line(self):
        assert parse_legacy_line("Download completed") is None
        assert parse_legacy_line("") is None

    def test_legacy_protocol_reads_stdout_only(self):
        result = ProcessResult(return_code=0, stdout=LEGACY_ARTIFACTS_STDOUT, stderr=JSON_DOWNLOAD_STDERR)
        records = LegacyTextProtocol().parse_download(result)
        frameworks = sorted(r.name for r in records if r.is_framework)
        assert frameworks == ["mitre", "nsa"]


class TestJsonLines:
    def test_json_line(self):
        line = JSON_DOWNLOAD_STDERR.splitlines()[1]
        record = parse_json_line(line)
        assert record.name == "nsa"
        assert record.artifact == "framework"

    def test_json_line_without_path_ignored(self):
        assert parse_json_line(JSON_DOWNLOAD_STDERR.splitlines()[0]) is None

    def test_non_json_ignored(self):
        assert parse_json_line("not json") is None
        assert parse_json_line("[1, 2]") is None

    def test_json_protocol_reads_stderr_only(self):
        result = ProcessResult(return_code=0, stdout=LEGACY_DOWNLOAD_STDOUT, stderr=JSON_DOWNLOAD_STDERR)
        records = JsonLinesProtocol().parse_download(result)
        assert [r.name for r in records] == ["nsa"]


class TestSniffing:
    def test_reads_both_formats(self):
        result = ProcessResult(
            return_code=0,
            stdout="'mitre' downloaded successfully and saved at: '/k/mitre.json'",
            stderr=JSON_DOWNLOAD_STDERR,
        )
        records = SniffingProtocol().parse_download(result)
        assert sorted(r.name for r in records) == ["mitre", "nsa"]


class TestFrameworkList:
    def test_json_array(self):
        assert parse_framework_list('["NSA", "MITRE", "ArmoBest"]') == ["nsa", "mitre", "armobest"]

    def test_bullet_list(self):
        stdout = "Supported frameworks:\n* nsa\n* mitre\n\n"
        assert parse_framework_list(stdout) == ["nsa", "mitre"]

    def test_empty(self):
        assert parse_framework_list("") == []
