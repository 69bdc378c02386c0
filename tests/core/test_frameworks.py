"""Tests for the framework catalog and provisioning through kubescape."""

import json

import pytest

from kubescape_api.core.errors import MalformedOutputError, SubprocessFailedError
from kubescape_api.core.frameworks import FrameworkCatalog, FrameworkProvisioner, scan_directory
from kubescape_api.core.models import Framework
from kubescape_api.core.protocol import JsonLinesProtocol, LegacyTextProtocol

from ..fakes import arg_after, failed, ok, write_bundle

CONTROL = {
    "controlID": "C-0001",
    "name": "Forbidden Container Registries",
    "description": "Images from untrusted registries",
    "remediation": "Use an allow-listed registry",
}


def json_download_line(name, path, artifact="framework"):
    return json.dumps({"level": "success", "msg": "Downloaded", "artifact": artifact,
                       "name": name, "path": str(path)})


def legacy_download_line(name, path):
    return f"'{name}' downloaded successfully and saved at: '{path}'"


@pytest.fixture
def catalog():
    return FrameworkCatalog()


@pytest.fixture
def provisioner(tool_path, frameworks_dir, catalog, fake_kubescape):
    return FrameworkProvisioner(tool_path, frameworks_dir, JsonLinesProtocol(), catalog, fake_kubescape)


class TestScanDirectory:
    def test_finds_valid_bundles(self, frameworks_dir):
        write_bundle(frameworks_dir, "nsa")
        write_bundle(frameworks_dir, "MITRE")
        (frameworks_dir / "broken.json").write_text("{not json")
        (frameworks_dir / "exceptions.json").write_text(json.dumps([{"name": "x"}]))
        (frameworks_dir / "notes.txt").write_text("hello")

        found = scan_directory(frameworks_dir)

        assert sorted(found) == ["mitre", "nsa"]
        assert found["nsa"].location == (frameworks_dir / "nsa.json").resolve()
        assert found["nsa"].is_installed is False

    def test_missing_directory(self, tmp_path):
        assert scan_directory(tmp_path / "nowhere") == {}


class TestCatalog:
    def test_first_write_wins(self, catalog, tmp_path):
        assert catalog.add(Framework(name="nsa", location=tmp_path / "disk.json")) is True
        assert catalog.add(Framework(name="NSA", location=tmp_path / "downloaded.json")) is False

        assert len(catalog) == 1
        assert catalog.get("nsa").location == tmp_path / "disk.json"
        assert "Nsa" in catalog

    def test_missing_skips_all_and_duplicates(self, catalog, tmp_path):
        catalog.add(Framework(name="nsa", location=tmp_path / "nsa.json"))
        assert catalog.missing(["nsa", "mitre", "MITRE", "all"]) == ["mitre"]

    def test_activate_all(self, catalog, tmp_path):
        catalog.merge([
            Framework(name="nsa", location=tmp_path / "nsa.json"),
            Framework(name="mitre", location=tmp_path / "mitre.json"),
        ])
        assert catalog.activate(["all"]) == ["nsa", "mitre"]
        assert catalog.activate(None) == ["nsa", "mitre"]

    def test_activate_subset(self, catalog, tmp_path):
        catalog.merge([
            Framework(name="nsa", location=tmp_path / "nsa.json"),
            Framework(name="mitre", location=tmp_path / "mitre.json"),
        ])

        assert catalog.activate(["NSA", "cis"]) == ["nsa"]
        assert catalog.get("mitre").is_installed is False

    def test_control_lookup(self, catalog, frameworks_dir):
        write_bundle(frameworks_dir, "nsa", [CONTROL])
        write_bundle(frameworks_dir, "mitre", [{**CONTROL, "description": "shadowed"}, {"id": "C-0002"}])
        catalog.merge(scan_directory(frameworks_dir).values())

        lookup = catalog.control_lookup()

        # bundles are read in name order, so mitre defines C-0001 first
        assert lookup["C-0001"]["description"] == "shadowed"
        assert "C-0002" in lookup
        assert catalog.control_lookup() is lookup

    def test_control_lookup_invalidated_by_add(self, catalog, frameworks_dir):
        catalog.add(Framework(name="nsa", location=write_bundle(frameworks_dir, "nsa", [CONTROL])))
        assert list(catalog.control_lookup()) == ["C-0001"]

        path = write_bundle(frameworks_dir, "cis", [{"controlID": "C-0100"}])
        catalog.add(Framework(name="cis", location=path))

        assert sorted(catalog.control_lookup()) == ["C-0001", "C-0100"]


class TestDownloadFramework:
    @pytest.mark.asyncio
    async def test_json_lines_record(self, provisioner, fake_kubescape, frameworks_dir):
        target = frameworks_dir / "nsa.json"
        fake_kubescape.on("download", "framework", result=ok(stderr=json_download_line("nsa", target)))

        framework = await provisioner.download_framework("NSA")

        assert framework.name == "nsa"
        assert framework.location == target
        spec = fake_kubescape.calls[0]
        assert spec.args[:3] == ["download", "framework", "nsa"]
        assert arg_after(spec, "--output") == str(target)
        assert spec.env["KUBESCAPE_SKIP_UPDATE_CHECK"] == "true"

    @pytest.mark.asyncio
    async def test_legacy_record(self, tool_path, frameworks_dir, catalog, fake_kubescape):
        provisioner = FrameworkProvisioner(tool_path, frameworks_dir, LegacyTextProtocol(), catalog, fake_kubescape)
        saved = frameworks_dir / "elsewhere" / "nsa.json"
        fake_kubescape.on("download", "framework", result=ok(legacy_download_line("nsa", saved)))

        framework = await provisioner.download_framework("nsa")

        assert framework.location == saved

    @pytest.mark.asyncio
    async def test_falls_back_to_target_file(self, provisioner, fake_kubescape, frameworks_dir):
        def handler(spec):
            write_bundle(frameworks_dir, "nsa")
            return ok()

        fake_kubescape.on("download", "framework", handler=handler)

        framework = await provisioner.download_framework("nsa")

        assert framework.location == frameworks_dir / "nsa.json"

    @pytest.mark.asyncio
    async def test_unreadable_output(self, provisioner, fake_kubescape):
        fake_kubescape.on("download", "framework", result=ok())
        with pytest.raises(MalformedOutputError):
            await provisioner.download_framework("nsa")


class TestDownloadSelected:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, provisioner, fake_kubescape, frameworks_dir, catalog):
        mitre = frameworks_dir / "mitre.json"
        fake_kubescape.on("download", "framework", "nsa", result=failed("no such framework"))
        fake_kubescape.on("download", "framework", "mitre", result=ok(stderr=json_download_line("mitre", mitre)))

        report = await provisioner.download_selected(["nsa", "mitre"])

        assert not report.ok
        assert list(report.failed) == ["nsa"]
        assert list(report.downloaded) == ["mitre"]
        assert catalog.names == ["mitre"]

    @pytest.mark.asyncio
    async def test_nothing_requested(self, provisioner, fake_kubescape):
        report = await provisioner.download_selected([])
        assert report.ok
        assert fake_kubescape.calls == []


class TestDownloadAll:
    @pytest.mark.asyncio
    async def test_catalogs_frameworks_only(self, provisioner, fake_kubescape, frameworks_dir, catalog):
        stderr = "\n".join([
            json_download_line("controls-inputs", frameworks_dir / "controls-inputs.json", "controls-inputs"),
            json_download_line("nsa", frameworks_dir / "nsa.json"),
            json_download_line("mitre", frameworks_dir / "mitre.json"),
        ])
        fake_kubescape.on("download", "artifacts", result=ok(stderr=stderr))

        added = await provisioner.download_all()

        assert added == ["nsa", "mitre"]
        assert catalog.names == ["nsa", "mitre"]
        assert arg_after(fake_kubescape.calls[0], "--output") == str(frameworks_dir)

    @pytest.mark.asyncio
    async def test_disk_entries_kept(self, provisioner, fake_kubescape, frameworks_dir, catalog):
        write_bundle(frameworks_dir, "nsa")
        provisioner.scan_disk()
        fake_kubescape.on("download", "artifacts", result=ok(
            stderr=json_download_line("nsa", frameworks_dir / "other" / "nsa.json")
        ))

        assert await provisioner.download_all() == []
        assert catalog.get("nsa").location == (frameworks_dir / "nsa.json").resolve()

    @pytest.mark.asyncio
    async def test_failure_raises(self, provisioner, fake_kubescape):
        fake_kubescape.on("download", "artifacts", result=failed("network down"))
        with pytest.raises(SubprocessFailedError):
            await provisioner.download_all()


@pytest.mark.asyncio
async def test_list_available(provisioner, fake_kubescape):
    fake_kubescape.on("list", "frameworks", result=ok('["nsa", "mitre", "ArmoBest"]'))
    assert await provisioner.list_available() == ["nsa", "mitre", "armobest"]
