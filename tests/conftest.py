"""Shared test fixtures for the kubescape_api test suite."""

import pytest

from kubescape_api.core.paths import resolve_tool_path

from .fakes import FakeKubescape, RecordingUi


@pytest.fixture
def fake_kubescape():
    """Process runner standing in for the kubescape binary."""
    return FakeKubescape()


@pytest.fixture
def ui():
    return RecordingUi()


@pytest.fixture
def base_dir(tmp_path):
    """Directory kubescape is installed into."""
    d = tmp_path / "bin"
    d.mkdir()
    return d


@pytest.fixture
def frameworks_dir(tmp_path):
    """Directory holding framework bundles."""
    d = tmp_path / "frameworks"
    d.mkdir()
    return d


@pytest.fixture
def tool_path(base_dir):
    """Location of a kubescape binary that is present on disk."""
    path = resolve_tool_path(str(base_dir))
    path.full_path.write_bytes(b"#!/bin/sh\n")
    return path
