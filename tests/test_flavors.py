"""Tests for flavor installation."""

import subprocess

import pytest

from omakure import flavors
from omakure.flavors import FlavorError, infer_name, install_flavor, list_flavors


class TestInferName:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/org/azure-tools.git", "azure-tools"),
            ("https://github.com/org/azure-tools/", "azure-tools"),
            ("git@github.com:org/gcp.git", "gcp"),
            ("git@host:solo.git", "solo"),
        ],
    )
    def test_infer_name(self, url, expected):
        assert infer_name(url) == expected


@pytest.fixture
def fake_git(monkeypatch):
    """Pretend git exists and record clones instead of running them."""
    clones = []

    def _clone(url, dest):
        dest.mkdir(parents=True)
        clones.append((url, dest))
        return dest

    monkeypatch.setattr(flavors.shutil, "which", lambda name: "/usr/bin/git")
    monkeypatch.setattr(flavors, "shallow_clone", _clone)
    return clones


class TestInstallFlavor:
    def test_installs_under_omaken(self, workspace, fake_git):
        target = install_flavor(workspace.omaken_dir, "https://example.com/team/azure.git")
        assert target == workspace.omaken_dir / "azure"
        assert fake_git == [("https://example.com/team/azure.git", target)]
        assert list_flavors(workspace.omaken_dir) == ["azure"]

    def test_name_override(self, workspace, fake_git):
        target = install_flavor(workspace.omaken_dir, "https://example.com/x.git", name="mine")
        assert target.name == "mine"

    def test_envs_is_reserved(self, workspace, fake_git):
        with pytest.raises(FlavorError, match="reserved"):
            install_flavor(workspace.omaken_dir, "https://example.com/envs.git")
        assert fake_git == []

    def test_existing_target(self, workspace, fake_git):
        (workspace.omaken_dir / "azure").mkdir()
        with pytest.raises(FlavorError, match="already exists"):
            install_flavor(workspace.omaken_dir, "https://example.com/azure.git")

    def test_missing_git(self, workspace, monkeypatch):
        monkeypatch.setattr(flavors.shutil, "which", lambda name: None)
        with pytest.raises(FlavorError, match="git is required"):
            install_flavor(workspace.omaken_dir, "https://example.com/azure.git")

    def test_clone_failure(self, workspace, monkeypatch):
        def _fail(url, dest):
            raise subprocess.CalledProcessError(128, ["git"], stderr="fatal: not found\n")

        monkeypatch.setattr(flavors.shutil, "which", lambda name: "/usr/bin/git")
        monkeypatch.setattr(flavors, "shallow_clone", _fail)
        with pytest.raises(FlavorError, match="fatal: not found"):
            install_flavor(workspace.omaken_dir, "https://example.com/azure.git")

    def test_list_ignores_envs_and_files(self, workspace):
        (workspace.omaken_dir / "gcp").mkdir()
        (workspace.omaken_dir / "README").write_text("")
        assert list_flavors(workspace.omaken_dir) == ["gcp"]
