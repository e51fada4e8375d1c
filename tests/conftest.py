"""Pytest configuration and fixtures."""


import pytest


@pytest.fixture
def sample_manifest():
    """A small package manifest with one registry dependency."""
    return """[package]
name = "demo"
version = "0.1.0"

[dependencies]
serde = "1.0"
"""


@pytest.fixture
def manifest_file(tmp_path, sample_manifest):
    """Write the sample manifest to a temporary crate directory."""
    manifest = tmp_path / "Cargo.toml"
    manifest.write_text(sample_manifest)
    return manifest


def _write_member(root, name, version="1.0.0", dependencies=""):
    """Create ``root/name/Cargo.toml`` for a workspace member."""
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)
    text = f'[package]\nname = "{name}"\nversion = "{version}"\n'
    if dependencies:
        text += f"\n[dependencies]\n{dependencies}"
    (directory / "Cargo.toml").write_text(text)
    return directory / "Cargo.toml"


@pytest.fixture
def write_member():
    """Return the helper that writes workspace member manifests."""
    return _write_member


@pytest.fixture
def workspace_root(tmp_path):
    """A workspace where ``a`` and ``b`` depend on ``core`` and ``c`` does not."""
    (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["core", "a", "b", "c"]\n')
    _write_member(tmp_path, "core")
    _write_member(tmp_path, "a", dependencies='core = { path = "../core", version = "1.0" }\n')
    _write_member(tmp_path, "b", dependencies='core = { path = "../core", version = "~1.0.0" }\n')
    _write_member(tmp_path, "c", dependencies='serde = "1"\n')
    return tmp_path
