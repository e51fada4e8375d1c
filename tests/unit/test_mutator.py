"""Tests for dependency edits on a document."""

import pytest

from cratefix import mutator
from cratefix.document import parse
from cratefix.errors import InvalidManifest, NotFoundError
from cratefix.models import ChangeRecord, DependencySpec, DepKind, DepTable, PathSource
from cratefix.policy import RequirementPolicy
from cratefix.semver import Version, VersionReq

PACKAGE = '[package]\nname = "demo"\nversion = "0.1.0"\n'


def caret(text):
    return VersionReq.caret(Version.parse(text))


class TestAdd:
    """Test adding and merging dependencies."""

    def test_add_to_existing_table(self):
        """Should append a scalar declaration after the last entry."""
        document = parse('[dependencies]\nserde = "1.0"\n')
        changes = mutator.add(document, DependencySpec(name="foo", requirement=caret("1.4.2")), DepTable())
        assert document.render() == '[dependencies]\nserde = "1.0"\nfoo = "1.4.2"\n'
        assert changes == [ChangeRecord("", "foo", "dependency", None, "1.4.2")]

    def test_add_creates_missing_table(self):
        """Should add the table at the end of the manifest."""
        document = parse(PACKAGE)
        mutator.add(document, DependencySpec(name="foo", requirement=caret("1.2.3")), DepTable())
        assert document.render() == PACKAGE + '\n[dependencies]\nfoo = "1.2.3"\n'

    def test_add_to_target_dev_table(self):
        """Should create a target-specific development table."""
        document = parse(PACKAGE)
        mutator.add(
            document,
            DependencySpec(name="foo", requirement=caret("1.2.3")),
            DepTable(DepKind.DEVELOPMENT, "cfg(unix)"),
        )
        assert document.render() == PACKAGE + '\n[target."cfg(unix)".dev-dependencies]\nfoo = "1.2.3"\n'

    def test_add_is_idempotent(self):
        """Should make no change when the same spec is added twice."""
        document = parse('[dependencies]\nserde = "1.0"\n')
        spec = DependencySpec(name="foo", requirement=caret("1.4.2"), features=("std",))
        mutator.add(document, spec, DepTable())
        once = document.render()
        assert mutator.add(document, spec, DepTable()) == []
        assert document.render() == once

    def test_add_renamed_dependency(self):
        """Should declare the dependency under its new key with a package field."""
        document = parse("[dependencies]\n")
        spec = DependencySpec(name="serde_json", rename="json", requirement=VersionReq.parse("1"))
        changes = mutator.add(document, spec, DepTable())
        assert document.render() == '[dependencies]\njson = { version = "1", package = "serde_json" }\n'
        assert changes[0].package == "serde_json"

    def test_features_are_merged_into_inline_table(self):
        """Should append new features to the existing array."""
        document = parse('[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n')
        changes = mutator.add(document, DependencySpec(name="serde", features=("derive", "rc")), DepTable())
        assert document.render() == '[dependencies]\nserde = { version = "1.0", features = ["derive", "rc"] }\n'
        assert changes == [ChangeRecord("", "serde", "features", "derive", "derive, rc")]

    def test_scalar_grows_into_inline_table(self):
        """Should rewrite a version string as a table when features are added."""
        document = parse('[dependencies]\nserde = "1.0"\n')
        mutator.add(document, DependencySpec(name="serde", features=("derive",)), DepTable())
        assert document.render() == '[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n'

    def test_default_features_in_table_form(self):
        """Should add default-features = false to a [dependencies.x] table."""
        document = parse('[dependencies.tokio]\nversion = "1"\nfeatures = ["rt"]\n')
        changes = mutator.add(document, DependencySpec(name="tokio", default_features=False), DepTable())
        assert document.render() == (
            '[dependencies.tokio]\nversion = "1"\nfeatures = ["rt"]\ndefault-features = false\n'
        )
        assert changes == [ChangeRecord("", "tokio", "default-features", "true", "false")]

    def test_optional_in_dotted_form(self):
        """Should keep using dotted keys for a dotted declaration."""
        document = parse('[dependencies]\nserde.version = "1.0"\nserde.features = ["derive"]\n')
        mutator.add(document, DependencySpec(name="serde", optional=True), DepTable())
        assert document.render() == (
            '[dependencies]\nserde.version = "1.0"\nserde.features = ["derive"]\nserde.optional = true\n'
        )

    def test_explicit_requirement_replaces_existing(self):
        """Should overwrite the version requirement in place."""
        document = parse('[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n')
        mutator.add(document, DependencySpec(name="serde", requirement=VersionReq.parse("1.2")), DepTable())
        assert document.render() == '[dependencies]\nserde = { version = "1.2", features = ["derive"] }\n'


class TestRemove:
    """Test removing dependencies."""

    def test_remove_missing_dependency(self):
        """Should raise and leave the document untouched."""
        text = '[dependencies]\nbar = "1.2"\n'
        document = parse(text)
        with pytest.raises(NotFoundError):
            mutator.remove(document, "baz", DepTable())
        assert document.render() == text

    def test_remove_keeps_other_entries(self):
        """Should only delete the named declaration."""
        document = parse('[dependencies]\nserde = "1.0"\nrand = "0.8"\n')
        changes = mutator.remove(document, "serde", DepTable(), "Cargo.toml")
        assert document.render() == '[dependencies]\nrand = "0.8"\n'
        assert changes == [ChangeRecord("Cargo.toml", "serde", "dependency", "1.0", None)]

    def test_remove_cleans_feature_activations(self):
        """Should drop stale feature references and the emptied table."""
        document = parse(
            PACKAGE
            + "\n[features]\n"
            + 'default = ["json"]\n'
            + 'json = ["dep:serde_json", "serde_json/std"]\n'
            + 'extra = ["serde_json?/alloc", "other"]\n'
            + "\n[dependencies]\n"
            + 'serde_json = { version = "1", optional = true }\n'
        )
        changes = mutator.remove(document, "serde_json", DepTable())
        assert document.render() == (
            PACKAGE + '\n[features]\ndefault = ["json"]\njson = []\nextra = ["other"]\n'
        )
        assert [change.field for change in changes] == [
            "dependency",
            "features.json",
            "features.json",
            "features.extra",
        ]

    def test_remove_from_one_table_keeps_activations(self):
        """Should keep sub-feature activations while another declaration remains."""
        document = parse(
            '[features]\ndefault = ["serde/std"]\n\n'
            '[dependencies]\nserde = "1.0"\n\n'
            '[dev-dependencies]\nserde = "1.0"\n'
        )
        mutator.remove(document, "serde", DepTable(DepKind.DEVELOPMENT))
        assert document.render() == '[features]\ndefault = ["serde/std"]\n\n[dependencies]\nserde = "1.0"\n'


class TestSetVersion:
    """Test rewriting dependency requirements."""

    def test_compatible_policy_keeps_precision(self):
        """Should rewrite "1.2" to "1.5" for version 1.5.0."""
        document = parse('[dependencies]\nbar = "1.2"\n')
        changes = mutator.set_version(document, "bar", Version.parse("1.5.0"), RequirementPolicy.COMPATIBLE)
        assert document.render() == '[dependencies]\nbar = "1.5"\n'
        assert changes == [ChangeRecord("", "bar", "requirement", "1.2", "1.5")]

    def test_every_table_is_updated(self):
        """Should rewrite each declaration of the package."""
        document = parse('[dependencies]\nserde = "1.0"\n\n[dev-dependencies]\nserde = "1.0"\n')
        changes = mutator.set_version(document, "serde", Version.parse("1.2.0"))
        assert document.render() == '[dependencies]\nserde = "1.2"\n\n[dev-dependencies]\nserde = "1.2"\n'
        assert len(changes) == 2

    def test_versionless_declarations_are_skipped(self):
        """Should leave path-only dependencies alone."""
        text = '[dependencies]\na = { path = "../a" }\nb = { path = "../b", version = "0.1" }\n'
        document = parse(text)
        assert mutator.set_version(document, "a", Version.parse("0.2.0")) == []
        mutator.set_version(document, "b", Version.parse("0.2.0"), RequirementPolicy.COMPATIBLE)
        assert document.render() == '[dependencies]\na = { path = "../a" }\nb = { path = "../b", version = "0.2" }\n'

    def test_missing_dependency_in_named_table(self):
        """Should raise when the table does not declare the dependency."""
        document = parse('[dependencies]\nserde = "1.0"\n')
        with pytest.raises(NotFoundError):
            mutator.set_version(document, "rand", Version.parse("1.0.0"), table=DepTable())


class TestPackageVersion:
    """Test reading and writing the package's own version."""

    def test_set_package_version(self):
        """Should rewrite package.version and report the change."""
        document = parse(PACKAGE)
        changes = mutator.set_package_version(document, Version.parse("0.2.0"), manifest="Cargo.toml")
        assert document.render() == PACKAGE.replace("0.1.0", "0.2.0")
        assert changes == [ChangeRecord("Cargo.toml", "demo", "version", "0.1.0", "0.2.0")]

    def test_inherited_version_is_rejected(self):
        """Should refuse to edit a version inherited from the workspace."""
        document = parse('[package]\nname = "demo"\nversion.workspace = true\n')
        assert mutator.package_version(document) is None
        with pytest.raises(InvalidManifest):
            mutator.set_package_version(document, Version.parse("0.2.0"))

    def test_missing_version_is_rejected(self):
        """Should raise when the package has no version."""
        with pytest.raises(InvalidManifest):
            mutator.set_package_version(parse('[package]\nname = "demo"\n'), Version.parse("0.2.0"))

    def test_package_name(self):
        """Should read the package name, if any."""
        assert mutator.package_name(parse(PACKAGE)) == "demo"
        assert mutator.package_name(parse("[workspace]\n")) is None

    def test_path_dependency_spec(self):
        """Should write a path dependency with its version."""
        document = parse("[dependencies]\n")
        spec = DependencySpec(name="core", requirement=caret("1.0.0"), source=PathSource("../core"))
        mutator.add(document, spec, DepTable())
        assert document.render() == '[dependencies]\ncore = { version = "1.0.0", path = "../core" }\n'
