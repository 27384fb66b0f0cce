"""Tests for the dependencies extension."""

import json
from pathlib import Path

import pytest
from cnab_runtime.bundle import Bundle
from cnab_runtime.exceptions import BundleDependencyError
from cnab_runtime.extensions import DEPENDENCIES_KEY
from cnab_runtime.extensions import Dependencies
from cnab_runtime.extensions import Dependency
from cnab_runtime.extensions import DependencyVersion
from cnab_runtime.extensions import has_dependencies
from cnab_runtime.extensions import read_dependencies

TESTDATA = Path(__file__).parent / "testdata"


def load_testdata_bundle() -> Bundle:
    return Bundle.from_dict(json.loads((TESTDATA / "bundle.json").read_text()))


class TestReadDependencies:
    """Tests for reading the extension off a bundle."""

    def test_reads_declared_dependencies(self) -> None:
        """Every requires entry is decoded with its reference and version."""
        bundle = load_testdata_bundle()

        assert has_dependencies(bundle)
        deps = read_dependencies(bundle)
        assert deps is not None
        assert len(deps) == 3

        mysql = deps.requires["mysql"]
        assert mysql.bundle == "somecloud/mysql"
        assert mysql.version == DependencyVersion(ranges=("5.7.x",), allow_prereleases=True)

        storage = deps.requires["storage"]
        assert storage.bundle == "somecloud/blob-storage"
        assert storage.version is None

        assert deps.requires["nginx"].bundle == "localhost:5000/nginx:1.19"

    def test_absent_extension(self) -> None:
        """A bundle without the extension has no dependencies."""
        bundle = Bundle(name="plain", version="1.0.0")
        assert not has_dependencies(bundle)
        assert read_dependencies(bundle) is None

    def test_malformed_extension_names_bundle(self) -> None:
        """Decoding errors carry the declaring bundle."""
        bundle = Bundle(name="broken", version="1.0.0", custom={DEPENDENCIES_KEY: ["mysql"]})
        with pytest.raises(BundleDependencyError) as exc_info:
            read_dependencies(bundle)
        assert exc_info.value.bundle == "broken"

    def test_missing_reference(self) -> None:
        """A requires entry needs a bundle reference."""
        with pytest.raises(BundleDependencyError, match="'bundle' reference is required"):
            Dependencies.from_dict({"sequence": ["a"], "requires": {"a": {}}})

    def test_bad_allow_prereleases(self) -> None:
        """allowPrereleases must be a boolean."""
        data = {
            "sequence": ["a"],
            "requires": {"a": {"bundle": "x/a", "version": {"allowPrereleases": "yes"}}},
        }
        with pytest.raises(BundleDependencyError, match="allowPrereleases"):
            Dependencies.from_dict(data)


class TestListBySequence:
    """Tests for ordering dependencies."""

    def test_follows_sequence_not_map_order(self) -> None:
        """Listing uses the sequence; requires is in a different order."""
        deps = read_dependencies(load_testdata_bundle())
        assert deps is not None
        assert [d.name for d in deps.list_by_sequence()] == ["nginx", "storage", "mysql"]
        assert [d.name for d in deps] == ["nginx", "storage", "mysql"]

    def test_independent_of_requires_insertion_order(self) -> None:
        """Every insertion order of requires produces the same listing."""
        entries = {
            "mysql": Dependency(name="mysql", bundle="somecloud/mysql"),
            "storage": Dependency(name="storage", bundle="somecloud/blob-storage"),
            "nginx": Dependency(name="nginx", bundle="localhost:5000/nginx:1.19"),
        }
        orders = [
            ["mysql", "storage", "nginx"],
            ["nginx", "mysql", "storage"],
            ["storage", "nginx", "mysql"],
        ]
        for order in orders:
            requires = {name: entries[name] for name in order}
            deps = Dependencies(requires, ["nginx", "storage", "mysql"])
            assert [d.name for d in deps.list_by_sequence()] == ["nginx", "storage", "mysql"]

    def test_empty(self) -> None:
        """No dependencies lists nothing."""
        deps = Dependencies({}, [])
        assert deps.list_by_sequence() == []
        assert len(deps) == 0


class TestSequenceBijection:
    """Tests for the sequence/requires consistency check."""

    def test_sequence_names_unknown_dependency(self) -> None:
        """A name in sequence must be in requires."""
        with pytest.raises(BundleDependencyError, match="ghost is in sequence but not in requires"):
            Dependencies({"a": Dependency(name="a", bundle="x/a")}, ["a", "ghost"])

    def test_dependency_missing_from_sequence(self) -> None:
        """Every requires key must appear in sequence."""
        requires = {
            "a": Dependency(name="a", bundle="x/a"),
            "b": Dependency(name="b", bundle="x/b"),
        }
        with pytest.raises(BundleDependencyError, match="missing from sequence: b"):
            Dependencies(requires, ["a"])

    def test_duplicate_in_sequence(self) -> None:
        """A name may appear in sequence only once."""
        with pytest.raises(BundleDependencyError, match="more than once"):
            Dependencies({"a": Dependency(name="a", bundle="x/a")}, ["a", "a"])

    def test_map_key_is_logical_name(self) -> None:
        """The requires key wins over a mismatched Dependency.name."""
        deps = Dependencies({"db": Dependency(name="other", bundle="x/db")}, ["db"])
        assert deps.requires["db"].name == "db"


class TestDependencyVersion:
    """Tests for version constraints."""

    def test_empty_ranges_match_anything(self) -> None:
        """No ranges means any release version."""
        assert DependencyVersion().is_satisfied_by("9.9.9")

    def test_any_range_may_match(self) -> None:
        """Ranges are alternatives."""
        constraint = DependencyVersion(ranges=("1.x", "3.x"))
        assert constraint.is_satisfied_by("3.1.0")
        assert not constraint.is_satisfied_by("2.0.0")

    def test_unconstrained_dependency(self) -> None:
        """A dependency without a version accepts any version string."""
        assert Dependency(name="a", bundle="x/a").is_satisfied_by("0.0.1-dev")

    def test_round_trip_through_wire_form(self) -> None:
        """to_dict produces data from_dict accepts."""
        deps = read_dependencies(load_testdata_bundle())
        assert deps is not None
        assert Dependencies.from_dict(deps.to_dict()) == deps
