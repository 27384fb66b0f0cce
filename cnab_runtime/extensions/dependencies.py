"""The dependencies extension: which bundles must be installed first, and in what order.

Extension data shape::

    {
      "sequence": ["nginx", "storage", "mysql"],
      "requires": {
        "mysql": {
          "bundle": "somecloud/mysql",
          "version": {"ranges": ["5.7.x"], "allowPrereleases": true}
        },
        "storage": {"bundle": "somecloud/blob-storage"},
        "nginx": {"bundle": "localhost:5000/nginx:1.19"}
      }
    }

``requires`` is a mapping and carries no usable order. ``sequence`` is the
authoritative install order and must name every ``requires`` key exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from cnab_runtime.exceptions import BundleDependencyError
from cnab_runtime.versions import satisfies

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle
    from cnab_runtime.extensions.registry import ProcessedExtensions

logger = logging.getLogger(__name__)

DEPENDENCIES_KEY = "io.cnab.dependencies"


@dataclass(frozen=True)
class DependencyVersion:
    """Acceptable versions of a dependency.

    Attributes:
        ranges: Range expressions; a candidate must match at least one.
            Empty means any version.
        allow_prereleases: Whether prerelease candidates may satisfy the constraint.
    """

    ranges: tuple[str, ...] = ()
    allow_prereleases: bool = False

    def is_satisfied_by(self, candidate: str) -> bool:
        """Check a candidate version against the constraint.

        Raises:
            ValueError: If the candidate or a range is malformed.
        """
        if not self.ranges:
            return satisfies(candidate, "*", allow_prereleases=self.allow_prereleases)
        return any(
            satisfies(candidate, expression, allow_prereleases=self.allow_prereleases)
            for expression in self.ranges
        )

    def describe(self) -> str:
        text = " || ".join(self.ranges) if self.ranges else "*"
        if self.allow_prereleases:
            text += " (prereleases allowed)"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {"ranges": list(self.ranges), "allowPrereleases": self.allow_prereleases}

    @classmethod
    def from_dict(cls, data: Any, *, dependency: str) -> DependencyVersion:
        if not isinstance(data, dict):
            raise BundleDependencyError(f"dependency {dependency}: version must be a mapping")
        ranges = data.get("ranges") or []
        if not isinstance(ranges, list) or not all(isinstance(r, str) for r in ranges):
            raise BundleDependencyError(f"dependency {dependency}: version.ranges must be a list of strings")
        allow = data.get("allowPrereleases", False)
        if not isinstance(allow, bool):
            raise BundleDependencyError(f"dependency {dependency}: version.allowPrereleases must be a boolean")
        return cls(ranges=tuple(ranges), allow_prereleases=allow)


@dataclass(frozen=True)
class Dependency:
    """One required bundle.

    Attributes:
        name: Logical name, unique within the declaring bundle.
        bundle: Reference used to locate the dependency bundle.
        version: Constraint on the located bundle's version; None = unconstrained.
    """

    name: str
    bundle: str
    version: DependencyVersion | None = None

    def is_satisfied_by(self, candidate: str) -> bool:
        if self.version is None:
            return True
        return self.version.is_satisfied_by(candidate)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"bundle": self.bundle}
        if self.version is not None:
            result["version"] = self.version.to_dict()
        return result

    @classmethod
    def from_dict(cls, name: str, data: Any) -> Dependency:
        if not isinstance(data, dict):
            raise BundleDependencyError(f"dependency {name}: entry must be a mapping")
        reference = data.get("bundle")
        if not isinstance(reference, str) or not reference:
            raise BundleDependencyError(f"dependency {name}: 'bundle' reference is required")
        version = data.get("version")
        return cls(
            name=name,
            bundle=reference,
            version=DependencyVersion.from_dict(version, dependency=name) if version is not None else None,
        )


class Dependencies:
    """Decoded dependencies extension: a lookup table plus an explicit order.

    The constructor enforces that ``sequence`` is a permutation of the
    ``requires`` keys, so listing never has to cope with gaps or ties.
    """

    def __init__(
        self,
        requires: Mapping[str, Dependency],
        sequence: Iterable[str],
    ) -> None:
        sequence = tuple(sequence)
        seen: set[str] = set()
        for name in sequence:
            if name in seen:
                raise BundleDependencyError(f"dependency {name} is listed more than once in sequence")
            seen.add(name)
            if name not in requires:
                raise BundleDependencyError(f"dependency {name} is in sequence but not in requires")
        missing = [name for name in requires if name not in seen]
        if missing:
            raise BundleDependencyError(
                f"dependencies missing from sequence: {', '.join(sorted(missing))}"
            )

        table: dict[str, Dependency] = {}
        for key, dependency in requires.items():
            if dependency.name != key:
                # keep the map key authoritative for the logical name
                dependency = Dependency(name=key, bundle=dependency.bundle, version=dependency.version)
            table[key] = dependency

        self._requires = MappingProxyType(table)
        self._sequence = sequence

    @property
    def requires(self) -> Mapping[str, Dependency]:
        return self._requires

    @property
    def sequence(self) -> tuple[str, ...]:
        return self._sequence

    def list_by_sequence(self) -> list[Dependency]:
        """Dependencies in declared install order."""
        return [self._requires[name] for name in self._sequence]

    def __iter__(self) -> Iterator[Dependency]:
        return iter(self.list_by_sequence())

    def __len__(self) -> int:
        return len(self._sequence)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dependencies):
            return NotImplemented
        return self._sequence == other._sequence and dict(self._requires) == dict(other._requires)

    def __repr__(self) -> str:
        return f"Dependencies(sequence={list(self._sequence)!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": list(self._sequence),
            "requires": {name: dep.to_dict() for name, dep in self._requires.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> Dependencies:
        """Decode raw extension data.

        Raises:
            BundleDependencyError: If the data is structurally invalid.
        """
        if not isinstance(data, dict):
            raise BundleDependencyError(
                f"{DEPENDENCIES_KEY} must be a mapping, got {type(data).__name__}"
            )
        requires = data.get("requires") or {}
        if not isinstance(requires, dict):
            raise BundleDependencyError(f"{DEPENDENCIES_KEY}: 'requires' must be a mapping")
        sequence = data.get("sequence") or []
        if not isinstance(sequence, list) or not all(isinstance(s, str) for s in sequence):
            raise BundleDependencyError(f"{DEPENDENCIES_KEY}: 'sequence' must be a list of names")
        return cls(
            requires={name: Dependency.from_dict(name, entry) for name, entry in requires.items()},
            sequence=sequence,
        )


def has_dependencies(bundle: Bundle) -> bool:
    """Whether the bundle declares the dependencies extension."""
    return DEPENDENCIES_KEY in bundle.custom


def read_dependencies(bundle: Bundle) -> Dependencies | None:
    """Decode the bundle's dependencies extension.

    Returns:
        Dependencies, or None when the extension is not declared.

    Raises:
        BundleDependencyError: If the extension is present but malformed.
    """
    if not has_dependencies(bundle):
        return None
    data = bundle.custom[DEPENDENCIES_KEY]
    if isinstance(data, Dependencies):
        return data
    try:
        return Dependencies.from_dict(data)
    except BundleDependencyError as e:
        e.with_context(bundle=bundle.name)
        raise


class DependenciesExtension:
    """Extension handler feeding declared dependencies to the resolver."""

    key = DEPENDENCIES_KEY

    def read(self, bundle: Bundle) -> Dependencies | None:
        return read_dependencies(bundle)

    def apply(self, value: Dependencies | None, processed: ProcessedExtensions) -> None:
        processed.dependencies = value
        if value is not None:
            logger.debug(f"Bundle declares {len(value)} dependencies: {', '.join(value.sequence)}")
