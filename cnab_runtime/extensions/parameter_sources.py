"""The parameter-sources extension: parameters fed from a previous run's outputs.

Extension data shape::

    {
      "connection-string": {
        "priority": ["output"],
        "sources": {"output": {"name": "connstr"}}
      }
    }

When the caller does not supply a value for ``connection-string``, the
orchestrator looks for an output named ``connstr`` on the installation's
latest claim and uses it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cnab_runtime.exceptions import ExtensionError

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle
    from cnab_runtime.extensions.registry import ProcessedExtensions

PARAMETER_SOURCES_KEY = "io.cnab.parameter-sources"

SOURCE_KINDS = ("output",)


@dataclass(frozen=True)
class ParameterSource:
    """Where one parameter's value may come from.

    Attributes:
        parameter: Parameter name.
        priority: Source kinds in the order they are consulted.
        output: For the ``output`` kind, the output name to read.
    """

    parameter: str
    priority: tuple[str, ...] = ("output",)
    output: str | None = None

    def lookup(self, previous_outputs: dict[str, Any]) -> tuple[bool, Any]:
        """Find a value among ``previous_outputs``.

        Returns:
            (found, value) tuple.
        """
        for kind in self.priority:
            if kind == "output" and self.output and self.output in previous_outputs:
                return True, previous_outputs[self.output]
        return False, None

    def to_dict(self) -> dict[str, Any]:
        sources: dict[str, Any] = {}
        if self.output:
            sources["output"] = {"name": self.output}
        return {"priority": list(self.priority), "sources": sources}

    @classmethod
    def from_dict(cls, parameter: str, data: Any) -> ParameterSource:
        where = f"{PARAMETER_SOURCES_KEY}: {parameter}"
        if not isinstance(data, dict):
            raise ExtensionError(f"{where} must be a mapping")

        sources = data.get("sources") or {}
        if not isinstance(sources, dict):
            raise ExtensionError(f"{where}: 'sources' must be a mapping")
        for kind in sources:
            if kind not in SOURCE_KINDS:
                raise ExtensionError(f"{where}: unsupported source kind {kind!r}")

        priority = data.get("priority") or list(sources)
        if not isinstance(priority, list) or not all(isinstance(p, str) for p in priority):
            raise ExtensionError(f"{where}: 'priority' must be a list of source kinds")
        for kind in priority:
            if kind not in sources:
                raise ExtensionError(f"{where}: priority names undeclared source {kind!r}")

        output = None
        if "output" in sources:
            spec = sources["output"]
            if not isinstance(spec, dict) or not isinstance(spec.get("name"), str) or not spec["name"]:
                raise ExtensionError(f"{where}: output source requires a 'name'")
            output = spec["name"]

        return cls(parameter=parameter, priority=tuple(priority), output=output)


class ParameterSourcesExtension:
    """Extension handler recording where parameter values may be sourced from."""

    key = PARAMETER_SOURCES_KEY

    def read(self, bundle: Bundle) -> dict[str, ParameterSource]:
        data = bundle.custom.get(PARAMETER_SOURCES_KEY)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ExtensionError(
                f"{PARAMETER_SOURCES_KEY} must be a mapping, got {type(data).__name__}"
            )
        result = {}
        for name, entry in data.items():
            if isinstance(entry, ParameterSource):
                result[name] = entry
                continue
            if name not in bundle.parameters:
                raise ExtensionError(f"{PARAMETER_SOURCES_KEY}: {name} is not a declared parameter")
            result[name] = ParameterSource.from_dict(name, entry)
        return result

    def apply(self, value: dict[str, ParameterSource], processed: ProcessedExtensions) -> None:
        processed.parameter_sources = dict(value)
