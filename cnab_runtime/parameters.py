"""Parameter and credential value resolution.

Values are merged, lowest precedence first:

1. Parameter defaults from the bundle definition
2. Parameter sources (outputs recorded on the installation's previous claim)
3. Caller overrides (``--param-file`` then ``--param``)

Overrides are shared by every bundle in a plan. A plain ``name=value``
reaches every bundle that declares ``name``; ``dependency#name=value``
reaches only that dependency and wins over the plain form. A dependency of a
dependency is addressed by its path, ``web/db#name=value``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from cnab_runtime.exceptions import ParameterError
from cnab_runtime.io import parse_document
from cnab_runtime.validator import value_matches_type

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle, ParameterDefinition
    from cnab_runtime.extensions.parameter_sources import ParameterSource

logger = logging.getLogger(__name__)

# Separates the dependency name from the parameter name in an override
TARGET_SEPARATOR = "#"

_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off")


def parse_name_value_pairs(values: Iterable[str], kind: str = "parameter") -> dict[str, str]:
    """Parse ``name=value`` strings.

    The value may itself contain ``=``; only the first one splits.

    Raises:
        ParameterError: ``invalid parameter (A:B), must be in name=value format``.
    """
    result: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ParameterError(f"invalid {kind} ({item}), must be in name=value format")
        result[name.strip()] = value
    return result


def load_value_file(path: Path | str, kind: str = "parameter") -> dict[str, Any]:
    """Load a YAML or JSON mapping of values.

    Raises:
        ParameterError: If the file is unreadable or not a mapping.
    """
    path = Path(path).expanduser()
    fmt = "json" if path.suffix.lower() == ".json" else "yaml"
    try:
        data = parse_document(path.read_text(encoding="utf-8"), fmt=fmt)
    except OSError as e:
        raise ParameterError(f"could not read {kind} file {path}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise ParameterError(f"could not parse {kind} file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParameterError(f"{kind} file {path} must contain a mapping of name to value")
    return {str(k): v for k, v in data.items()}


def coerce_value(name: str, definition: ParameterDefinition, raw: Any) -> Any:
    """Convert a raw value (usually a command-line string) to the parameter's type.

    Raises:
        ParameterError: If the value cannot be converted or has the wrong type.
    """
    value = raw
    if isinstance(raw, str) and definition.type not in ("string", "file"):
        try:
            value = _from_string(definition.type, raw)
        except ValueError as e:
            raise ParameterError(
                f"invalid value {raw!r} for parameter {name} of type {definition.type}"
            ) from e

    if not value_matches_type(definition.type, value):
        raise ParameterError(
            f"parameter {name} must be of type {definition.type}, got {type(value).__name__}"
        )
    return value


def _from_string(type_name: str, raw: str) -> Any:
    if type_name == "integer":
        return int(raw)
    if type_name == "number":
        number = float(raw)
        return int(number) if number.is_integer() and "." not in raw else number
    if type_name == "boolean":
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(raw)
    if type_name in ("object", "array"):
        return json.loads(raw)
    return raw


def _lookup(overrides: dict[str, Any], name: str, target: str | None) -> tuple[bool, Any]:
    if target is not None:
        targeted = f"{target}{TARGET_SEPARATOR}{name}"
        if targeted in overrides:
            return True, overrides[targeted]
    if name in overrides:
        return True, overrides[name]
    return False, None


def resolve_parameters(
    bundle: Bundle,
    action: str,
    overrides: dict[str, Any],
    *,
    target: str | None = None,
    previous_outputs: dict[str, Any] | None = None,
    sources: dict[str, ParameterSource] | None = None,
) -> dict[str, Any]:
    """Resolve the parameter values one bundle receives for one action.

    Only parameters the bundle declares and that apply to ``action`` are
    returned, so a dependency never sees values meant for someone else.

    Args:
        bundle: Bundle receiving the values.
        action: Action being executed.
        overrides: Caller-supplied values for the whole plan.
        target: Plan address that ``target#param`` overrides name (``db``, ``web/db``).
        previous_outputs: Outputs on the installation's latest claim.
        sources: Parameter sources declared by the bundle.

    Raises:
        ParameterError: Required value missing or value of the wrong type.
    """
    resolved: dict[str, Any] = {}
    previous_outputs = previous_outputs or {}
    sources = sources or {}

    for name, definition in bundle.parameters.items():
        if not definition.applies_to(action):
            continue

        found, value = _lookup(overrides, name, target)
        if not found and name in sources:
            found, value = sources[name].lookup(previous_outputs)
            if found:
                logger.debug(f"Parameter {name} of {bundle.name} sourced from previous output")
        if not found and definition.default is not None:
            found, value = True, definition.default

        if not found:
            if definition.required:
                raise ParameterError(f"parameter {name} is required", bundle=bundle.name, action=action)
            continue

        try:
            resolved[name] = coerce_value(name, definition, value)
        except ParameterError as e:
            e.with_context(bundle=bundle.name, action=action)
            raise
    return resolved


def resolve_credentials(
    bundle: Bundle,
    action: str,
    overrides: dict[str, Any],
    *,
    target: str | None = None,
) -> dict[str, str]:
    """Resolve the credential values one bundle receives for one action.

    Raises:
        ParameterError: Required credential missing.
    """
    resolved: dict[str, str] = {}
    for name, definition in bundle.credentials.items():
        if not definition.applies_to(action):
            continue
        found, value = _lookup(overrides, name, target)
        if not found:
            if definition.required:
                raise ParameterError(f"credential {name} is required", bundle=bundle.name, action=action)
            continue
        resolved[name] = str(value)
    return resolved


def check_overrides(
    overrides: dict[str, Any],
    declared: dict[str, Iterable[str]],
    kind: str = "parameter",
) -> None:
    """Reject overrides that no bundle in the plan can receive.

    Args:
        overrides: Caller-supplied values.
        declared: Plan entry address to the names it declares.
        kind: "parameter" or "credential", used in messages.

    Raises:
        ParameterError: Naming the first unknown override.
    """
    everything = {name for names in declared.values() for name in names}
    for key in overrides:
        target, sep, name = key.partition(TARGET_SEPARATOR)
        if not sep:
            if key not in everything:
                raise ParameterError(f"{kind} {key} is not declared by any bundle in the plan")
            continue
        if target not in declared:
            raise ParameterError(f"invalid {kind} {key}: no bundle named {target} in the plan")
        if name not in set(declared[target]):
            raise ParameterError(f"invalid {kind} {key}: {target} does not declare {name}")
