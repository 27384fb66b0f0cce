"""Bundle dataclass - the immutable, already-built bundle definition."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any

from cnab_runtime.exceptions import BundleLoadError

INSTALL = "install"
UPGRADE = "upgrade"
UNINSTALL = "uninstall"

# Actions every bundle supports without declaring them
BUILTIN_ACTIONS = (INSTALL, UPGRADE, UNINSTALL)

PARAMETER_TYPES = ("string", "integer", "number", "boolean", "object", "array", "file")


@dataclass(frozen=True)
class ParameterDefinition:
    """A named input the bundle accepts.

    Attributes:
        type: One of PARAMETER_TYPES.
        default: Value used when the caller supplies none.
        required: Whether a value must be resolved before the action runs.
        sensitive: Redacted when the value is recorded in a claim.
        apply_to: Actions that receive this parameter (empty = every action).
        description: Human readable description.
        destination: Where the driver should place the value ({"env": ..., "path": ...}).
    """

    type: str = "string"
    default: Any = None
    required: bool = False
    sensitive: bool = False
    apply_to: tuple[str, ...] = ()
    description: str = ""
    destination: dict[str, str] = field(default_factory=dict)

    def applies_to(self, action: str) -> bool:
        return not self.apply_to or action in self.apply_to

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.default is not None:
            result["default"] = self.default
        if self.required:
            result["required"] = True
        if self.sensitive:
            result["sensitive"] = True
        if self.apply_to:
            result["applyTo"] = list(self.apply_to)
        if self.description:
            result["description"] = self.description
        if self.destination:
            result["destination"] = dict(self.destination)
        return result


@dataclass(frozen=True)
class CredentialDefinition:
    """A named secret the bundle needs; never recorded in claims."""

    required: bool = False
    apply_to: tuple[str, ...] = ()
    description: str = ""
    env: str | None = None
    path: str | None = None

    def applies_to(self, action: str) -> bool:
        return not self.apply_to or action in self.apply_to

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.required:
            result["required"] = True
        if self.apply_to:
            result["applyTo"] = list(self.apply_to)
        if self.description:
            result["description"] = self.description
        if self.env:
            result["env"] = self.env
        if self.path:
            result["path"] = self.path
        return result


@dataclass(frozen=True)
class OutputDefinition:
    """A named value the bundle produces."""

    type: str = "string"
    sensitive: bool = False
    apply_to: tuple[str, ...] = ()
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.sensitive:
            result["sensitive"] = True
        if self.apply_to:
            result["applyTo"] = list(self.apply_to)
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class ActionDefinition:
    """A custom action declared by the bundle (invoked with ``invoke --action``)."""

    modifies: bool = False
    stateless: bool = False
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"modifies": self.modifies, "stateless": self.stateless}
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class Bundle:
    """Immutable bundle definition.

    Bundles are loaded once per operation and never mutated; extension
    handlers read from them and write their effects elsewhere.

    Attributes:
        name: Bundle name, also its identity in dependency graphs.
        version: Semantic version string.
        description: Optional description.
        schema_version: Bundle format version.
        parameters: Parameter name to definition.
        credentials: Credential name to definition.
        outputs: Output name to definition.
        actions: Custom action name to definition.
        steps: Action name to the ordered steps a driver executes.
        custom: Extension identifier to opaque extension data.
        required_extensions: Extension identifiers that must be understood.
    """

    name: str
    version: str = "0.0.0"
    description: str = ""
    schema_version: str = "v1.0.0"
    parameters: dict[str, ParameterDefinition] = field(default_factory=dict)
    credentials: dict[str, CredentialDefinition] = field(default_factory=dict)
    outputs: dict[str, OutputDefinition] = field(default_factory=dict)
    actions: dict[str, ActionDefinition] = field(default_factory=dict)
    steps: dict[str, tuple[dict[str, Any], ...]] = field(default_factory=dict)
    custom: dict[str, Any] = field(default_factory=dict)
    required_extensions: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        return f"{self.name}:{self.version}"

    def supports_action(self, action: str) -> bool:
        """Built-in actions are always supported; custom ones only when declared."""
        return action in BUILTIN_ACTIONS or action in self.actions

    def steps_for(self, action: str) -> list[dict[str, Any]]:
        return [dict(step) for step in self.steps.get(action, ())]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the bundle.json wire form (round-trips through from_dict)."""
        result: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "name": self.name,
            "version": self.version,
        }
        if self.description:
            result["description"] = self.description
        if self.parameters:
            result["parameters"] = {k: v.to_dict() for k, v in self.parameters.items()}
        if self.credentials:
            result["credentials"] = {k: v.to_dict() for k, v in self.credentials.items()}
        if self.outputs:
            result["outputs"] = {k: v.to_dict() for k, v in self.outputs.items()}
        if self.actions:
            result["actions"] = {k: v.to_dict() for k, v in self.actions.items()}
        if self.steps:
            result["steps"] = {k: [dict(s) for s in v] for k, v in self.steps.items()}
        if self.custom:
            result["custom"] = _plain(self.custom)
        if self.required_extensions:
            result["requiredExtensions"] = list(self.required_extensions)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Bundle:
        """Create a Bundle from decoded bundle.json / bundle.yaml content.

        Parameters may be declared inline (``type``, ``default``) or point at
        a JSON schema in ``definitions`` through ``definition``.

        Raises:
            BundleLoadError: If a section has the wrong shape.
        """
        if not isinstance(data, dict):
            raise BundleLoadError(f"bundle must be a mapping, got {type(data).__name__}")

        name = data.get("name", "")
        if not isinstance(name, str):
            raise BundleLoadError("bundle name must be a string")

        definitions = _section(data, "definitions", name)

        parameters = {
            key: _parse_parameter(key, value, definitions, name)
            for key, value in _section(data, "parameters", name).items()
        }
        credentials = {
            key: CredentialDefinition(
                required=bool(value.get("required", False)),
                apply_to=_names(value.get("applyTo"), f"credentials.{key}.applyTo", name),
                description=str(value.get("description", "")),
                env=value.get("env"),
                path=value.get("path"),
            )
            for key, value in _entries(data, "credentials", name)
        }
        outputs = {
            key: _parse_output(key, value, definitions, name)
            for key, value in _entries(data, "outputs", name)
        }
        actions = {
            key: ActionDefinition(
                modifies=bool(value.get("modifies", False)),
                stateless=bool(value.get("stateless", False)),
                description=str(value.get("description", "")),
            )
            for key, value in _entries(data, "actions", name)
        }

        steps: dict[str, tuple[dict[str, Any], ...]] = {}
        for action, action_steps in _section(data, "steps", name).items():
            if not isinstance(action_steps, list):
                raise BundleLoadError(
                    f"bundle {name}: steps.{action} must be a list, got {type(action_steps).__name__}"
                )
            steps[action] = tuple(action_steps)

        required = data.get("requiredExtensions") or []
        if not isinstance(required, list):
            raise BundleLoadError(f"bundle {name}: requiredExtensions must be a list")

        return cls(
            name=name,
            version=str(data.get("version", "0.0.0")),
            description=str(data.get("description", "")),
            schema_version=str(data.get("schemaVersion", "v1.0.0")),
            parameters=parameters,
            credentials=credentials,
            outputs=outputs,
            actions=actions,
            steps=steps,
            custom=dict(_section(data, "custom", name)),
            required_extensions=tuple(required),
        )


def _plain(value: Any) -> Any:
    """Turn extension values built from objects back into plain data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _section(data: dict[str, Any], key: str, bundle_name: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise BundleLoadError(
            f"bundle {bundle_name}: '{key}' must be a mapping, got {type(value).__name__}"
        )
    return value


def _entries(data: dict[str, Any], key: str, bundle_name: str) -> list[tuple[str, dict[str, Any]]]:
    entries = []
    for name, value in _section(data, key, bundle_name).items():
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise BundleLoadError(
                f"bundle {bundle_name}: {key}.{name} must be a mapping, got {type(value).__name__}"
            )
        entries.append((name, value))
    return entries


def _names(value: Any, where: str, bundle_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise BundleLoadError(f"bundle {bundle_name}: {where} must be a list of action names")
    return tuple(value)


def _schema(
    key: str, value: dict[str, Any], definitions: dict[str, Any], bundle_name: str
) -> dict[str, Any]:
    ref = value.get("definition")
    if ref is None:
        return value
    schema = definitions.get(ref)
    if not isinstance(schema, dict):
        raise BundleLoadError(f"bundle {bundle_name}: {key} refers to unknown definition '{ref}'")
    return {**schema, **value}


def _parse_parameter(
    key: str, value: Any, definitions: dict[str, Any], bundle_name: str
) -> ParameterDefinition:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise BundleLoadError(
            f"bundle {bundle_name}: parameters.{key} must be a mapping, got {type(value).__name__}"
        )
    merged = _schema(f"parameters.{key}", value, definitions, bundle_name)
    destination = merged.get("destination") or {}
    if not isinstance(destination, dict):
        raise BundleLoadError(f"bundle {bundle_name}: parameters.{key}.destination must be a mapping")
    return ParameterDefinition(
        type=str(merged.get("type", "string")),
        default=merged.get("default"),
        required=bool(merged.get("required", False)),
        sensitive=bool(merged.get("sensitive", merged.get("writeOnly", False))),
        apply_to=_names(merged.get("applyTo"), f"parameters.{key}.applyTo", bundle_name),
        description=str(merged.get("description", "")),
        destination=dict(destination),
    )


def _parse_output(
    key: str, value: dict[str, Any], definitions: dict[str, Any], bundle_name: str
) -> OutputDefinition:
    merged = _schema(f"outputs.{key}", value, definitions, bundle_name)
    return OutputDefinition(
        type=str(merged.get("type", "string")),
        sensitive=bool(merged.get("sensitive", merged.get("writeOnly", False))),
        apply_to=_names(merged.get("applyTo"), f"outputs.{key}.applyTo", bundle_name),
        description=str(merged.get("description", "")),
    )
