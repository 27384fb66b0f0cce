"""Bundle validator - structural checks run before any extension is processed."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cnab_runtime.bundle import BUILTIN_ACTIONS, PARAMETER_TYPES
from cnab_runtime.exceptions import BundleValidationError
from cnab_runtime.versions import is_valid_version

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle


_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
    "file": (str,),
}


@dataclass
class ValidationResult:
    """Result of bundle validation.

    Attributes:
        valid: Whether the bundle is valid.
        errors: List of validation errors.
        warnings: List of validation warnings.
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add a validation error."""
        self.errors.append(message)
        self.valid = False

    def add_warning(self, message: str) -> None:
        """Add a validation warning."""
        self.warnings.append(message)


class BundleValidator:
    """Validates bundle structure.

    Validates:
    - Required metadata (name, semantic version)
    - Parameter types and defaults
    - Action references in applyTo lists
    - Required extension identifiers
    - Step lists

    Extension data itself is validated by the extension handlers.
    """

    def validate(self, bundle: Bundle) -> ValidationResult:
        """Validate a bundle.

        Args:
            bundle: Bundle to validate.

        Returns:
            ValidationResult with errors and warnings.
        """
        result = ValidationResult()

        self._validate_metadata(bundle, result)
        self._validate_parameters(bundle, result)
        self._validate_apply_to(bundle, result)
        self._validate_required_extensions(bundle, result)
        self._validate_steps(bundle, result)

        return result

    def validate_or_raise(self, bundle: Bundle) -> None:
        """Validate bundle and raise on errors.

        Raises:
            BundleValidationError: If validation fails.
        """
        result = self.validate(bundle)
        if not result.valid:
            raise BundleValidationError(
                f"invalid bundle {bundle.name or '<unnamed>'}: {'; '.join(result.errors)}",
                bundle=bundle.name or None,
            )

    def _validate_metadata(self, bundle: Bundle, result: ValidationResult) -> None:
        if not bundle.name:
            result.add_error("bundle must have a name")
        if not is_valid_version(bundle.version):
            result.add_error(f"version {bundle.version!r} is not a valid semantic version")

    def _validate_parameters(self, bundle: Bundle, result: ValidationResult) -> None:
        for name, definition in bundle.parameters.items():
            if definition.type not in PARAMETER_TYPES:
                result.add_error(
                    f"parameters.{name}: unknown type {definition.type!r}, "
                    f"expected one of {', '.join(PARAMETER_TYPES)}"
                )
                continue
            if definition.default is not None and not value_matches_type(definition.type, definition.default):
                result.add_error(
                    f"parameters.{name}: default {definition.default!r} is not of type {definition.type}"
                )

    def _validate_apply_to(self, bundle: Bundle, result: ValidationResult) -> None:
        known = set(BUILTIN_ACTIONS) | set(bundle.actions)
        sections: list[tuple[str, dict[str, Any]]] = [
            ("parameters", bundle.parameters),
            ("credentials", bundle.credentials),
            ("outputs", bundle.outputs),
        ]
        for section, entries in sections:
            for name, definition in entries.items():
                for action in definition.apply_to:
                    if action not in known:
                        result.add_error(f"{section}.{name}: applyTo references unknown action {action!r}")

        for action in bundle.steps:
            if action not in known:
                result.add_warning(f"steps.{action}: no such action, steps will never run")

    def _validate_required_extensions(self, bundle: Bundle, result: ValidationResult) -> None:
        seen: set[str] = set()
        for key in bundle.required_extensions:
            if not isinstance(key, str) or not key:
                result.add_error(f"requiredExtensions: invalid identifier {key!r}")
                continue
            if key in seen:
                result.add_error(f"requiredExtensions: {key} listed more than once")
            seen.add(key)

    def _validate_steps(self, bundle: Bundle, result: ValidationResult) -> None:
        for action, steps in bundle.steps.items():
            for i, step in enumerate(steps):
                if not isinstance(step, dict):
                    result.add_error(f"steps.{action}[{i}]: must be a mapping, got {type(step).__name__}")


def value_matches_type(type_name: str, value: Any) -> bool:
    """Whether ``value`` is acceptable for a parameter of ``type_name``."""
    expected = _TYPE_CHECKS.get(type_name, (object,))
    # bool is an int subclass; keep booleans out of numeric parameters
    if isinstance(value, bool) and type_name in ("integer", "number"):
        return False
    return isinstance(value, expected)


def validate_bundle(bundle: Bundle) -> ValidationResult:
    """Convenience function to validate a bundle."""
    return BundleValidator().validate(bundle)


def validate_bundle_or_raise(bundle: Bundle) -> None:
    """Convenience function to validate a bundle, raising on errors.

    Raises:
        BundleValidationError: If validation fails.
    """
    BundleValidator().validate_or_raise(bundle)
