"""Tests for parameter and credential resolution."""

import tempfile
from pathlib import Path

import pytest
from cnab_runtime.bundle import Bundle
from cnab_runtime.bundle import ParameterDefinition
from cnab_runtime.exceptions import ParameterError
from cnab_runtime.extensions import ParameterSource
from cnab_runtime.parameters import check_overrides
from cnab_runtime.parameters import coerce_value
from cnab_runtime.parameters import load_value_file
from cnab_runtime.parameters import parse_name_value_pairs
from cnab_runtime.parameters import resolve_credentials
from cnab_runtime.parameters import resolve_parameters


@pytest.fixture
def bundle() -> Bundle:
    """Bundle with a spread of parameter types."""
    return Bundle.from_dict(
        {
            "name": "app",
            "version": "1.0.0",
            "parameters": {
                "port": {"type": "integer", "default": 8080},
                "debug": {"type": "boolean", "default": False},
                "password": {"type": "string", "required": True, "sensitive": True},
                "replicas": {"type": "integer", "applyTo": ["upgrade"]},
                "connstr": {"type": "string"},
            },
            "credentials": {
                "token": {"required": True},
                "kubeconfig": {"applyTo": ["install"]},
            },
        }
    )


class TestParseNameValuePairs:
    """Tests for parse_name_value_pairs."""

    def test_splits_on_first_equals(self) -> None:
        """The value may contain '='."""
        assert parse_name_value_pairs(["a=1", "b=x=y", "c="]) == {"a": "1", "b": "x=y", "c": ""}

    def test_missing_equals(self) -> None:
        """A pair without '=' names the offending input."""
        with pytest.raises(ParameterError) as exc_info:
            parse_name_value_pairs(["A:B"])
        assert str(exc_info.value) == "invalid parameter (A:B), must be in name=value format"

    def test_empty_name(self) -> None:
        """A pair needs a name."""
        with pytest.raises(ParameterError, match="invalid credential"):
            parse_name_value_pairs(["=value"], "credential")


class TestLoadValueFile:
    """Tests for load_value_file."""

    def test_yaml_and_json(self) -> None:
        """Both formats load to plain dicts."""
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir)
            (base / "params.yaml").write_text("port: 9090\ndebug: true\n")
            (base / "params.json").write_text('{"port": 7070}')

            assert load_value_file(base / "params.yaml") == {"port": 9090, "debug": True}
            assert load_value_file(base / "params.json") == {"port": 7070}

    def test_not_a_mapping(self) -> None:
        """A list is rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "params.yaml"
            path.write_text("- a\n- b\n")
            with pytest.raises(ParameterError, match="must contain a mapping"):
                load_value_file(path)

    def test_missing_file(self) -> None:
        """Unreadable files are parameter errors."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ParameterError, match="could not read parameter file"):
                load_value_file(Path(tmpdir) / "nope.yaml")

    def test_not_utf8(self) -> None:
        """Undecodable bytes are parameter errors."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "params.yaml"
            path.write_bytes(b"port: \xff\xfe\n")
            with pytest.raises(ParameterError, match="could not parse parameter file"):
                load_value_file(path)


class TestCoerceValue:
    """Tests for coerce_value."""

    @pytest.mark.parametrize(
        ("type_name", "raw", "expected"),
        [
            ("integer", "42", 42),
            ("number", "1.5", 1.5),
            ("number", "3", 3),
            ("boolean", "yes", True),
            ("boolean", "OFF", False),
            ("array", "[1, 2]", [1, 2]),
            ("object", '{"a": 1}', {"a": 1}),
            ("string", "42", "42"),
        ],
    )
    def test_converts_strings(self, type_name: str, raw: str, expected: object) -> None:
        """Command-line strings become the declared type."""
        assert coerce_value("p", ParameterDefinition(type=type_name), raw) == expected

    def test_bad_integer(self) -> None:
        """Unconvertible values name the parameter and type."""
        with pytest.raises(ParameterError, match="invalid value 'abc' for parameter port of type integer"):
            coerce_value("port", ParameterDefinition(type="integer"), "abc")

    def test_wrong_type_from_file(self) -> None:
        """Non-string values must already have the right type."""
        with pytest.raises(ParameterError, match="must be of type integer, got list"):
            coerce_value("port", ParameterDefinition(type="integer"), [1])


class TestResolveParameters:
    """Tests for resolve_parameters."""

    def test_defaults_and_overrides(self, bundle: Bundle) -> None:
        """Overrides beat defaults; inapplicable parameters are left out."""
        values = resolve_parameters(bundle, "install", {"password": "s3cret", "debug": "true"})
        assert values == {"port": 8080, "debug": True, "password": "s3cret"}

    def test_apply_to(self, bundle: Bundle) -> None:
        """replicas only applies to upgrade."""
        values = resolve_parameters(bundle, "upgrade", {"password": "x", "replicas": "3"})
        assert values["replicas"] == 3

    def test_required_missing(self, bundle: Bundle) -> None:
        """A required parameter without a value fails with context."""
        with pytest.raises(ParameterError) as exc_info:
            resolve_parameters(bundle, "install", {})
        assert str(exc_info.value) == "parameter password is required"
        assert exc_info.value.bundle == "app"
        assert exc_info.value.action == "install"

    def test_targeted_override_wins(self, bundle: Bundle) -> None:
        """dep#name beats a plain name for that dependency only."""
        overrides = {"password": "x", "port": "1", "db#port": "2"}
        assert resolve_parameters(bundle, "install", overrides, target="db")["port"] == 2
        assert resolve_parameters(bundle, "install", overrides, target="web")["port"] == 1

    def test_parameter_source(self, bundle: Bundle) -> None:
        """A source fills a parameter the caller did not supply."""
        sources = {"connstr": ParameterSource(parameter="connstr", output="connection")}
        values = resolve_parameters(
            bundle,
            "upgrade",
            {"password": "x"},
            previous_outputs={"connection": "mysql://db"},
            sources=sources,
        )
        assert values["connstr"] == "mysql://db"

    def test_override_beats_source(self, bundle: Bundle) -> None:
        """Caller values take precedence over sourced ones."""
        sources = {"connstr": ParameterSource(parameter="connstr", output="connection")}
        values = resolve_parameters(
            bundle,
            "upgrade",
            {"password": "x", "connstr": "explicit"},
            previous_outputs={"connection": "mysql://db"},
            sources=sources,
        )
        assert values["connstr"] == "explicit"


class TestResolveCredentials:
    """Tests for resolve_credentials."""

    def test_values_are_strings(self, bundle: Bundle) -> None:
        """Credential values are passed as strings."""
        assert resolve_credentials(bundle, "upgrade", {"token": 123}) == {"token": "123"}

    def test_required_missing(self, bundle: Bundle) -> None:
        """A missing required credential fails."""
        with pytest.raises(ParameterError, match="credential token is required"):
            resolve_credentials(bundle, "install", {})


class TestCheckOverrides:
    """Tests for check_overrides."""

    declared = {"db": ["port", "password"], "app": ["port", "debug"]}

    def test_accepts_known(self) -> None:
        """Plain and targeted overrides of declared names pass."""
        check_overrides({"port": 1, "debug": True, "db#password": "x"}, self.declared)

    def test_unknown_plain_name(self) -> None:
        """A plain name nobody declares is rejected."""
        with pytest.raises(ParameterError, match="parameter colour is not declared by any bundle"):
            check_overrides({"colour": "red"}, self.declared)

    def test_unknown_target(self) -> None:
        """A targeted override must name a plan entry."""
        with pytest.raises(ParameterError, match="no bundle named cache in the plan"):
            check_overrides({"cache#port": 1}, self.declared)

    def test_target_does_not_declare(self) -> None:
        """A targeted override must name one of the target's parameters."""
        with pytest.raises(ParameterError, match="db does not declare debug"):
            check_overrides({"db#debug": True}, self.declared)
