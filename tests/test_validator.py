import pytest

from formulaforge.errors import DependencyUnmet, ValidationError
from formulaforge.models import FromStep, ParameterSpec
from formulaforge.validator import EMPTY_VALUE, NOT_A_NUMBER, parse_number, validate, validate_arguments


def test_validate_messages():
    assert validate("") == "value cannot be empty"
    assert validate("   ") == EMPTY_VALUE
    assert validate("abc") == "must be a valid number"
    assert validate("3.14") is None
    assert validate(" -2e3 ") is None
    assert validate(".5") is None


@pytest.mark.parametrize("text", ["inf", "-Infinity", "nan", "1e999", "0x10", "1_000", "3,5", "1.2.3"])
def test_validate_rejects_non_finite_and_odd_forms(text):
    assert validate(text) == NOT_A_NUMBER


def test_parse_number():
    assert parse_number("4") == 4.0
    assert parse_number("1e999") is None


def test_validate_arguments_distinguishes_unmet_dependency():
    params = [
        ParameterSpec("velocity", source=FromStep("Velocity")),
        ParameterSpec("time"),
        ParameterSpec("mass"),
    ]
    unmet = {"velocity": DependencyUnmet("velocity", "Velocity")}
    errors = validate_arguments(params, {"velocity": "", "time": "abc", "mass": "2"}, unmet)
    assert errors["velocity"] == DependencyUnmet("velocity", "Velocity")
    assert isinstance(errors["time"], ValidationError)
    assert str(errors["time"]) == NOT_A_NUMBER
    assert "mass" not in errors


def test_found_but_empty_source_is_a_validation_error():
    params = [ParameterSpec("x", source=FromStep("Label"))]
    errors = validate_arguments(params, {"x": ""}, {})
    assert isinstance(errors["x"], ValidationError)
    assert str(errors["x"]) == EMPTY_VALUE


def test_validate_arguments_checks_sourced_values_numerically():
    params = [ParameterSpec("roots", source=FromStep("Quadratic"))]
    errors = validate_arguments(params, {"roots": "[2,1]"})
    assert str(errors["roots"]) == NOT_A_NUMBER
