from formulaforge.chain import ChainStore
from formulaforge.errors import DependencyUnmet
from formulaforge.models import FormulaSpec, ParameterSpec
from formulaforge.resolver import Resolution, format_number, read_result, resolve


def test_sourced_parameter_binds_to_chain_result(velocity, distance):
    chain = ChainStore()
    chain.append(velocity, "12.5")
    resolved = resolve(distance, chain)
    assert resolved["velocity"] == Resolution("12.5")
    assert resolved["velocity"].ok
    assert resolved["time"] == Resolution("1")


def test_unmet_dependency(distance):
    resolved = resolve(distance, ChainStore())
    r = resolved["velocity"]
    assert r.value == ""
    assert r.error == DependencyUnmet("velocity", "Velocity")
    assert r.error.message == "waiting for result from 'Velocity'; run and commit that step first."


def test_most_recent_entry_wins(velocity, distance):
    chain = ChainStore()
    chain.append(velocity, "10")
    chain.append(velocity, "20")
    assert resolve(distance, chain)["velocity"].value == "20"


def test_remove_restores_previous_resolution(velocity, distance):
    chain = ChainStore()
    before = resolve(distance, chain)
    e = chain.append(velocity, "12.5")
    chain.remove(e.id)
    assert resolve(distance, chain) == before

    first = chain.append(velocity, "10")
    second = chain.append(velocity, "20")
    chain.remove(second.id)
    assert resolve(distance, chain)["velocity"].value == "10"
    chain.remove(first.id)
    assert not resolve(distance, chain)["velocity"].ok


def test_result_decoding():
    assert read_result("12.5") == "12.5"
    assert read_result("50") == "50"
    assert read_result("[\n  2,\n  1\n]") == "[2,1]"
    assert read_result("null") == "null"
    assert read_result("not json") == "not json"
    assert read_result('"text"') == "text"


def test_direct_defaults_are_formatted():
    f = FormulaSpec("Area", parameters=(ParameterSpec("r", default_value=2.5), ParameterSpec("n", default_value=3.0)))
    resolved = resolve(f, ChainStore())
    assert resolved["r"].value == "2.5"
    assert resolved["n"].value == "3"


def test_format_number():
    assert format_number(4.0) == "4"
    assert format_number(0.1) == "0.1"
    assert format_number(True) == "true"
