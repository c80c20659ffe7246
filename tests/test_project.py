import pytest

from formulaforge.models import FormulaSpec, FromStep, ParameterSpec
from formulaforge.project import DependencyCycleError, Project


def _f(name, *sources):
    params = tuple(ParameterSpec(s.lower(), source=FromStep(s)) for s in sources)
    return FormulaSpec(name, parameters=params + (ParameterSpec("k"),), implementations={"python": "lambda *a: 1"})


def test_graph_and_execution_order(motion):
    g = motion.graph()
    assert list(g.edges()) == [("Velocity", "Distance")]
    assert g.edges["Velocity", "Distance"]["parameter"] == "velocity"
    assert motion.execution_order() == ["Velocity", "Distance"]
    assert motion.dependents("Velocity") == ["Distance"]


def test_order_follows_dependencies_not_declaration():
    project = Project("P", formulas=[_f("C", "B"), _f("B", "A"), _f("A"), _f("D")])
    assert project.execution_order() == ["A", "B", "C", "D"]


def test_external_sources_are_not_scheduled():
    project = Project("P", formulas=[_f("Energy", "Mass"), _f("Power", "Energy")])
    assert project.external_sources() == ["Mass"]
    assert project.execution_order() == ["Energy", "Power"]


def test_cycle_detected():
    project = Project("P", formulas=[_f("A", "B"), _f("B", "A")])
    with pytest.raises(DependencyCycleError) as info:
        project.execution_order()
    assert set(info.value.cycle) == {"A", "B"}
    assert info.value.cycle[0] == info.value.cycle[-1]
    assert "cycle" in str(info.value)


def test_duplicate_formula_names():
    with pytest.raises(ValueError):
        Project("P", formulas=[_f("A"), _f("A")])


def test_round_trip_dict(motion):
    restored = Project.from_dict(motion.to_dict())
    assert restored.name == "Motion"
    assert restored.formulas == motion.formulas
