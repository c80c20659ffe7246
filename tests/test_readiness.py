from formulaforge.chain import ChainStore
from formulaforge.models import FormulaSpec, FromStep, ParameterSpec
from formulaforge.readiness import is_ready, missing_dependencies, readiness


def _reads(name, *sources):
    params = tuple(ParameterSpec(f"p{i}", source=FromStep(s)) for i, s in enumerate(sources))
    return FormulaSpec(name, parameters=params + (ParameterSpec("x"),))


def test_formula_without_sources_is_ready():
    assert is_ready(FormulaSpec("Plain", parameters=(ParameterSpec("x"),)), ChainStore())


def test_ready_once_source_is_committed(velocity, distance):
    chain = ChainStore()
    assert missing_dependencies(distance, chain) == ["Velocity"]
    assert not is_ready(distance, chain)
    e = chain.append(velocity, "12.5")
    assert is_ready(distance, chain)
    chain.remove(e.id)
    assert not is_ready(distance, chain)


def test_missing_is_ordered_and_deduplicated():
    f = _reads("Mix", "B", "A", "B")
    assert missing_dependencies(f, ChainStore()) == ["B", "A"]


def test_readiness_is_one_hop():
    a = FormulaSpec("A", parameters=(ParameterSpec("x"),))
    b = _reads("B", "A")
    c = _reads("C", "B")
    chain = ChainStore()
    chain.append(b, "3")
    assert readiness([a, b, c], chain) == {"A": True, "B": False, "C": True}
