import pytest

from formulaforge.advisory import ANALYSIS, SUGGESTIONS, AdvisoryState
from formulaforge.chain import ChainStore


def _attached():
    chain = ChainStore()
    state = AdvisoryState()
    state.attach(chain)
    return chain, state


def test_delivery_and_snapshot():
    _, state = _attached()
    t = state.begin(SUGGESTIONS)
    assert state.is_pending(SUGGESTIONS)
    assert state.deliver(t, ["a", "b"])
    assert state.snapshot() == {
        "version": 0,
        "suggestions": ["a", "b"],
        "suggestion_error": None,
        "analysis": None,
        "analysis_error": None,
        "pending": [],
    }


def test_every_chain_change_clears_state(velocity):
    chain, state = _attached()
    state.deliver(state.begin(SUGGESTIONS), ["a"])
    state.deliver(state.begin(ANALYSIS), "fine")
    e = chain.append(velocity, "1")
    assert state.is_empty
    assert state.version == 1

    state.fail(state.begin(ANALYSIS), "boom")
    chain.remove(e.id)
    assert state.is_empty
    assert state.version == 2


def test_noop_remove_keeps_state(velocity):
    chain, state = _attached()
    state.deliver(state.begin(SUGGESTIONS), ["a"])
    chain.remove("missing")
    assert state.suggestions == ["a"]
    assert state.version == 0


def test_result_issued_before_mutation_is_discarded(velocity):
    chain, state = _attached()
    t = state.begin(SUGGESTIONS)
    chain.append(velocity, "1")
    assert state.deliver(t, ["late"]) is False
    assert state.fail(t, "late failure") is False
    assert state.is_empty
    assert not state.is_pending(SUGGESTIONS)


def test_superseded_call_is_discarded():
    _, state = _attached()
    first = state.begin(ANALYSIS)
    second = state.begin(ANALYSIS)
    assert state.deliver(first, "old") is False
    assert state.deliver(second, "new") is True
    assert state.analysis == "new"


def test_kinds_are_independent():
    _, state = _attached()
    s = state.begin(SUGGESTIONS)
    a = state.begin(ANALYSIS)
    assert state.deliver(s, ["x"])
    assert state.deliver(a, "y")
    assert state.suggestions == ["x"] and state.analysis == "y"


def test_fail_now_and_clear_analysis():
    _, state = _attached()
    state.fail_now(ANALYSIS, "Analysis requires at least two steps in the chain.")
    assert state.analysis_error == "Analysis requires at least two steps in the chain."
    state.clear_analysis()
    assert state.is_empty


def test_unknown_kind():
    with pytest.raises(ValueError):
        AdvisoryState().begin("weather")
