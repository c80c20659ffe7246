from __future__ import annotations

from typing import Dict, Iterable, List

from .chain import ChainStore
from .models import FormulaSpec


def missing_dependencies(formula: FormulaSpec, chain: ChainStore) -> List[str]:
    missing: List[str] = []
    for p in formula.sourced_parameters():
        name = p.source.formula_name
        if name not in missing and not chain.contains(name):
            missing.append(name)
    return missing


def is_ready(formula: FormulaSpec, chain: ChainStore) -> bool:
    """True when every referenced formula is present in the chain.

    One hop only: a dependency's own dependencies are not checked. This is a
    hint for display and never blocks a run.
    """
    return not missing_dependencies(formula, chain)


def readiness(formulas: Iterable[FormulaSpec], chain: ChainStore) -> Dict[str, bool]:
    return {f.name: is_ready(f, chain) for f in formulas}
