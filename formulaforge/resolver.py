from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .chain import ChainStore
from .errors import DependencyUnmet
from .models import FormulaSpec, FromStep


@dataclass(frozen=True)
class Resolution:
    value: str
    error: Optional[DependencyUnmet] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def format_number(value: float) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def render_value(value: Any) -> str:
    """Text shown in a parameter field for a decoded chain result."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, (bool, int, float)):
        return format_number(value)
    return json.dumps(value, separators=(",", ":"))


def read_result(result: str) -> str:
    try:
        decoded = json.loads(result)
    except ValueError:
        return result
    return render_value(decoded)


def resolve(formula: FormulaSpec, chain: ChainStore) -> Dict[str, Resolution]:
    """Resolve every parameter of ``formula`` against the current chain.

    Sourced parameters always bind to the newest matching entry, never to
    operator text. Nothing is cached: call again after any chain change.
    """
    resolved: Dict[str, Resolution] = {}
    for p in formula.parameters:
        if isinstance(p.source, FromStep):
            entry = chain.most_recent(p.source.formula_name)
            if entry is None:
                resolved[p.name] = Resolution("", DependencyUnmet(p.name, p.source.formula_name))
            else:
                resolved[p.name] = Resolution(read_result(entry.result))
        else:
            resolved[p.name] = Resolution(format_number(float(p.default_value)))
    return resolved
