from __future__ import annotations

import math
import re
from typing import Dict, Mapping, Optional, Sequence

from .errors import DependencyUnmet, ValidationError
from .models import ParameterSpec

EMPTY_VALUE = "value cannot be empty"
NOT_A_NUMBER = "must be a valid number"

_decimal = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def parse_number(text: str) -> Optional[float]:
    """Return ``text`` as a finite float, or None if it is not one."""
    t = (text or "").strip()
    if not _decimal.match(t):
        return None
    value = float(t)
    if not math.isfinite(value):
        return None
    return value


def validate(text: Optional[str]) -> Optional[str]:
    if text is None or not text.strip():
        return EMPTY_VALUE
    if parse_number(text) is None:
        return NOT_A_NUMBER
    return None


def validate_arguments(
    parameters: Sequence[ParameterSpec],
    values: Mapping[str, str],
    unmet: Optional[Mapping[str, DependencyUnmet]] = None,
) -> Dict[str, object]:
    """Check every parameter right before a run.

    ``unmet`` holds the sourced parameters whose upstream formula is absent
    from the chain; those report the dependency instead of a numeric error.
    A sourced value that was found but is empty is an ordinary validation
    error. Returns a mapping of parameter name to diagnostic; an empty
    mapping means the run may proceed.
    """
    errors: Dict[str, object] = {}
    for p in parameters:
        if unmet and p.name in unmet:
            errors[p.name] = unmet[p.name]
            continue
        value = values.get(p.name, "") or ""
        message = validate(value)
        if message:
            errors[p.name] = ValidationError(p.name, message, value)
    return errors
