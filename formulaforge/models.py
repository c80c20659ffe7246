from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

NATIVE_RUNTIME = "python"
DISPLAY_RUNTIMES = ("javascript", "java", "cpp")


@dataclass(frozen=True)
class Direct:
    """Value is typed in by the operator."""

    def to_wire(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class FromStep:
    """Value is read from the most recent chain entry named ``formula_name``."""

    formula_name: str

    def to_wire(self) -> Optional[str]:
        return f"formula:{self.formula_name}.output"


SourceRef = Union[Direct, FromStep]

_wire_source = re.compile(r"^formula:(?P<name>.+?)(?:\.output)?$")


def parse_source(text: Optional[str]) -> SourceRef:
    """Convert the generator's textual source marker into a typed reference.

    ``None``, ``""`` and ``"userInput"`` mean direct input; ``formula:Name.output``
    (or ``formula:Name``) references a previous step.
    """
    if text is None:
        return Direct()
    t = text.strip()
    if not t or t.lower() in {"userinput", "user-input", "user_input"}:
        return Direct()
    m = _wire_source.match(t)
    if not m or not m.group("name").strip():
        raise ValueError(f"Unrecognized parameter source: {text!r}")
    return FromStep(m.group("name").strip())


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    description: str = ""
    default_value: float = 0.0
    source: SourceRef = field(default_factory=Direct)

    @property
    def is_sourced(self) -> bool:
        return isinstance(self.source, FromStep)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "defaultValue": self.default_value,
        }
        wire = self.source.to_wire()
        if wire:
            d["source"] = wire
        return d

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "ParameterSpec":
        return ParameterSpec(
            name=str(d["name"]),
            description=str(d.get("description", "")),
            default_value=float(d.get("defaultValue", 0.0)),
            source=parse_source(d.get("source")),
        )


@dataclass(frozen=True)
class FormulaSpec:
    name: str
    parameters: Tuple[ParameterSpec, ...] = ()
    implementations: Mapping[str, str] = field(default_factory=dict)
    formula_string: str = ""
    explanation: str = ""
    role: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "implementations", dict(self.implementations))
        seen = set()
        for p in self.parameters:
            if p.name in seen:
                raise ValueError(f"Duplicate parameter '{p.name}' in formula '{self.name}'")
            seen.add(p.name)

    def __hash__(self) -> int:
        return hash((self.name, self.formula_string, self.parameters))

    @property
    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    def sourced_parameters(self) -> List[ParameterSpec]:
        return [p for p in self.parameters if p.is_sourced]

    def native_implementation(self) -> str:
        body = self.implementations.get(NATIVE_RUNTIME)
        if not body:
            raise KeyError(f"Formula '{self.name}' has no {NATIVE_RUNTIME} implementation")
        return body

    def same_instance(self, other: "FormulaSpec") -> bool:
        return self.name == other.name and self.formula_string == other.formula_string

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "formulaName": self.name,
            "formulaString": self.formula_string,
            "explanation": self.explanation,
            "parameters": [p.to_dict() for p in self.parameters],
            "codeSnippets": dict(self.implementations),
        }
        if self.role:
            d["role"] = self.role
        return d

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "FormulaSpec":
        return FormulaSpec(
            name=str(d["formulaName"]),
            formula_string=str(d.get("formulaString", "")),
            explanation=str(d.get("explanation", "")),
            role=d.get("role"),
            parameters=tuple(ParameterSpec.from_dict(p) for p in d.get("parameters", [])),
            implementations={str(k): str(v) for k, v in (d.get("codeSnippets") or {}).items()},
        )


@dataclass(frozen=True)
class ChainEntry:
    id: str
    formula: FormulaSpec
    result: str

    @property
    def formula_name(self) -> str:
        return self.formula.name

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "formula": self.formula.to_dict(), "result": self.result}
