from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import networkx as nx

from .models import FormulaSpec


class DependencyCycleError(ValueError):
    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__("Formulas depend on each other in a cycle: " + " -> ".join(cycle))
        self.cycle = list(cycle)


@dataclass
class Project:
    """A set of formulas produced together, with their dependency graph.

    Edges run from the formula that produces a value to the formula that
    reads it; sourced names not defined in the project stay external.
    """

    name: str
    description: str = ""
    formulas: List[FormulaSpec] = field(default_factory=list)

    def __post_init__(self) -> None:
        names = [f.name for f in self.formulas]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate formula names in project '{self.name}': {', '.join(dupes)}")

    def get(self, name: str) -> Optional[FormulaSpec]:
        for f in self.formulas:
            if f.name == name:
                return f
        return None

    def graph(self) -> nx.DiGraph:
        g = nx.DiGraph()
        for f in self.formulas:
            g.add_node(f.name, role=f.role or "", parameters=len(f.parameters))
        for f in self.formulas:
            for p in f.sourced_parameters():
                src = p.source.formula_name
                if src not in g:
                    g.add_node(src, external=True)
                g.add_edge(src, f.name, parameter=p.name)
        return g

    def external_sources(self) -> List[str]:
        g = self.graph()
        return sorted(n for n, d in g.nodes(data=True) if d.get("external"))

    def dependents(self, name: str) -> List[str]:
        g = self.graph()
        if name not in g:
            return []
        return sorted(g.successors(name))

    def execution_order(self) -> List[str]:
        """Project formulas in an order where every producer precedes its readers."""
        g = self.graph()
        try:
            order = list(nx.lexicographical_topological_sort(g, key=self._position))
        except nx.NetworkXUnfeasible:
            cycle = [u for u, _ in nx.find_cycle(g)]
            raise DependencyCycleError(cycle + cycle[:1])
        return [n for n in order if not g.nodes[n].get("external")]

    def _position(self, name: str) -> str:
        for i, f in enumerate(self.formulas):
            if f.name == name:
                return f"{i:06d}"
        return f"~{name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectName": self.name,
            "projectDescription": self.description,
            "formulas": [f.to_dict() for f in self.formulas],
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Project":
        return Project(
            name=str(d["projectName"]),
            description=str(d.get("projectDescription", "")),
            formulas=[FormulaSpec.from_dict(f) for f in d.get("formulas", [])],
        )

    @staticmethod
    def single(name: str, description: str, formula: FormulaSpec) -> "Project":
        return Project(name=name, description=description, formulas=[formula])
