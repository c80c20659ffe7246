import asyncio
from typing import List, Optional

import pytest

from formulaforge.errors import GeneratorFault
from formulaforge.generator import FormulaGenerator
from formulaforge.models import FormulaSpec, FromStep, ParameterSpec
from formulaforge.project import Project


class FakeGenerator(FormulaGenerator):
    name = "fake"

    def __init__(self, project: Project) -> None:
        self.project = project
        self.suggestions = ["Compute the kinetic energy"]
        self.analysis = "The chain is consistent."
        self.ideas = ["Trip planner"]
        self.error: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def _answer(self, call: tuple, value):
        self.calls.append(call)
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise GeneratorFault(self.error)
        return value

    async def generate_project(self, problem, chain_context=None, inspire=False):
        return await self._answer(("generate_project", problem, list(chain_context or []), inspire), self.project)

    async def inspire_formula(self, idea, difficulty, inspire=False):
        return await self._answer(("inspire_formula", idea, difficulty, inspire), self.project.formulas[0])

    async def analyze_code(self, code):
        return await self._answer(("analyze_code", code), self.project.formulas[0])

    async def suggest_next(self, last_entry):
        return await self._answer(("suggest_next", last_entry.id), list(self.suggestions))

    async def analyze_chain(self, entries):
        return await self._answer(("analyze_chain", len(entries)), self.analysis)

    async def ideas_for(self, formula_name, explanation):
        return await self._answer(("ideas_for", formula_name), list(self.ideas))


@pytest.fixture
def velocity() -> FormulaSpec:
    return FormulaSpec(
        name="Velocity",
        formula_string="v = d / t",
        explanation="Average velocity over a distance.",
        parameters=(
            ParameterSpec("d", "distance travelled", 50.0),
            ParameterSpec("t", "elapsed time", 4.0),
        ),
        implementations={
            "python": "def velocity(d, t):\n    return d / t",
            "javascript": "(d, t) => d / t",
        },
    )


@pytest.fixture
def distance() -> FormulaSpec:
    return FormulaSpec(
        name="Distance",
        formula_string="s = v * t",
        explanation="Distance covered at constant velocity.",
        parameters=(
            ParameterSpec("velocity", "speed from the velocity step", 0.0, FromStep("Velocity")),
            ParameterSpec("time", "duration", 1.0),
        ),
        implementations={"python": "def distance(velocity, time):\n    return velocity * time"},
    )


@pytest.fixture
def motion(velocity, distance) -> Project:
    return Project("Motion", "Constant velocity motion", [velocity, distance])


@pytest.fixture
def generator(motion) -> FakeGenerator:
    return FakeGenerator(motion)
