from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .advisory import ANALYSIS, SUGGESTIONS, AdvisoryState
from .chain import ChainEvent, ChainStore
from .config import EngineConfig
from .errors import GeneratorFault
from .generator import FormulaGenerator
from .models import ChainEntry, FormulaSpec
from .project import Project
from .prompts import DIFFICULTY_LABELS
from .readiness import missing_dependencies, readiness
from .resolver import Resolution, resolve
from .sandbox import execute
from .validator import validate, validate_arguments

logger = logging.getLogger(__name__)

BLOCKED_RUN = "Please resolve the errors in the parameters before running."
NO_GENERATOR = "No formula generator is configured."
FORGE_MODES = ("problem", "create", "code")


@dataclass
class RunOutcome:
    formula: FormulaSpec
    ok: bool
    result: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None  # "blocked", "argument", "runtime" or "serialization"
    parameter_errors: Dict[str, str] = field(default_factory=dict)
    committed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula.name,
            "ok": self.ok,
            "result": self.result,
            "error": self.error,
            "kind": self.kind,
            "parameter_errors": dict(self.parameter_errors),
            "committed": self.committed,
        }


class Workbench:
    """One operator session: the chain, the active formula and advisory state.

    All chain consumers share ``self.chain``. Parameter values of the active
    formula are re-resolved whenever the chain changes, and the last run
    outcome is dropped because its bindings may be stale.
    """

    def __init__(
        self,
        generator: Optional[FormulaGenerator] = None,
        config: Optional[EngineConfig] = None,
        chain: Optional[ChainStore] = None,
    ) -> None:
        self.config = config or EngineConfig.default()
        self.limits = self.config.limits()
        self.generator = generator
        self.chain = chain if chain is not None else ChainStore()
        self.advisory = AdvisoryState()
        self.advisory.attach(self.chain)
        self.chain.subscribe(self._on_chain_changed)

        self.project: Optional[Project] = None
        self.forging = False
        self.forge_error: Optional[str] = None

        self.ideas: Optional[List[str]] = None
        self.ideas_error: Optional[str] = None
        self._ideas_seq = 0

        self.active: Optional[FormulaSpec] = None
        self.values: Dict[str, str] = {}
        self.errors: Dict[str, str] = {}
        self.outcome: Optional[RunOutcome] = None

    # project and selection

    def load_project(self, project: Project) -> None:
        self.project = project
        self.active = None
        self.values = {}
        self.errors = {}
        self.outcome = None

    def formula(self, name: str) -> FormulaSpec:
        f = self.project.get(name) if self.project else None
        if f is None:
            raise KeyError(f"Unknown formula '{name}'")
        return f

    def select(self, formula: Union[str, FormulaSpec]) -> FormulaSpec:
        self.active = self.formula(formula) if isinstance(formula, str) else formula
        self.outcome = None
        self._reset_values()
        return self.active

    def resolution(self) -> Dict[str, Resolution]:
        if self.active is None:
            return {}
        return resolve(self.active, self.chain)

    def _reset_values(self) -> None:
        self.values = {}
        self.errors = {}
        for name, r in self.resolution().items():
            self.values[name] = r.value
            if r.error is not None:
                self.errors[name] = r.error.message

    def _on_chain_changed(self, event: ChainEvent) -> None:
        self.outcome = None
        if self.active is not None:
            self._reset_values()

    def _require_active(self) -> FormulaSpec:
        if self.active is None:
            raise ValueError("No formula is selected.")
        return self.active

    def set_value(self, name: str, text: str) -> Optional[str]:
        formula = self._require_active()
        param = next((p for p in formula.parameters if p.name == name), None)
        if param is None:
            raise KeyError(f"Formula '{formula.name}' has no parameter '{name}'")
        if param.is_sourced:
            raise ValueError(f"Parameter '{name}' is bound to the result of '{param.source.formula_name}'")
        self.values[name] = text
        message = validate(text)
        if message:
            self.errors[name] = message
        else:
            self.errors.pop(name, None)
        return message

    @property
    def can_run(self) -> bool:
        return self.active is not None and not self.errors

    # execution and commit

    def run(self) -> RunOutcome:
        formula = self._require_active()
        # Sourced values are read again here in case the chain changed since selection.
        resolved = self.resolution()
        for p in formula.sourced_parameters():
            self.values[p.name] = resolved[p.name].value

        unmet = {name: r.error for name, r in resolved.items() if r.error is not None}
        problems = validate_arguments(formula.parameters, self.values, unmet)
        self.errors = {name: str(diag) for name, diag in problems.items()}
        if problems:
            logger.warning("run of '%s' blocked: %s", formula.name, ", ".join(sorted(problems)))
            self.outcome = RunOutcome(formula, ok=False, error=BLOCKED_RUN, kind="blocked", parameter_errors=dict(self.errors))
            return self.outcome

        try:
            body = formula.native_implementation()
        except KeyError as e:
            self.outcome = RunOutcome(formula, ok=False, error=e.args[0], kind="runtime")
            return self.outcome

        args = [self.values[p.name] for p in formula.parameters]
        result = execute(body, args, formula.parameter_names, self.limits)
        self.outcome = RunOutcome(formula, ok=result.ok, result=result.result, error=result.error, kind=result.kind)
        return self.outcome

    def commit(self) -> ChainEntry:
        outcome = self.outcome
        if outcome is None or not outcome.ok or outcome.result is None:
            raise ValueError("Run the formula successfully before adding it to the chain.")
        if outcome.committed:
            raise ValueError("This result is already in the chain.")
        outcome.committed = True
        return self.chain.append(outcome.formula, outcome.result)

    def remove(self, entry_id: str) -> bool:
        return self.chain.remove(entry_id)

    def is_in_chain(self, formula: FormulaSpec) -> bool:
        return any(e.formula.same_instance(formula) for e in self.chain)

    def readiness(self) -> Dict[str, bool]:
        if self.project is None:
            return {}
        return readiness(self.project.formulas, self.chain)

    # generator calls

    async def forge(
        self,
        mode: str,
        user_input: str = "",
        code_input: str = "",
        difficulty: str = "1",
        inspire: bool = False,
    ) -> Optional[Project]:
        if mode not in FORGE_MODES:
            raise ValueError(f"Unknown forge mode '{mode}'")
        if self.forging:
            return None
        if not inspire and mode == "problem" and not user_input.strip():
            return None
        if not inspire and mode == "code" and not code_input.strip():
            return None

        self.clear_ideas()
        self.forging = True
        self.forge_error = None
        self.project = None
        self.active = None
        self.outcome = None
        try:
            if self.generator is None:
                raise GeneratorFault(NO_GENERATOR)
            project = await self._forge(mode, user_input, code_input, difficulty, inspire)
        except GeneratorFault as e:
            logger.error("forge failed: %s", e.message)
            self.forge_error = f"Error: {e.message}"
            return None
        except Exception:
            logger.exception("forge failed")
            self.forge_error = "An unexpected error occurred. Please try again."
            return None
        finally:
            self.forging = False
        self.load_project(project)
        return project

    async def _forge(self, mode: str, user_input: str, code_input: str, difficulty: str, inspire: bool) -> Project:
        if mode == "problem":
            context = self.chain.entries() or None
            return await self.generator.generate_project(user_input, context, inspire)
        if mode == "create":
            label = DIFFICULTY_LABELS.get(difficulty, difficulty)
            formula = await self.generator.inspire_formula(user_input, label, inspire)
            if user_input.strip():
                description = f'A formula concept inspired by "{user_input}" with {label} difficulty.'
            else:
                description = f"An inspired formula concept with {label} difficulty."
            return Project.single(f"Created Formula: {formula.name}", description, formula)
        formula = await self.generator.analyze_code(code_input)
        return Project.single(
            f"Code Analysis: {formula.name}",
            "The following formula was identified from the provided code snippet.",
            formula,
        )

    async def suggest_next(self) -> Optional[List[str]]:
        last = self.chain.last()
        if last is None:
            return None
        ticket = self.advisory.begin(SUGGESTIONS)
        try:
            if self.generator is None:
                raise GeneratorFault(NO_GENERATOR)
            suggestions = await self.generator.suggest_next(last)
        except GeneratorFault as e:
            logger.error("suggestions failed: %s", e.message)
            self.advisory.fail(ticket, e.message)
            return None
        except Exception:
            logger.exception("suggestions failed")
            self.advisory.fail(ticket, "An unexpected error occurred while generating suggestions.")
            return None
        return suggestions if self.advisory.deliver(ticket, suggestions) else None

    async def analyze_chain(self) -> Optional[str]:
        minimum = self.config.analysis_min_steps
        if len(self.chain) < minimum:
            steps = "two steps" if minimum == 2 else f"{minimum} step{'s' if minimum != 1 else ''}"
            self.advisory.fail_now(ANALYSIS, f"Analysis requires at least {steps} in the chain.")
            return None
        ticket = self.advisory.begin(ANALYSIS)
        try:
            if self.generator is None:
                raise GeneratorFault(NO_GENERATOR)
            analysis = await self.generator.analyze_chain(self.chain.entries())
        except GeneratorFault as e:
            logger.error("chain analysis failed: %s", e.message)
            self.advisory.fail(ticket, e.message)
            return None
        except Exception:
            logger.exception("chain analysis failed")
            self.advisory.fail(ticket, "An unexpected error occurred during analysis.")
            return None
        return analysis if self.advisory.deliver(ticket, analysis) else None

    def clear_analysis(self) -> None:
        self.advisory.clear_analysis()

    async def ideas_for(self, formula: Optional[FormulaSpec] = None) -> Optional[List[str]]:
        formula = formula or self._require_active()
        self._ideas_seq += 1
        seq = self._ideas_seq
        self.ideas = None
        self.ideas_error = None
        try:
            if self.generator is None:
                raise GeneratorFault(NO_GENERATOR)
            ideas = await self.generator.ideas_for(formula.name, formula.explanation)
        except GeneratorFault as e:
            if seq == self._ideas_seq:
                self.ideas_error = e.message
            return None
        except Exception:
            logger.exception("idea generation failed")
            if seq == self._ideas_seq:
                self.ideas_error = "An unexpected error occurred while generating ideas."
            return None
        if seq != self._ideas_seq:
            return None
        self.ideas = ideas
        return ideas

    def clear_ideas(self) -> None:
        self._ideas_seq += 1
        self.ideas = None
        self.ideas_error = None

    # presentation

    def state(self) -> Dict[str, Any]:
        active = self.active
        return {
            "project": self.project.to_dict() if self.project else None,
            "chain": [e.to_dict() for e in self.chain],
            "readiness": self.readiness(),
            "active": active.name if active else None,
            "missing": missing_dependencies(active, self.chain) if active else [],
            "parameters": {
                name: {"value": self.values.get(name, ""), "error": self.errors.get(name)}
                for name in (active.parameter_names if active else [])
            },
            "in_chain": self.is_in_chain(active) if active else False,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "advisory": self.advisory.snapshot(),
            "ideas": self.ideas,
            "ideas_error": self.ideas_error,
            "forge_error": self.forge_error,
        }
