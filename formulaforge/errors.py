"""Error types for the formula chain engine.

Diagnostics found before a run (unmet dependencies, bad parameter text) are
plain result objects: they are collected per parameter and block the run.
Faults inside the sandbox and the generator are exceptions, converted to
messages at their own boundary so they never escape the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DependencyUnmet:
    """A sourced parameter whose upstream formula is not in the chain."""

    parameter: str
    source_formula: str

    @property
    def message(self) -> str:
        return f"waiting for result from '{self.source_formula}'; run and commit that step first."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationError:
    """Parameter text that is empty or not a finite number."""

    parameter: str
    message: str
    value: str = ""

    def __str__(self) -> str:
        return self.message


class ExecutionError(Exception):
    """Base class for faults raised inside the sandbox."""

    kind = "execution"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ArgumentCoercionError(ExecutionError):
    kind = "argument"


class RuntimeFault(ExecutionError):
    kind = "runtime"


class SerializationError(ExecutionError):
    kind = "serialization"


class GeneratorFault(Exception):
    """The formula generator failed; ``message`` is safe to show to the operator."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(ValueError):
    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
