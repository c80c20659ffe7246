from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic import BaseModel, Field, ValidationError

from . import prompts
from .config import GeneratorSettings
from .errors import GeneratorFault
from .models import ChainEntry, FormulaSpec, ParameterSpec, parse_source
from .project import Project

logger = logging.getLogger(__name__)


class ParameterModel(BaseModel):
    name: str
    description: str = ""
    defaultValue: float = 0.0
    source: Optional[str] = None


class CodeSnippetsModel(BaseModel):
    python: str = ""
    javascript: str = ""
    java: str = ""
    cpp: str = ""


class FormulaModel(BaseModel):
    formulaName: str
    formulaString: str = ""
    explanation: str = ""
    role: Optional[str] = None
    parameters: List[ParameterModel] = Field(default_factory=list)
    codeSnippets: CodeSnippetsModel = Field(default_factory=CodeSnippetsModel)

    def to_spec(self) -> FormulaSpec:
        return FormulaSpec(
            name=self.formulaName,
            formula_string=self.formulaString,
            explanation=self.explanation,
            role=self.role,
            parameters=tuple(
                ParameterSpec(
                    name=p.name,
                    description=p.description,
                    default_value=p.defaultValue,
                    source=parse_source(p.source),
                )
                for p in self.parameters
            ),
            implementations={k: v for k, v in self.codeSnippets.model_dump().items() if v},
        )


class ProjectModel(BaseModel):
    projectName: str
    projectDescription: str = ""
    formulas: List[FormulaModel] = Field(default_factory=list)


class FormulaGenerator:
    """Interface of the service that invents formulas and advisory text.

    Every method is a coroutine and fails with :class:`GeneratorFault`.
    """

    name = "base"

    async def generate_project(
        self, problem: str, chain_context: Optional[Sequence[ChainEntry]] = None, inspire: bool = False
    ) -> Project:  # pragma: no cover - interface
        raise NotImplementedError

    async def inspire_formula(self, idea: str, difficulty: str, inspire: bool = False) -> FormulaSpec:  # pragma: no cover - interface
        raise NotImplementedError

    async def analyze_code(self, code: str) -> FormulaSpec:  # pragma: no cover - interface
        raise NotImplementedError

    async def suggest_next(self, last_entry: ChainEntry) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    async def analyze_chain(self, entries: Sequence[ChainEntry]) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    async def ideas_for(self, formula_name: str, explanation: str) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError


class GeminiFormulaGenerator(FormulaGenerator):
    """Formula generator backed by the Gemini ``generateContent`` REST endpoint."""

    name = "gemini"

    def __init__(self, settings: Optional[GeneratorSettings] = None) -> None:
        self.settings = settings or GeneratorSettings()

    def _url(self) -> str:
        return f"{self.settings.endpoint.rstrip('/')}/models/{self.settings.model}:generateContent"

    def _request(self, contents: str, system: str, temperature: float, schema: Dict[str, Any]) -> Dict[str, Any]:
        if not self.settings.api_key:
            raise GeneratorFault("No API key configured; set GEMINI_API_KEY or API_KEY.")
        body = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": contents}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                "temperature": temperature,
            },
        }
        try:
            resp = requests.post(
                self._url(),
                headers={"x-goog-api-key": self.settings.api_key},
                json=body,
                timeout=self.settings.timeout,
            )
        except requests.RequestException as e:
            logger.error("generator request failed: %s", e)
            raise GeneratorFault(f"Failed to generate content: {e}", e) from e
        if not resp.ok:
            raise GeneratorFault(f"Failed to generate content: {self._error_message(resp)}")
        try:
            data = resp.json()
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(p.get("text", "") for p in parts).strip()
            payload = json.loads(text)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("unreadable generator response: %s", e)
            raise GeneratorFault("Failed to generate content: the response was not valid JSON.", e) from e
        if not isinstance(payload, dict):
            raise GeneratorFault("Failed to generate content: expected a JSON object.")
        return payload

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            message = resp.json().get("error", {}).get("message")
        except ValueError:
            message = None
        return message or f"HTTP {resp.status_code}"

    async def _call(self, contents: str, system: str, temperature: float, schema: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request, contents, system, temperature, schema)

    @staticmethod
    def _formula(data: Dict[str, Any]) -> FormulaSpec:
        try:
            model = FormulaModel(**data)
            if not model.formulaName or not model.codeSnippets.python:
                raise GeneratorFault("AI response is missing required fields.")
            return model.to_spec()
        except (ValidationError, ValueError) as e:
            raise GeneratorFault(f"AI response is malformed: {e}", e) from e

    async def generate_project(
        self, problem: str, chain_context: Optional[Sequence[ChainEntry]] = None, inspire: bool = False
    ) -> Project:
        system = prompts.PROJECT_SYSTEM_INSPIRE if inspire else prompts.PROJECT_SYSTEM
        data = await self._call(prompts.project_prompt(problem, chain_context), system, 0.5, prompts.PROJECT_SCHEMA)
        try:
            model = ProjectModel(**data)
        except ValidationError as e:
            raise GeneratorFault(f"AI response is malformed: {e}", e) from e
        if not model.projectName or not model.formulas:
            raise GeneratorFault("AI response is missing required project fields or formulas.")
        try:
            return Project(
                name=model.projectName,
                description=model.projectDescription,
                formulas=[self._formula(f.model_dump()) for f in model.formulas],
            )
        except ValueError as e:
            raise GeneratorFault(f"AI response is malformed: {e}", e) from e

    async def inspire_formula(self, idea: str, difficulty: str, inspire: bool = False) -> FormulaSpec:
        system = prompts.FORMULA_SYSTEM_INSPIRE if inspire else prompts.FORMULA_SYSTEM
        data = await self._call(prompts.formula_prompt(idea, difficulty), system, 0.8, prompts.FORMULA_SCHEMA)
        return self._formula(data)

    async def analyze_code(self, code: str) -> FormulaSpec:
        data = await self._call(prompts.code_prompt(code), prompts.CODE_SYSTEM, 0.3, prompts.FORMULA_SCHEMA)
        return self._formula(data)

    async def suggest_next(self, last_entry: ChainEntry) -> List[str]:
        data = await self._call(prompts.suggest_prompt(last_entry), prompts.SUGGEST_SYSTEM, 0.7, prompts.SUGGESTIONS_SCHEMA)
        return self._strings(data, "suggestions")

    async def analyze_chain(self, entries: Sequence[ChainEntry]) -> str:
        data = await self._call(prompts.analysis_prompt(entries), prompts.ANALYSIS_SYSTEM, 0.5, prompts.ANALYSIS_SCHEMA)
        analysis = data.get("analysis") if isinstance(data, dict) else None
        if not analysis or not isinstance(analysis, str):
            raise GeneratorFault("AI response is missing the 'analysis' field.")
        return analysis

    async def ideas_for(self, formula_name: str, explanation: str) -> List[str]:
        data = await self._call(prompts.ideas_prompt(formula_name, explanation), prompts.IDEAS_SYSTEM, 0.7, prompts.IDEAS_SCHEMA)
        return self._strings(data, "ideas")

    @staticmethod
    def _strings(data: Any, key: str) -> List[str]:
        items = data.get(key) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise GeneratorFault(f"AI response is missing '{key}' array.")
        return [str(i) for i in items]

