import asyncio
import json

import pytest
import requests

from formulaforge.chain import ChainStore
from formulaforge.config import GeneratorSettings
from formulaforge.errors import GeneratorFault
from formulaforge.generator import GeminiFormulaGenerator
from formulaforge.models import Direct, FromStep


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


def _candidate(obj):
    return {"candidates": [{"content": {"parts": [{"text": json.dumps(obj)}]}}]}


def _formula(name, python="def f(a):\n    return a", source=None):
    param = {"name": "a", "description": "input", "defaultValue": 2}
    if source:
        param["source"] = source
    return {
        "formulaName": name,
        "formulaString": "f = a",
        "explanation": "identity",
        "parameters": [param],
        "codeSnippets": {"python": python, "javascript": "(a) => a", "java": "", "cpp": ""},
    }


@pytest.fixture
def calls(monkeypatch):
    sent = []
    responses = []

    def fake_post(url, headers=None, json=None, timeout=None):
        sent.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        r = responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(requests, "post", fake_post)
    return sent, responses


def _gen(**kw):
    return GeminiFormulaGenerator(GeneratorSettings(api_key="k", timeout=5.0, **kw))


def test_generate_project_builds_typed_sources(calls):
    sent, responses = calls
    responses.append(FakeResponse(_candidate({
        "projectName": "Motion",
        "projectDescription": "speed and distance",
        "formulas": [_formula("Velocity"), _formula("Distance", source="formula:Velocity.output")],
    })))
    project = asyncio.run(_gen().generate_project("how far do I go"))

    assert project.name == "Motion"
    velocity, distance = project.formulas
    assert velocity.parameters[0].source == Direct()
    assert distance.parameters[0].source == FromStep("Velocity")
    assert distance.implementations == {"python": "def f(a):\n    return a", "javascript": "(a) => a"}

    req = sent[0]
    assert req["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    assert req["headers"] == {"x-goog-api-key": "k"}
    assert req["timeout"] == 5.0
    assert req["json"]["generationConfig"]["responseMimeType"] == "application/json"
    assert "how far do I go" in req["json"]["contents"][0]["parts"][0]["text"]


def test_project_prompt_carries_chain_context(calls, velocity):
    sent, responses = calls
    responses.append(FakeResponse(_candidate({"projectName": "Next", "formulas": [_formula("Energy")]})))
    chain = ChainStore()
    chain.append(velocity, "12.5")
    asyncio.run(_gen().generate_project("continue", chain.entries()))
    text = sent[0]["json"]["contents"][0]["parts"][0]["text"]
    assert "CONTEXT" in text
    assert '"Velocity"' in text and "12.5" in text


def test_missing_api_key(calls):
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(GeminiFormulaGenerator(GeneratorSettings()).analyze_code("x = 1"))
    assert "API key" in info.value.message
    assert calls[0] == []


def test_http_error_message(calls):
    _, responses = calls
    responses.append(FakeResponse({"error": {"message": "quota exhausted"}}, status_code=429))
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(_gen().ideas_for("Velocity", "speed"))
    assert info.value.message == "Failed to generate content: quota exhausted"


def test_transport_error(calls, velocity):
    _, responses = calls
    responses.append(requests.ConnectionError("unreachable"))
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(_gen().suggest_next(ChainStore().append(velocity, "1")))
    assert info.value.message.startswith("Failed to generate content:")
    assert isinstance(info.value.cause, requests.ConnectionError)


def test_formula_without_python_is_rejected(calls):
    _, responses = calls
    responses.append(FakeResponse(_candidate(_formula("Velocity", python=""))))
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(_gen().inspire_formula("speed", "Easy"))
    assert info.value.message == "AI response is missing required fields."


def test_bad_source_marker_is_malformed(calls):
    _, responses = calls
    responses.append(FakeResponse(_candidate(_formula("Velocity", source="somewhere"))))
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(_gen().analyze_code("v = d / t"))
    assert info.value.message.startswith("AI response is malformed")


def test_project_without_formulas(calls):
    _, responses = calls
    responses.append(FakeResponse(_candidate({"projectName": "Empty", "formulas": []})))
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(_gen().generate_project("nothing"))
    assert info.value.message == "AI response is missing required project fields or formulas."


def test_string_lists_and_analysis(calls, velocity):
    _, responses = calls
    responses.append(FakeResponse(_candidate({"suggestions": ["Energy", "Power", "Work"]})))
    responses.append(FakeResponse(_candidate({"analysis": "Consistent."})))
    responses.append(FakeResponse(_candidate({"ideas": "not a list"})))
    chain = ChainStore()
    entry = chain.append(velocity, "12.5")
    gen = _gen()

    assert asyncio.run(gen.suggest_next(entry)) == ["Energy", "Power", "Work"]
    assert asyncio.run(gen.analyze_chain(chain.entries())) == "Consistent."
    with pytest.raises(GeneratorFault) as info:
        asyncio.run(gen.ideas_for("Velocity", "speed"))
    assert info.value.message == "AI response is missing 'ideas' array."


def test_unreadable_body(calls):
    _, responses = calls
    responses.append(FakeResponse({"candidates": [{"content": {"parts": [{"text": "not json"}]}}]}))
    with pytest.raises(GeneratorFault):
        asyncio.run(_gen().analyze_chain([]))
