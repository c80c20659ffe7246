"""Prompt text and response schemas for the formula generator."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .models import ChainEntry

DIFFICULTY_LABELS = {"1": "Easy", "2": "Medium", "3": "Hard"}

PARAMETER_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING", "description": "Parameter name, a valid Python identifier (e.g. 'a')."},
        "description": {"type": "STRING", "description": "What the parameter represents."},
        "defaultValue": {"type": "NUMBER", "description": "A sensible default numeric value for trying the formula."},
        "source": {
            "type": "STRING",
            "description": (
                "Optional. Where the value comes from. To use the output of another formula write "
                "'formula:FORMULA_NAME.output'. Omit for direct user input."
            ),
        },
    },
    "required": ["name", "description", "defaultValue"],
}

CODE_SNIPPETS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "description": "Executable implementations of the formula.",
    "properties": {
        "python": {
            "type": "STRING",
            "description": (
                "A single Python function 'def name(a, b): ...' taking the parameters in the order of the "
                "'parameters' array and returning the result. Use only arithmetic, if/for statements, "
                "lists and the math module; no other imports, no I/O."
            ),
        },
        "javascript": {"type": "STRING", "description": "An equivalent JavaScript arrow function."},
        "java": {"type": "STRING", "description": "An equivalent Java method."},
        "cpp": {"type": "STRING", "description": "An equivalent C++ function."},
    },
    "required": ["python", "javascript", "java", "cpp"],
}

FORMULA_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "formulaName": {"type": "STRING", "description": "A concise name for the formula (e.g. 'Quadratic Formula')."},
        "formulaString": {"type": "STRING", "description": "The formula in plain text, using ^ for power and * for multiplication."},
        "explanation": {"type": "STRING", "description": "Purpose, principles and how the formula works."},
        "parameters": {"type": "ARRAY", "items": PARAMETER_SCHEMA},
        "codeSnippets": CODE_SNIPPETS_SCHEMA,
    },
    "required": ["formulaName", "formulaString", "explanation", "parameters", "codeSnippets"],
}

PROJECT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "projectName": {"type": "STRING", "description": "A concise name for the system being modeled."},
        "projectDescription": {"type": "STRING", "description": "What the project does and how its formulas work together."},
        "formulas": {
            "type": "ARRAY",
            "items": {
                **FORMULA_SCHEMA,
                "properties": {
                    **FORMULA_SCHEMA["properties"],
                    "role": {"type": "STRING", "description": "This formula's role within the project."},
                },
            },
        },
    },
    "required": ["projectName", "projectDescription", "formulas"],
}


def _string_list_schema(key: str, description: str) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {key: {"type": "ARRAY", "description": description, "items": {"type": "STRING"}}},
        "required": [key],
    }


IDEAS_SCHEMA = _string_list_schema("ideas", "Five practical application ideas for the formula.")
SUGGESTIONS_SCHEMA = _string_list_schema("suggestions", "Three logical next steps for the calculation chain.")
ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"analysis": {"type": "STRING", "description": "Analysis of the chain's consistency and viability."}},
    "required": ["analysis"],
}

PROJECT_SYSTEM = (
    "You are 'System Architect'. You break a user's problem down into a cohesive set of mathematical or "
    "algorithmic formulas and return them as one project with explanations and implementations. When one "
    "formula needs the result of another, set that parameter's 'source' to 'formula:SourceFormulaName.output'. "
    "Parameters the user types in have no source. A simple problem may need only one formula."
)
PROJECT_SYSTEM_INSPIRE = (
    "You are 'System Architect', acting as a creative partner. Treat the user's concept as inspiration, develop "
    "it into a complete project description without changing its core meaning, then break it down into a "
    "cohesive set of formulas with explanations and implementations. If the input is blank, invent an "
    "interesting project."
)
FORMULA_SYSTEM = (
    "You are 'Algo Architect', an expert in mathematics and algorithms. Given a topic and a difficulty, return "
    "the most relevant formula: the canonical one for a specific concept, a representative one for a broad "
    "topic, or a common useful one if the input is blank."
)
FORMULA_SYSTEM_INSPIRE = (
    "You are 'Algo Architect', acting as a creative partner. Use the user's topic and difficulty as "
    "inspiration for a complete and interesting formula concept; you may refine the idea. If the input is "
    "blank, invent a concept for the difficulty."
)
CODE_SYSTEM = (
    "You are 'Algo Architect'. Identify the mathematical or algorithmic formula a code snippet implements and "
    "return its canonical, well explained form, even if the code is inefficient or convoluted."
)
IDEAS_SYSTEM = "You brainstorm practical and innovative applications for a mathematical or algorithmic formula."
SUGGEST_SYSTEM = (
    "You are 'ChainLinker'. Suggest logical next steps in a multi-step calculation, based on the previous "
    "step's formula and result, as short prompts the user can describe as the next problem."
)
ANALYSIS_SYSTEM = (
    "You are 'Continuity Checker'. Review a chain of formulas where each step builds on the previous ones and "
    "assess whether the steps flow coherently and whether the final result is a sensible outcome."
)


def format_chain(entries: Sequence[ChainEntry], with_formula: bool = False) -> str:
    blocks: List[str] = []
    for i, e in enumerate(entries, start=1):
        name = f'"{e.formula.name}"'
        if with_formula and e.formula.formula_string:
            name += f" ({e.formula.formula_string})"
        blocks.append(f"Step {i}: \n- Formula: {name}\n- Result: {e.result}")
    return ("\n\n" if with_formula else "\n").join(blocks)


def project_prompt(problem: str, chain_context: Optional[Sequence[ChainEntry]] = None) -> str:
    text = (
        "Analyze the following problem description and provide a complete project with the most relevant "
        f'mathematical, statistical or algorithmic formulas to solve it. Problem: "{problem}"'
    )
    if chain_context:
        text += (
            f"\n\nCONTEXT from the preceding steps in the formula chain:\n{format_chain(chain_context)}\n\n"
            "Generate a new project whose formulas logically follow this entire sequence and build on all "
            "previous steps."
        )
    return text


def formula_prompt(idea: str, difficulty: str) -> str:
    return f'The user\'s starting idea is: "{idea}". The desired difficulty is "{difficulty}". Generate a complete formula concept.'


def code_prompt(code: str) -> str:
    return f"Identify the formula implemented by this code and give its canonical version. Code:\n```\n{code}\n```"


def ideas_prompt(formula_name: str, explanation: str) -> str:
    return (
        "Generate exactly 5 distinct application ideas for this formula.\n\n"
        f'Formula Name: "{formula_name}"\n\nExplanation: "{explanation}"'
    )


def suggest_prompt(last: ChainEntry) -> str:
    return (
        f'The last step in the chain was the formula "{last.formula.name}", which produced the result: '
        f"{last.result}. Suggest 3 logical next steps or formulas that build on this result."
    )


def analysis_prompt(entries: Sequence[ChainEntry]) -> str:
    return (
        "Analyze the following formula chain for logical consistency and algorithmic viability.\n\n"
        f"{format_chain(entries, with_formula=True)}\n\nProvide your analysis."
    )
