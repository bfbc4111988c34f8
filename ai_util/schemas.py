"""Gemini response schemas and the decoders that check responses against them.

Decoders fail closed: a response that is missing a required field, has the
wrong type, or an importance outside High/Medium/Low raises
ResponseDecodeError instead of turning into a record full of nulls.
"""

from __future__ import annotations

import dataclasses
import typing as t

JsonDict = dict[str, t.Any]

IMPORTANCE_ENUM = ["High", "Medium", "Low"]


class ResponseDecodeError(ValueError):
    pass


_STEPS_SCHEMA: JsonDict = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "step_number": {"type": "INTEGER"},
            "math": {"type": "STRING"},
            "explanation": {"type": "STRING"},
        },
        "required": ["step_number", "math", "explanation"],
    },
}

DEFINITION_SCHEMA: JsonDict = {
    "type": "OBJECT",
    "properties": {
        "ai_content_en": {"type": "STRING"},
        "ai_content_zh": {"type": "STRING"},
        "fun_analogy": {"type": "STRING"},
        "chapter_connection": {"type": "STRING"},
        "ucl_importance": {"type": "STRING", "enum": IMPORTANCE_ENUM},
        "extensions": {"type": "STRING"},
        "flashcard_summary": {"type": "STRING"},
    },
    "required": [
        "ai_content_en",
        "ai_content_zh",
        "fun_analogy",
        "chapter_connection",
        "ucl_importance",
        "extensions",
        "flashcard_summary",
    ],
}

PROOF_SCHEMA: JsonDict = {
    "type": "OBJECT",
    "properties": {
        "proof_steps": {"type": "STRING"},
        "logic_mapping": {"type": "STRING"},
        "corrected_name": {"type": "STRING", "nullable": True},
        "concrete_example": {"type": "STRING"},
        "flashcard_summary": {"type": "STRING"},
        "ucl_importance": {"type": "STRING", "enum": IMPORTANCE_ENUM},
    },
    "required": ["proof_steps", "logic_mapping", "concrete_example", "flashcard_summary", "ucl_importance"],
}

GENERATED_PROBLEM_SCHEMA: JsonDict = {
    "type": "OBJECT",
    "properties": {
        "problem_text": {"type": "STRING"},
        "problem_summary": {"type": "STRING"},
        "difficulty": {"type": "STRING"},
        "steps": _STEPS_SCHEMA,
        "knowledge_tags": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["problem_text", "steps"],
}

SOLVED_PROBLEM_SCHEMA: JsonDict = {
    "type": "OBJECT",
    "properties": {
        "problem_summary": {"type": "STRING"},
        "steps": _STEPS_SCHEMA,
        "knowledge_tags": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["steps"],
}


@dataclasses.dataclass(frozen=True)
class DefinitionEnrichment:
    ai_content_en: str
    ai_content_zh: str
    fun_analogy: str
    chapter_connection: str
    ucl_importance: str
    extensions: str
    flashcard_summary: str

    def to_item_fields(self) -> JsonDict:
        return {
            "aiContentEn": self.ai_content_en,
            "aiContentZh": self.ai_content_zh,
            "funAnalogy": self.fun_analogy,
            "chapterConnection": self.chapter_connection,
            "uclImportance": self.ucl_importance,
            "relatedExtensions": self.extensions,
            "flashcardSummary": self.flashcard_summary,
        }


@dataclasses.dataclass(frozen=True)
class ProofAnalysis:
    proof_steps: str
    logic_mapping: str
    corrected_name: str | None
    concrete_example: str
    flashcard_summary: str
    ucl_importance: str

    def to_item_fields(self) -> JsonDict:
        return {
            "proofSteps": self.proof_steps,
            "logicMapping": self.logic_mapping,
            "correctedName": self.corrected_name,
            "concreteExample": self.concrete_example,
            "flashcardSummary": self.flashcard_summary,
            "uclImportance": self.ucl_importance,
        }


@dataclasses.dataclass(frozen=True)
class SolutionStep:
    step_number: int
    math: str
    explanation: str


@dataclasses.dataclass(frozen=True)
class GeneratedProblem:
    content: str
    summary: str
    difficulty: str
    steps: list[SolutionStep]
    knowledge_points: list[str]


@dataclasses.dataclass(frozen=True)
class SolvedProblem:
    summary: str
    steps: list[SolutionStep]
    knowledge_points: list[str]


def _require_object(data: t.Any, what: str) -> JsonDict:
    if not isinstance(data, dict):
        raise ResponseDecodeError(f"{what}: expected a JSON object, got {type(data).__name__}")
    return t.cast(JsonDict, data)


def _string(data: JsonDict, key: str, what: str, *, nullable: bool = False) -> str | None:
    if key not in data or data[key] is None:
        if nullable:
            return None
        raise ResponseDecodeError(f"{what}: missing field '{key}'")
    value = data[key]
    if not isinstance(value, str):
        raise ResponseDecodeError(f"{what}: field '{key}' must be a string, got {type(value).__name__}")
    return value


def _required_string(data: JsonDict, key: str, what: str) -> str:
    return t.cast(str, _string(data, key, what))


def _optional_string(data: JsonDict, key: str, what: str, default: str) -> str:
    value = _string(data, key, what, nullable=True)
    return value if value else default


def _importance(data: JsonDict, what: str) -> str:
    value = _required_string(data, "ucl_importance", what)
    if value not in IMPORTANCE_ENUM:
        raise ResponseDecodeError(f"{what}: ucl_importance must be one of {IMPORTANCE_ENUM}, got {value!r}")
    return value


def _string_list(data: JsonDict, key: str, what: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ResponseDecodeError(f"{what}: field '{key}' must be a list of strings")
    return list(value)


def _steps(data: JsonDict, what: str) -> list[SolutionStep]:
    raw = data.get("steps")
    if not isinstance(raw, list):
        raise ResponseDecodeError(f"{what}: field 'steps' must be a list")
    steps: list[SolutionStep] = []
    for idx, s in enumerate(raw, start=1):
        step = _require_object(s, f"{what} step {idx}")
        number = step.get("step_number", idx)
        if isinstance(number, bool) or not isinstance(number, int):
            raise ResponseDecodeError(f"{what} step {idx}: step_number must be an integer")
        steps.append(
            SolutionStep(
                step_number=number,
                math=_required_string(step, "math", f"{what} step {idx}"),
                explanation=_required_string(step, "explanation", f"{what} step {idx}"),
            )
        )
    return steps


def decode_definition(data: t.Any) -> DefinitionEnrichment:
    what = "definition"
    d = _require_object(data, what)
    return DefinitionEnrichment(
        ai_content_en=_required_string(d, "ai_content_en", what),
        ai_content_zh=_required_string(d, "ai_content_zh", what),
        fun_analogy=_required_string(d, "fun_analogy", what),
        chapter_connection=_required_string(d, "chapter_connection", what),
        ucl_importance=_importance(d, what),
        extensions=_required_string(d, "extensions", what),
        flashcard_summary=_required_string(d, "flashcard_summary", what),
    )


def decode_proof(data: t.Any) -> ProofAnalysis:
    what = "proof analysis"
    d = _require_object(data, what)
    corrected = _string(d, "corrected_name", what, nullable=True)
    return ProofAnalysis(
        proof_steps=_required_string(d, "proof_steps", what),
        logic_mapping=_required_string(d, "logic_mapping", what),
        corrected_name=(corrected.strip() or None) if corrected else None,
        concrete_example=_required_string(d, "concrete_example", what),
        flashcard_summary=_required_string(d, "flashcard_summary", what),
        ucl_importance=_importance(d, what),
    )


def decode_generated_problem(data: t.Any) -> GeneratedProblem:
    what = "generated problem"
    d = _require_object(data, what)
    return GeneratedProblem(
        content=_required_string(d, "problem_text", what),
        summary=_optional_string(d, "problem_summary", what, "Math Problem"),
        difficulty=_optional_string(d, "difficulty", what, "Standard"),
        steps=_steps(d, what),
        knowledge_points=_string_list(d, "knowledge_tags", what),
    )


def decode_solved_problem(data: t.Any) -> SolvedProblem:
    what = "solved problem"
    d = _require_object(data, what)
    return SolvedProblem(
        summary=_optional_string(d, "problem_summary", what, "Solved Problem"),
        steps=_steps(d, what),
        knowledge_points=_string_list(d, "knowledge_tags", what),
    )
