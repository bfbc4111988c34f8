from __future__ import annotations

import time
import typing as t
from dataclasses import dataclass, field
from typing import List, Optional

from bson import ObjectId

Importance = t.Literal["High", "Medium", "Low"]
IMPORTANCE_LEVELS: tuple[str, ...] = ("High", "Medium", "Low")

DIFFICULTY_LEVELS: tuple[str, ...] = ("UCL First Class", "UCL 2:1", "UCL Pass")
DEFAULT_DIFFICULTY = "Standard"

MIN_MASTERY = 1
MAX_MASTERY = 5

ERROR_DEFINITION = "Error generating content."
ERROR_PROOF = "Error analyzing."
ERROR_SUMMARY = "Error generating summary."


def new_id() -> str:
    return str(ObjectId())


def now_ms() -> int:
    return int(time.time() * 1000)


def validate_mastery(level: t.Any) -> int:
    if isinstance(level, bool) or not isinstance(level, (int, str)):
        raise ValueError(f"Mastery must be an integer, got {level!r}")
    try:
        value = int(level)
    except ValueError:
        raise ValueError(f"Mastery must be an integer, got {level!r}") from None
    if value < MIN_MASTERY or value > MAX_MASTERY:
        raise ValueError(f"Mastery must be between {MIN_MASTERY} and {MAX_MASTERY}, got {value}")
    return value


@dataclass
class DefinitionItem:
    subjectId: str
    chapterId: str
    term: str
    userContent: str
    id: str = field(default_factory=new_id)
    createdAt: int = field(default_factory=now_ms)
    userNotes: Optional[str] = None

    aiContentEn: Optional[str] = None
    aiContentZh: Optional[str] = None
    funAnalogy: Optional[str] = None
    chapterConnection: Optional[str] = None
    uclImportance: Importance = "Medium"
    flashcardSummary: Optional[str] = None
    relatedExtensions: Optional[str] = None

    mastery: int = MIN_MASTERY
    lastReviewed: int = field(default_factory=now_ms)
    isLoading: bool = False


@dataclass
class TheoremItem:
    subjectId: str
    chapterId: str
    name: str
    content: str
    id: str = field(default_factory=new_id)
    createdAt: int = field(default_factory=now_ms)
    correctedName: Optional[str] = None
    userNotes: Optional[str] = None
    proofImage: Optional[str] = None  # data URL

    proofSteps: Optional[str] = None
    logicMapping: Optional[str] = None
    concreteExample: Optional[str] = None
    flashcardSummary: Optional[str] = None
    uclImportance: Importance = "Medium"

    mastery: int = MIN_MASTERY
    lastReviewed: int = field(default_factory=now_ms)
    isLoading: bool = False


@dataclass
class ProblemStep:
    stepNumber: int
    math: str
    explanation: str
    description: str = ""


@dataclass
class ProblemItem:
    subjectId: str
    chapterId: str
    source: t.Literal["user", "ai"]
    content: str
    id: str = field(default_factory=new_id)
    createdAt: int = field(default_factory=now_ms)
    originalImages: Optional[List[str]] = None
    summary: Optional[str] = None
    steps: List[ProblemStep] = field(default_factory=list)

    userAnswer: Optional[str] = None
    solutionImages: Optional[List[str]] = None

    struggleNote: Optional[str] = None
    struggleImages: Optional[List[str]] = None

    knowledgePoints: List[str] = field(default_factory=list)
    uclDifficulty: str = DEFAULT_DIFFICULTY
    isSolved: bool = False
    isWrong: bool = False
    mastery: int = MIN_MASTERY


@dataclass
class ChapterSummaryItem:
    subjectId: str
    chapterId: str
    aiSummary: str
    id: str = field(default_factory=new_id)
    createdAt: int = field(default_factory=now_ms)
    isLoading: bool = False


StudyItem = t.Union[DefinitionItem, TheoremItem, ProblemItem, ChapterSummaryItem]

# Markdown fields per record type, used when rendering a record for display
RENDERED_FIELDS: dict[str, tuple[str, ...]] = {
    "definition": (
        "userContent",
        "userNotes",
        "aiContentEn",
        "aiContentZh",
        "funAnalogy",
        "chapterConnection",
        "flashcardSummary",
        "relatedExtensions",
    ),
    "theorem": ("content", "userNotes", "proofSteps", "logicMapping", "concreteExample", "flashcardSummary"),
    "problem": ("content", "userAnswer", "struggleNote"),
    "summary": ("aiSummary",),
}
