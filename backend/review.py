from __future__ import annotations

import typing as t
from dataclasses import asdict

from backend.models import DefinitionItem, ProblemItem, TheoremItem

WEAK_MASTERY = 3

JsonDict = dict[str, t.Any]


def _is_weak(item: DefinitionItem | TheoremItem) -> bool:
    return item.mastery <= WEAK_MASTERY or item.uclImportance == "High"


def _review_order(item: DefinitionItem | TheoremItem) -> tuple[int, int]:
    return (item.mastery, item.lastReviewed)


def weak_definitions(definitions: t.Iterable[DefinitionItem]) -> list[DefinitionItem]:
    return sorted((d for d in definitions if _is_weak(d)), key=_review_order)


def weak_theorems(theorems: t.Iterable[TheoremItem]) -> list[TheoremItem]:
    return sorted((x for x in theorems if _is_weak(x)), key=_review_order)


def wrong_problems(problems: t.Iterable[ProblemItem]) -> list[ProblemItem]:
    return [p for p in problems if p.isWrong]


def review_queue(
    definitions: t.Iterable[DefinitionItem],
    theorems: t.Iterable[TheoremItem],
    problems: t.Iterable[ProblemItem],
) -> JsonDict:
    """Low mastery and high priority items, plus problems marked wrong."""
    return {
        "definitions": [asdict(d) for d in weak_definitions(definitions)],
        "theorems": [asdict(x) for x in weak_theorems(theorems)],
        "mistakes": [asdict(p) for p in wrong_problems(problems)],
    }


def _contains(value: str | None, needle: str) -> bool:
    return bool(value) and needle in t.cast(str, value).lower()


def search(
    query: str,
    definitions: t.Iterable[DefinitionItem],
    theorems: t.Iterable[TheoremItem],
    problems: t.Iterable[ProblemItem],
) -> JsonDict:
    q = (query or "").strip().lower()
    if not q:
        return {"definitions": [], "theorems": [], "problems": []}

    defs = [
        d for d in definitions
        if _contains(d.term, q) or _contains(d.userContent, q) or _contains(d.subjectId, q)
    ]
    thms = [
        x for x in theorems
        if _contains(x.name, q) or _contains(x.correctedName, q) or _contains(x.content, q)
    ]
    probs = [p for p in problems if _contains(p.content, q) or _contains(p.summary, q)]
    return {
        "definitions": [asdict(d) for d in defs],
        "theorems": [asdict(x) for x in thms],
        "problems": [asdict(p) for p in probs],
    }


def outline(items: t.Iterable[DefinitionItem | TheoremItem]) -> dict[str, dict[str, list[JsonDict]]]:
    """Group records by subject then chapter, oldest first within a chapter."""
    groups: dict[str, dict[str, list[DefinitionItem | TheoremItem]]] = {}
    for item in items:
        groups.setdefault(item.subjectId, {}).setdefault(item.chapterId, []).append(item)

    out: dict[str, dict[str, list[JsonDict]]] = {}
    for subject, chapters in groups.items():
        out[subject] = {}
        for chapter, chapter_items in chapters.items():
            chapter_items.sort(key=lambda i: i.createdAt)
            out[subject][chapter] = [
                {
                    "id": i.id,
                    "title": getattr(i, "term", None) or getattr(i, "name", ""),
                    "mastery": i.mastery,
                }
                for i in chapter_items
            ]
    return out
