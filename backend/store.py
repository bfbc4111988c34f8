from __future__ import annotations

import dataclasses
import threading
import typing as t

from backend.models import (
    ChapterSummaryItem,
    DefinitionItem,
    ProblemItem,
    StudyItem,
    TheoremItem,
    now_ms,
    validate_mastery,
)

ItemT = t.TypeVar("ItemT", DefinitionItem, TheoremItem, ProblemItem, ChapterSummaryItem)

KINDS: dict[str, str] = {
    "definition": "definitions",
    "theorem": "theorems",
    "problem": "problems",
    "summary": "summaries",
}


def add_item(items: list[ItemT], item: ItemT) -> list[ItemT]:
    return [item, *items]


def update_item(items: list[ItemT], item_id: str, updates: dict[str, t.Any]) -> list[ItemT]:
    """Return a copy of `items` where the record `item_id` has `updates` applied.

    Fields are replaced whole. Unknown ids raise KeyError, unknown field
    names raise TypeError (from dataclasses.replace).
    """
    found = False
    out: list[ItemT] = []
    for item in items:
        if item.id == item_id:
            out.append(dataclasses.replace(item, **updates))
            found = True
        else:
            out.append(item)
    if not found:
        raise KeyError(item_id)
    return out


class StudyStore:
    """All records for the running session. Nothing is written to disk."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.definitions: list[DefinitionItem] = []
        self.theorems: list[TheoremItem] = []
        self.problems: list[ProblemItem] = []
        self.summaries: list[ChapterSummaryItem] = []

    def _attr(self, kind: str) -> str:
        try:
            return KINDS[kind]
        except KeyError:
            raise ValueError(f"Unknown item kind: {kind}") from None

    def items(self, kind: str) -> list[t.Any]:
        return list(getattr(self, self._attr(kind)))

    def add(self, kind: str, item: StudyItem) -> StudyItem:
        attr = self._attr(kind)
        with self._lock:
            setattr(self, attr, add_item(getattr(self, attr), item))
        return item

    def get(self, kind: str, item_id: str) -> t.Any:
        for item in getattr(self, self._attr(kind)):
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    def update(self, kind: str, item_id: str, **updates: t.Any) -> t.Any:
        attr = self._attr(kind)
        with self._lock:
            setattr(self, attr, update_item(getattr(self, attr), item_id, updates))
        return self.get(kind, item_id)

    def set_mastery(self, kind: str, item_id: str, level: t.Any) -> t.Any:
        mastery = validate_mastery(level)
        item = self.get(kind, item_id)
        updates: dict[str, t.Any] = {"mastery": mastery}
        if hasattr(item, "lastReviewed"):
            updates["lastReviewed"] = now_ms()
        return self.update(kind, item_id, **updates)

    def chapter_items(self, subject: str, chapter: str) -> tuple[list[DefinitionItem], list[TheoremItem]]:
        defs = [d for d in self.definitions if d.subjectId == subject and d.chapterId == chapter]
        thms = [x for x in self.theorems if x.subjectId == subject and x.chapterId == chapter]
        return defs, thms

    def latest_summary(self, subject: str, chapter: str) -> ChapterSummaryItem | None:
        for s in self.summaries:
            if s.subjectId == subject and s.chapterId == chapter:
                return s
        return None
