"""Markdown + LaTeX rendering for AI generated study notes.

Text coming back from the model is markdown with `$...$` / `$$...$$` math,
except when it isn't: the model sometimes wraps formulas in ```latex fences
or uses the `\\[ \\]` / `\\( \\)` delimiter styles. `sanitize` folds all of that
into the two dollar forms, `mask_math` hides the math from the markdown pass,
and `unmask_math` puts it back so MathJax can typeset it in the browser.
"""

from __future__ import annotations

import dataclasses
import html
import re
import typing as t
import uuid

from markdown_it import MarkdownIt

MATH_FENCE_TAGS = frozenset({"latex", "math", "tex"})

# an info string only exists when a newline follows it
_FENCE_RE = re.compile(r"```(?:(?P<tag>[\w+-]+)[ \t]*(?=\n))?(?P<body>.*?)```", re.DOTALL)
_DISPLAY_OPEN_RE = re.compile(r"(?<!\\)\\\[")
_DISPLAY_CLOSE_RE = re.compile(r"(?<!\\)\\\]")
_INLINE_OPEN_RE = re.compile(r"(?<!\\)\\\(")
_INLINE_CLOSE_RE = re.compile(r"(?<!\\)\\\)")

_DISPLAY_MATH_RE = re.compile(r"\$\$(.+?)\$\$", re.DOTALL)
_INLINE_MATH_RE = re.compile(r"\$(.+?)\$")


def _token(kind: str, nonce: str, index: int) -> str:
    return f"MATH{kind}{nonce}N{index}E"


def _looks_like_math(body: str) -> bool:
    return "\\" in body or "=" in body


def _unwrap_fence(match: re.Match[str]) -> str:
    tag = match.group("tag") or ""
    body = match.group("body")
    content = body.strip()
    if not content:
        return match.group(0)
    if tag.lower() in MATH_FENCE_TAGS:
        return f"$${content}$$"
    if not tag and _looks_like_math(content):
        return f"$${content}$$"
    return match.group(0)


def sanitize(text: str | None) -> str:
    """Unwrap math fences and normalise delimiters to `$` and `$$`."""
    if not text:
        return ""
    cleaned = _FENCE_RE.sub(_unwrap_fence, text)
    cleaned = _DISPLAY_OPEN_RE.sub("$$", cleaned)
    cleaned = _DISPLAY_CLOSE_RE.sub("$$", cleaned)
    cleaned = _INLINE_OPEN_RE.sub("$", cleaned)
    cleaned = _INLINE_CLOSE_RE.sub("$", cleaned)
    return cleaned


@dataclasses.dataclass(frozen=True)
class MaskedText:
    text: str
    nonce: str
    display: tuple[str, ...]
    inline: tuple[str, ...]

    def token(self, kind: str, index: int) -> str:
        return _token(kind, self.nonce, index)

    @property
    def token_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"MATH([DI]){self.nonce}N(\d+)E")


def mask_math(text: str) -> MaskedText:
    """Replace every math span with a placeholder token.

    Display spans go first so that `$$a$$` is never read as two inline spans.
    Tokens are letters and digits only, so markdown leaves them alone.
    """
    nonce = uuid.uuid4().hex.upper()
    display: list[str] = []
    inline: list[str] = []

    def stash(bucket: list[str], kind: str) -> t.Callable[[re.Match[str]], str]:
        def repl(m: re.Match[str]) -> str:
            bucket.append(m.group(0))
            return _token(kind, nonce, len(bucket) - 1)

        return repl

    masked = _DISPLAY_MATH_RE.sub(stash(display, "D"), text)
    masked = _INLINE_MATH_RE.sub(stash(inline, "I"), masked)
    return MaskedText(text=masked, nonce=nonce, display=tuple(display), inline=tuple(inline))


def unmask_math(rendered: str, masked: MaskedText) -> str:
    """Put the math back, escaping `&`, `<` and `>` so the spans stay text."""
    spans = {"D": masked.display, "I": masked.inline}

    def restore(m: re.Match[str]) -> str:
        span = spans[m.group(1)][int(m.group(2))]
        return html.escape(span, quote=False)

    return masked.token_pattern.sub(restore, rendered)


@dataclasses.dataclass
class MarkdownMathRenderer:
    """Converts markdown-with-math into an HTML fragment for MathJax."""

    _markdown: MarkdownIt = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        # html=False escapes raw tags typed by the user or the model
        self._markdown = MarkdownIt("commonmark", {"html": False, "breaks": True})

    def render(self, text: str | None) -> str:
        masked = mask_math(sanitize(text))
        if not masked.text.strip():
            return ""
        rendered = self._markdown.render(masked.text)
        return unmask_math(rendered, masked)


renderer = MarkdownMathRenderer()


def render_markdown(text: str | None) -> str:
    return renderer.render(text)
