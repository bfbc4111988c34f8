from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
import typing as t
import urllib.error
import urllib.parse
import urllib.request

from ai_util.file_utils import FileUtils
from ai_util.schemas import (
    DEFINITION_SCHEMA,
    GENERATED_PROBLEM_SCHEMA,
    PROOF_SCHEMA,
    SOLVED_PROBLEM_SCHEMA,
    DefinitionEnrichment,
    GeneratedProblem,
    ProofAnalysis,
    SolvedProblem,
    decode_definition,
    decode_generated_problem,
    decode_proof,
    decode_solved_problem,
)

JsonDict = dict[str, t.Any]
ImagePart = tuple[bytes, str]

logger = logging.getLogger(__name__)

MATH_FORMAT_RULES = (
    "IMPORTANT:\n"
    "1. Use '$' for inline math (e.g. $x^2$).\n"
    "2. Use '$$' for block math (e.g. $$\\int f(x) dx$$).\n"
    "3. Do NOT wrap math in markdown code blocks (no triple backticks). Output raw text with delimiters."
)

TUTOR_PERSONA = "You are a strict Tutor at UCL (University College London) Mathematics Department."


_OUTER_FENCE_RE = re.compile(r"^```[\w-]*\s*|\s*```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def _strip_code_fences(text: str) -> str:
    return _OUTER_FENCE_RE.sub("", text.strip())


def _repair_json(text: str) -> str:
    """Patch up an object the model cut short or formatted loosely.

    Raw newlines inside strings get escaped, brackets left open at the end get
    closed, trailing commas go, and anything after the outer object is dropped.
    """
    s = _strip_code_fences(text)
    s = s[max(s.find("{"), 0):]
    out: list[str] = []
    closers: list[str] = []
    in_str = escaped = False
    for ch in s:
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            elif ch == "\n":
                ch = "\\n"
            elif ch == "\r":
                continue
            elif ch == "\t":
                ch = "\\t"
        elif ch == '"':
            in_str = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif closers and ch == closers[-1]:
            closers.pop()
            if not closers:
                out.append(ch)
                break
        out.append(ch)
    if in_str:
        out.append('"')
    out.extend(reversed(closers))
    return _TRAILING_COMMA_RE.sub(r"\1", "".join(out))


def parse_model_json(text: str) -> t.Any:
    try:
        return json.loads(_strip_code_fences(text))
    except json.JSONDecodeError:
        return json.loads(_repair_json(text))


class GeminiClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_s: float = 60.0,
        max_attempts: int = 3,
    ) -> None:
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise RuntimeError("Missing GEMINI_API_KEY (or GOOGLE_API_KEY).")
        self.model = os.environ.get("GEMINI_MODEL") or model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_attempts = max(1, int(max_attempts))

    def _retry_delay_seconds(self, body_text: str | None) -> float | None:
        if not body_text:
            return None
        try:
            parsed = json.loads(body_text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            err = parsed.get("error")
            details = err.get("details") if isinstance(err, dict) else None
            if isinstance(details, list):
                for d in details:
                    if not isinstance(d, dict):
                        continue
                    if str(d.get("@type") or "").endswith("RetryInfo") and isinstance(d.get("retryDelay"), str):
                        m = re.search(r"(\d+)\s*s", d["retryDelay"])
                        if m:
                            return float(m.group(1))
        m2 = re.search(r"retry in ([0-9]+(?:\.[0-9]+)?)s", body_text, flags=re.IGNORECASE)
        if m2:
            return float(m2.group(1))
        return None

    def _build_payload(
        self,
        *,
        prompt: str,
        system_instruction: str | None,
        images: list[ImagePart] | None,
        temperature: float,
        max_output_tokens: int,
        response_schema: JsonDict | None,
        json_output: bool,
    ) -> JsonDict:
        parts: list[JsonDict] = []
        for data, mime in images or []:
            parts.append({"inline_data": {"mime_type": mime, "data": base64.b64encode(data).decode("ascii")}})
        parts.append({"text": prompt})

        generation_config: JsonDict = {
            "temperature": temperature,
            "maxOutputTokens": max_output_tokens,
        }
        if json_output:
            generation_config["responseMimeType"] = "application/json"
            if response_schema is not None:
                generation_config["responseSchema"] = response_schema

        payload: JsonDict = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    def _post(self, payload: JsonDict) -> str:
        url = f"{self.base_url}/models/{urllib.parse.quote(self.model)}:generateContent?key={urllib.parse.quote(self.api_key)}"
        req = urllib.request.Request(
            url,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            last_try = attempt == self.max_attempts - 1
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                    raw = resp.read().decode("utf-8")

                try:
                    data = t.cast(JsonDict, json.loads(raw))
                except json.JSONDecodeError:
                    raise RuntimeError(f"Gemini returned invalid JSON: {raw[:1000]}")

                candidates = data.get("candidates") or []
                if not candidates:
                    raise RuntimeError("Gemini returned no candidates.")

                content = candidates[0].get("content") or {}
                parts = content.get("parts") or []
                text_parts = [p.get("text") for p in parts if isinstance(p, dict) and p.get("text")]
                if not text_parts:
                    finish_reason = candidates[0].get("finishReason")
                    raise RuntimeError(f"Gemini returned no text parts. Finish reason: {finish_reason}.")

                return "\n".join(t.cast(list[str], text_parts)).strip()

            except urllib.error.HTTPError as e:
                try:
                    body = e.read().decode("utf-8")
                except (OSError, UnicodeDecodeError):
                    body = None
                last_error = e
                if e.code == 429 and not last_try:
                    delay = self._retry_delay_seconds(body) or float(2 ** attempt) * 2.0
                    logger.warning("Gemini rate limited, retrying in %.1fs", delay)
                    time.sleep(min(65.0, max(1.0, delay)))
                    continue
                raise RuntimeError(f"Gemini HTTPError {e.code}: {body}") from e

            except urllib.error.URLError as e:
                raise RuntimeError(f"Gemini request failed: {e.reason}") from e

            except RuntimeError as e:
                last_error = e
                if not last_try:
                    logger.warning("Gemini attempt %d failed: %s", attempt + 1, e)
                    time.sleep(float(2 ** attempt))
                    continue
                raise

        raise RuntimeError("Gemini extraction failed.") from last_error

    def generate_json(
        self,
        *,
        user_prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonDict | None = None,
        images: list[ImagePart] | None = None,
        temperature: float = 0.2,
        max_output_tokens: int = 8192,
    ) -> t.Any:
        payload = self._build_payload(
            prompt=user_prompt,
            system_instruction=system_instruction,
            images=images,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_schema=response_schema,
            json_output=True,
        )
        text = self._post(payload)
        try:
            return parse_model_json(text)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Gemini did not return valid JSON: {text[:4000]}") from e

    def generate_text(
        self,
        *,
        user_prompt: str,
        system_instruction: str | None = None,
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
    ) -> str:
        payload = self._build_payload(
            prompt=user_prompt,
            system_instruction=system_instruction,
            images=None,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_schema=None,
            json_output=False,
        )
        return self._post(payload)


class NotesAIUtil:
    def __init__(
        self,
        *,
        gemini: GeminiClient | None = None,
        file_utils: FileUtils | None = None,
    ) -> None:
        self.gemini = gemini or GeminiClient()
        self.file_utils = file_utils or FileUtils()

    def expand_definition(
        self,
        *,
        term: str,
        user_content: str,
        subject: str,
        chapter: str,
    ) -> DefinitionEnrichment:
        prompt = (
            f"{TUTOR_PERSONA}\n\n"
            f'Context: Subject "{subject}", Chapter "{chapter}".\n'
            f'Term: "{term}"\n'
            f'User\'s Definition (Markdown): "{user_content}"\n\n'
            "Task: Analyze, correct, and expand.\n"
            f"{MATH_FORMAT_RULES}\n\n"
            "Return a JSON object:\n"
            "1. 'ai_content_en': Rigorous mathematical definition in English (Use $ and $$).\n"
            "2. 'ai_content_zh': Rigorous mathematical definition in Chinese (Use $ and $$).\n"
            "3. 'fun_analogy': A creative, memorable, non-math analogy (Bilingual EN/CN).\n"
            f"4. 'chapter_connection': A specific example connecting this term to other concepts likely in \"{chapter}\".\n"
            "5. 'ucl_importance': \"High\", \"Medium\", or \"Low\" based on UCL exam frequency.\n"
            "6. 'extensions': Advanced related knowledge points or common pitfalls (Bilingual).\n"
            "7. 'flashcard_summary': A very concise (1-2 sentence) summary of what this concept IS, suitable for a flashcard back."
        )
        out = self.gemini.generate_json(user_prompt=prompt, response_schema=DEFINITION_SCHEMA)
        return decode_definition(out)

    def generate_missing_concept(self, *, term: str) -> DefinitionEnrichment:
        """Definition for a knowledge tag found on an exercise the user has no note for."""
        return self.expand_definition(
            term=term,
            user_content="Auto-generated from exercise tag",
            subject="General Math",
            chapter="Auto-Generated",
        )

    def analyze_proof(
        self,
        *,
        theorem_name: str,
        theorem_content: str,
        image_bytes: bytes,
        image_mime_type: str = "image/jpeg",
    ) -> ProofAnalysis:
        prompt = (
            f'I have uploaded a photo of a proof for "{theorem_name}".\n'
            f'Statement: "{theorem_content}".\n\n'
            "Task: Analyze the proof for a university student.\n"
            f"{MATH_FORMAT_RULES}\n\n"
            "Return JSON with:\n"
            "1. 'proof_steps': A clean, step-by-step reproduction of the proof in Markdown + LaTeX. "
            "**Ensure each logical step is on a new line/paragraph.**\n"
            "2. 'logic_mapping': For each step, explicitly list the PREVIOUS DEFINITIONS, THEOREMS, or AXIOMS used. "
            "Format as a bullet list matching the steps.\n"
            "3. 'corrected_name': If the user's theorem name is non-standard or imprecise, provide the standard "
            "mathematical name. Otherwise return null.\n"
            "4. 'concrete_example': A concrete numerical or conceptual example applying this theorem.\n"
            "5. 'flashcard_summary': A 1 sentence summary of the theorem's core implication.\n"
            "6. 'ucl_importance': \"High\", \"Medium\", or \"Low\" based on difficulty/exam frequency."
        )
        out = self.gemini.generate_json(
            user_prompt=prompt,
            response_schema=PROOF_SCHEMA,
            images=[(image_bytes, self.file_utils.normalize_mime(image_mime_type))],
        )
        return decode_proof(out)

    def generate_problem(
        self,
        *,
        subject: str,
        chapter: str,
        difficulty: str | None = None,
        topic: str | None = None,
    ) -> GeneratedProblem:
        topic_instruction = f"Focus specifically on: {topic}.\n" if topic else ""
        difficulty_instruction = f"Target difficulty: {difficulty}.\n" if difficulty else ""
        prompt = (
            f'Generate a UCL-style university math exam question for Subject: "{subject}", Chapter: "{chapter}".\n'
            f"{topic_instruction}{difficulty_instruction}"
            "It should be challenging and require multiple steps.\n\n"
            f"{MATH_FORMAT_RULES}\n\n"
            "Return JSON:\n"
            "- 'problem_text': LaTeX formatted problem (Readable with $ delimiters).\n"
            "- 'problem_summary': A short 5-10 word title/summary of what this problem tests "
            '(e.g. "Integration by parts with log").\n'
            "- 'difficulty': 'UCL First Class' (Hard), 'UCL 2:1' (Medium), or 'UCL Pass' (Easy).\n"
            "- 'steps': Array of solution steps.\n"
            "- 'knowledge_tags': Specific definitions/theorems used (used for tracking)."
        )
        out = self.gemini.generate_json(user_prompt=prompt, response_schema=GENERATED_PROBLEM_SCHEMA)
        return decode_generated_problem(out)

    def solve_problem(
        self,
        *,
        problem_text: str,
        images: list[ImagePart] | None = None,
    ) -> SolvedProblem:
        image_note = "The problem is also shown in the attached image(s).\n" if images else ""
        prompt = (
            "Solve this university math problem step-by-step.\n"
            f'Problem: "{problem_text}"\n'
            f"{image_note}\n"
            f"{MATH_FORMAT_RULES}\n\n"
            "Identify the specific theorems/definitions used in 'knowledge_tags'.\n"
            "Provide a short 'problem_summary'."
        )
        parts = [(data, self.file_utils.normalize_mime(mime)) for data, mime in images or []]
        out = self.gemini.generate_json(
            user_prompt=prompt,
            response_schema=SOLVED_PROBLEM_SCHEMA,
            images=parts or None,
        )
        return decode_solved_problem(out)

    def generate_chapter_summary(
        self,
        *,
        subject: str,
        chapter: str,
        items: list[t.Any],
    ) -> str:
        lines = []
        for item in items:
            title = getattr(item, "term", None) or getattr(item, "name", "")
            lines.append(f"{title}: {getattr(item, 'flashcardSummary', None)}")
        items_context = "\n".join(lines)
        prompt = (
            f"Subject: {subject}\n"
            f"Chapter: {chapter}\n\n"
            "Here are the user's notes/concepts so far:\n"
            f"{items_context}\n\n"
            "Task: Write a cohesive, high-level revision summary for this entire chapter.\n"
            "- Connect the concepts logically (e.g. how definition A leads to Theorem B).\n"
            "- Use '$' for math notation. DO NOT use markdown code blocks for math.\n"
            "- Use UCL academic tone but easy to read."
        )
        text = self.gemini.generate_text(user_prompt=prompt)
        if not text.strip():
            raise RuntimeError("Gemini returned an empty chapter summary.")
        return text
