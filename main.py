import logging
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

import set_env_vars
from ai_util.file_utils import FileUtils
from ai_util.notes_ai import NotesAIUtil
from backend.markdown_math import render_markdown
from backend.models import (
    ERROR_DEFINITION,
    ERROR_PROOF,
    ERROR_SUMMARY,
    RENDERED_FIELDS,
    ChapterSummaryItem,
    DefinitionItem,
    ProblemItem,
    ProblemStep,
    TheoremItem,
)
from backend.review import outline, review_queue, search
from backend.store import StudyStore


def _configure_logging() -> logging.Logger:
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(fmt)
        root.addHandler(sh)
    root.setLevel(logging.INFO)
    return logging.getLogger("mathnotes")


logger = _configure_logging()
env_status = set_env_vars.initialize_env_vars()
logger.info("Environment status: %s", env_status)

server = Flask(__name__, static_folder="frontend/dist", static_url_path="")
store = StudyStore()
file_utils = FileUtils()

try:
    ai_util: Optional[NotesAIUtil] = NotesAIUtil(file_utils=file_utils)
except RuntimeError as e:
    logger.warning("AI features disabled: %s", e)
    ai_util = None


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _field(name: str, default: Any = None) -> Any:
    value = request.form.get(name)
    if value is None:
        value = _payload().get(name)
    if isinstance(value, str):
        value = value.strip()
    return default if value in (None, "") else value


def _images(name: str) -> List[str]:
    """Images from multipart files, or a JSON list of data URLs."""
    images = file_utils.read_uploads(request.files.getlist(name))
    if not images:
        raw = _payload().get(name)
        if isinstance(raw, list):
            images = [str(x) for x in raw if x]
        elif isinstance(raw, str) and raw:
            images = [raw]
    for img in images:
        file_utils.split_data_url(img)
    return images


def _ai_missing():
    return jsonify({"error": "AI module not initialized"}), 500


def _not_found(kind: str):
    return jsonify({"error": f"{kind.capitalize()} not found"}), 404


@server.route("/api/hello")
def hello():
    return jsonify({"message": "API Working!"})


@server.route("/api/addDefinition", methods=["POST"])
def add_definition():
    term = _field("term")
    content = _field("userContent")
    if not term or not content:
        return jsonify({"error": "term and userContent are required"}), 400
    if not ai_util:
        return _ai_missing()

    item = DefinitionItem(
        subjectId=_field("subject", "General"),
        chapterId=_field("chapter", "General"),
        term=term,
        userContent=content,
        isLoading=True,
    )
    store.add("definition", item)

    try:
        enrichment = ai_util.expand_definition(
            term=item.term,
            user_content=item.userContent,
            subject=item.subjectId,
            chapter=item.chapterId,
        )
        item = store.update("definition", item.id, isLoading=False, **enrichment.to_item_fields())
    except Exception as e:
        logger.exception("Error expanding definition %r: %s", term, e)
        item = store.update("definition", item.id, aiContentEn=ERROR_DEFINITION, isLoading=False)

    return jsonify(asdict(item))


@server.route("/api/autoLearn", methods=["POST"])
def auto_learn():
    term = _field("term")
    if not term:
        return jsonify({"error": "term is required"}), 400
    if not ai_util:
        return _ai_missing()

    try:
        enrichment = ai_util.generate_missing_concept(term=term)
    except Exception as e:
        logger.exception("Failed to auto-learn %r: %s", term, e)
        return jsonify({"error": f"Failed to auto-learn: {str(e)}"}), 502

    item = DefinitionItem(
        subjectId=_field("subject", "General"),
        chapterId=_field("chapter", "General"),
        term=term,
        userContent="Auto-generated from Exercise",
        **enrichment.to_item_fields(),
    )
    store.add("definition", item)
    return jsonify(asdict(item))


@server.route("/api/getDefinitions", methods=["GET"])
def get_definitions():
    return jsonify(_filtered("definition"))


@server.route("/api/addTheorem", methods=["POST"])
def add_theorem():
    name = _field("name")
    content = _field("content")
    if not name or not content:
        return jsonify({"error": "name and content are required"}), 400

    try:
        images = _images("proofImage")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not images:
        return jsonify({"error": "No proof image provided"}), 400
    if not ai_util:
        return _ai_missing()

    item = TheoremItem(
        subjectId=_field("subject", "General"),
        chapterId=_field("chapter", "General"),
        name=name,
        content=content,
        proofImage=images[0],
        isLoading=True,
    )
    store.add("theorem", item)

    try:
        image_bytes, mime = file_utils.split_data_url(images[0])
        analysis = ai_util.analyze_proof(
            theorem_name=name,
            theorem_content=content,
            image_bytes=image_bytes,
            image_mime_type=mime,
        )
        item = store.update("theorem", item.id, isLoading=False, **analysis.to_item_fields())
    except Exception as e:
        logger.exception("Error analyzing proof for %r: %s", name, e)
        item = store.update("theorem", item.id, proofSteps=ERROR_PROOF, isLoading=False)

    return jsonify(asdict(item))


@server.route("/api/getTheorems", methods=["GET"])
def get_theorems():
    return jsonify(_filtered("theorem"))


def _steps(raw_steps) -> List[ProblemStep]:
    return [
        ProblemStep(stepNumber=s.step_number, math=s.math, explanation=s.explanation)
        for s in raw_steps
    ]


@server.route("/api/generateProblem", methods=["POST"])
def generate_problem():
    if not ai_util:
        return _ai_missing()

    subject = _field("subject", "General")
    chapter = _field("chapter", "General")
    try:
        result = ai_util.generate_problem(
            subject=subject,
            chapter=chapter,
            difficulty=_field("difficulty"),
            topic=_field("topic"),
        )
    except Exception as e:
        logger.exception("Error generating problem: %s", e)
        return jsonify({"error": f"Failed to generate problem: {str(e)}"}), 502

    item = ProblemItem(
        subjectId=subject,
        chapterId=chapter,
        source="ai",
        content=result.content,
        summary=result.summary,
        steps=_steps(result.steps),
        knowledgePoints=result.knowledge_points,
        uclDifficulty=result.difficulty,
    )
    store.add("problem", item)
    return jsonify(asdict(item))


@server.route("/api/solveProblem", methods=["POST"])
def solve_problem():
    content = _field("content", "")
    try:
        images = _images("images")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not content and not images:
        return jsonify({"error": "No problem text or image provided"}), 400
    if not ai_util:
        return _ai_missing()

    try:
        result = ai_util.solve_problem(
            problem_text=content,
            images=[file_utils.split_data_url(img) for img in images] or None,
        )
    except Exception as e:
        logger.exception("Error solving problem: %s", e)
        return jsonify({"error": f"Failed to solve problem: {str(e)}"}), 502

    item = ProblemItem(
        subjectId=_field("subject", "General"),
        chapterId=_field("chapter", "General"),
        source="user",
        content=content,
        originalImages=images or None,
        summary=result.summary,
        steps=_steps(result.steps),
        knowledgePoints=result.knowledge_points,
    )
    store.add("problem", item)
    return jsonify(asdict(item))


@server.route("/api/getProblems", methods=["GET"])
def get_problems():
    return jsonify(_filtered("problem"))


@server.route("/api/saveAnswer/<problemID>", methods=["POST"])
def save_answer(problemID):
    try:
        images = _images("solutionImages")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    updates: Dict[str, Any] = {}
    if "userAnswer" in request.form or "userAnswer" in _payload():
        updates["userAnswer"] = _field("userAnswer")
    if images:
        updates["solutionImages"] = images
    try:
        item = store.update("problem", problemID, **updates)
    except KeyError:
        return _not_found("problem")
    return jsonify(asdict(item))


@server.route("/api/markStruggle/<problemID>", methods=["POST"])
def mark_struggle(problemID):
    try:
        images = _images("struggleImages")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    try:
        item = store.update(
            "problem",
            problemID,
            isWrong=True,
            struggleNote=_field("struggleNote"),
            struggleImages=images or None,
        )
    except KeyError:
        return _not_found("problem")
    return jsonify(asdict(item))


@server.route("/api/markSolved/<problemID>", methods=["POST"])
def mark_solved(problemID):
    try:
        item = store.update("problem", problemID, isSolved=True)
    except KeyError:
        return _not_found("problem")
    return jsonify(asdict(item))


@server.route("/api/updateNotes/<kind>/<itemID>", methods=["POST"])
def update_notes(kind, itemID):
    if kind not in ("definition", "theorem"):
        return jsonify({"error": "Notes can only be set on definitions and theorems"}), 400
    try:
        item = store.update(kind, itemID, userNotes=_field("userNotes"))
    except KeyError:
        return _not_found(kind)
    return jsonify(asdict(item))


@server.route("/api/setMastery/<kind>/<itemID>", methods=["POST"])
def set_mastery(kind, itemID):
    level = _field("mastery")
    if level is None:
        return jsonify({"error": "No mastery level provided"}), 400
    try:
        item = store.set_mastery(kind, itemID, level)
    except KeyError:
        return _not_found(kind)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(asdict(item))


@server.route("/api/getItem/<kind>/<itemID>", methods=["GET"])
def get_item(kind, itemID):
    try:
        item = store.get(kind, itemID)
    except KeyError:
        return _not_found(kind)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    doc = asdict(item)
    if request.args.get("render", "").lower() in ("1", "true", "yes"):
        doc["rendered"] = {
            name: render_markdown(getattr(item, name))
            for name in RENDERED_FIELDS[kind]
        }
        if isinstance(item, ProblemItem):
            doc["rendered"]["steps"] = [
                {
                    "math": render_markdown(s.math),
                    "explanation": render_markdown(s.explanation),
                }
                for s in item.steps
            ]
    return jsonify(doc)


@server.route("/api/generateChapterSummary", methods=["POST"])
def generate_chapter_summary():
    subject = _field("subject")
    chapter = _field("chapter")
    if not subject or not chapter:
        return jsonify({"error": "subject and chapter are required"}), 400

    definitions, theorems = store.chapter_items(subject, chapter)
    if not definitions and not theorems:
        return jsonify({"error": "No definitions or theorems in this chapter yet"}), 400
    if not ai_util:
        return _ai_missing()

    try:
        summary_text = ai_util.generate_chapter_summary(
            subject=subject,
            chapter=chapter,
            items=[*definitions, *theorems],
        )
    except Exception as e:
        logger.exception("Error generating summary for %s / %s: %s", subject, chapter, e)
        summary_text = ERROR_SUMMARY

    item = ChapterSummaryItem(subjectId=subject, chapterId=chapter, aiSummary=summary_text)
    store.add("summary", item)
    return jsonify(asdict(item))


@server.route("/api/getChapterSummary", methods=["GET"])
def get_chapter_summary():
    subject = request.args.get("subject", "")
    chapter = request.args.get("chapter", "")
    item = store.latest_summary(subject, chapter)
    if not item:
        return _not_found("summary")
    return jsonify(asdict(item))


@server.route("/api/getOutline", methods=["GET"])
def get_outline():
    return jsonify({
        "definitions": outline(store.definitions),
        "theorems": outline(store.theorems),
    })


@server.route("/api/getReview", methods=["GET"])
def get_review():
    return jsonify(review_queue(store.definitions, store.theorems, store.problems))


@server.route("/api/search", methods=["GET"])
def search_items():
    return jsonify(search(request.args.get("q", ""), store.definitions, store.theorems, store.problems))


@server.route("/api/render", methods=["POST"])
def render():
    content = _payload().get("content")
    if content is None:
        content = request.form.get("content", "")
    if not isinstance(content, str):
        return jsonify({"error": "content must be a string"}), 400
    html = render_markdown(content)
    return jsonify({"html": html})


def _filtered(kind: str) -> List[Dict[str, Any]]:
    subject = request.args.get("subject")
    chapter = request.args.get("chapter")
    items = store.items(kind)
    if subject:
        items = [i for i in items if i.subjectId == subject]
    if chapter:
        items = [i for i in items if i.chapterId == chapter]
    return [asdict(i) for i in items]


@server.route("/", defaults={"path": ""})
@server.route("/<path:path>")
def spa(path):
    if path.startswith("api"):
        return jsonify({"error": "API route not found"}), 404

    return server.send_static_file("index.html")


if __name__ == '__main__':
    server.run(port=int(os.environ.get("PORT", "8080")))
