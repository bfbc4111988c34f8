"""Loads KEY=value lines from `.env` / `.env.local` next to this file.

Variables already present in the environment always win, and only the
settings this server reads are picked up.
"""
from __future__ import annotations

import os
import pathlib
from typing import Dict, List, Optional

KNOWN_KEYS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "GEMINI_MODEL", "PORT")


def _parse_dotenv(content: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for raw in content.splitlines():
        key, sep, val = raw.strip().partition("=")
        key = key.removeprefix("export ").strip()
        if not sep or not key or key.startswith("#"):
            continue
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in "\"'":
            val = val[1:-1]
        pairs[key] = val
    return pairs


def initialize_env_vars(*, dotenv_paths: Optional[List[str]] = None) -> Dict[str, bool]:
    """Fill missing settings from .env files and report what is configured."""
    root = pathlib.Path(__file__).resolve().parent
    paths = [pathlib.Path(p).expanduser() for p in dotenv_paths or []]
    paths += [root / ".env", root / ".env.local"]

    for path in paths:
        if not path.is_file():
            continue
        for key, val in _parse_dotenv(path.read_text(encoding="utf-8")).items():
            # first file wins, then the real environment beats every file
            if key in KNOWN_KEYS and val and not os.environ.get(key):
                os.environ[key] = val

    # the Gemini client accepts either name
    api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    if api_key and not os.environ.get("GEMINI_API_KEY"):
        os.environ["GEMINI_API_KEY"] = api_key

    return {
        "gemini_api_key_set": bool(api_key),
        "gemini_model_set": bool(os.environ.get("GEMINI_MODEL")),
    }
