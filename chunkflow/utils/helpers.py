"""Shared utility functions used across the pipeline."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson


# --- Text Utilities -----------------------------------------------------------

def truncate_text(text: str, max_chars: int = 60) -> str:
    """Truncate text for display purposes, keeping it on one line."""
    text = text.replace("\n", "\\n")
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def read_text(path: str | Path) -> str:
    """Read a UTF-8 document without normalising newlines (offsets must match)."""
    with open(Path(path), "r", encoding="utf-8", newline="") as f:
        return f.read()


# --- File I/O -----------------------------------------------------------------

def dumps_json(data: Any) -> str:
    """Serialise to an indented JSON string using orjson."""
    return orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode("utf-8")


def save_json(data: Any, path: str | Path) -> None:
    """Serialise data to JSON using orjson (fast, handles datetime/UUID)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))
