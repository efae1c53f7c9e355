from __future__ import annotations

import json
import re
from typing import Any

from .helpers import as_dict
from .validation import completion_percent


def export_filename(p: Any) -> str:
    title = str(as_dict(p).get("title") or "").strip() or "programme"
    name = re.sub(r"\s+", "_", title)
    return f"{name}.json"


def export_json(p: Any) -> str:
    return json.dumps(p, indent=2, ensure_ascii=False)


def import_json(text: str | bytes) -> dict:
    try:
        programme = json.loads(text)
    except (TypeError, ValueError) as exc:
        return {"success": False, "error": str(exc)}
    if not isinstance(programme, dict):
        return {"success": False, "error": "Invalid JSON structure"}
    return {"success": True, "programme": programme}


def export_gate(p: Any) -> dict:
    """JSON export is always allowed; Word export needs a complete programme."""
    return {"json": True, "word": completion_percent(p) == 100}
