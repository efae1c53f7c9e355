from __future__ import annotations

import math
import uuid
from typing import Any, Optional


PATTERN_KEYS = ("syncOnlinePct", "asyncDirectedPct", "onCampusPct")

# Values shown by the QQI snapshot view. They disagree with default_pattern_for
# for ONLINE and BLENDED and are kept for reference only.
SNAPSHOT_PATTERN_DEFAULTS = {
    "F2F": {"syncOnlinePct": 0, "asyncDirectedPct": 0, "onCampusPct": 100},
    "ONLINE": {"syncOnlinePct": 60, "asyncDirectedPct": 40, "onCampusPct": 0},
    "BLENDED": {"syncOnlinePct": 30, "asyncDirectedPct": 20, "onCampusPct": 50},
}

MODALITY_LABELS = {"F2F": "Face-to-face", "BLENDED": "Blended", "ONLINE": "Fully online"}


def uid(prefix: str = "id") -> str:
    return f"{prefix}_{uuid.uuid4()}"


def to_number(value: Any) -> int | float:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return 0
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return 0
        try:
            return int(s)
        except ValueError:
            pass
        try:
            out = float(s)
        except ValueError:
            return 0
        return 0 if math.isnan(out) else out
    return 0


def fmt_num(value: Any) -> str:
    n = to_number(value)
    if isinstance(n, float) and n.is_integer():
        return str(int(n))
    return str(n)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    return not str(value).strip()


def text_or(value: Any, default: str) -> str:
    return default if is_blank(value) else str(value)


def as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def format_pct(n: Any = None) -> str:
    return f"{fmt_num(n)}%"


def default_pattern_for(modality: Optional[str]) -> dict:
    # Unknown, blank or missing modalities fall back to the BLENDED split.
    mod = str(modality or "").strip().upper()
    if mod == "F2F":
        return {"syncOnlinePct": 0, "asyncDirectedPct": 0, "onCampusPct": 100}
    if mod == "ONLINE":
        return {"syncOnlinePct": 40, "asyncDirectedPct": 60, "onCampusPct": 0}
    return {"syncOnlinePct": 30, "asyncDirectedPct": 40, "onCampusPct": 30}


def sum_pattern(pattern: Any) -> int | float:
    pat = as_dict(pattern)
    return sum(to_number(pat.get(k)) for k in PATTERN_KEYS)


def sum_stage_credits(all_modules: Any, stage_module_refs: Any) -> int | float:
    ids = {as_dict(ref).get("moduleId") for ref in as_list(stage_module_refs)}
    return sum(to_number(m.get("credits")) for m in as_list(all_modules) if isinstance(m, dict) and m.get("id") in ids)


def delivery_pattern_summary(version: dict) -> Optional[str]:
    mod = version.get("deliveryModality")
    if not mod:
        return None
    pat = as_dict(version.get("deliveryPatterns")).get(mod) or default_pattern_for(mod)
    a, b, c = (fmt_num(as_dict(pat).get(k)) for k in PATTERN_KEYS)
    return f"{MODALITY_LABELS.get(mod, mod)}: {a}% sync online, {b}% async directed, {c}% on campus"


def outcome_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return str(value.get("text") or "")
    return ""


plo_text = outcome_text
mimlo_text = outcome_text
