"""Learning outcome wording checks and a rough language guess."""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional

from .helpers import as_dict, as_list, outcome_text


LANGUAGE_STOPWORDS = {
    "en": frozenset(
        "the and to of in for with on by as from that this these those will can be is are an a at or into using".split()
    ),
    "ga": frozenset("agus an na ar le go i is ní mar don do seo sin atá bhfuil".split()),
    "fr": frozenset("le la les et de des du un une dans pour avec sur par est être au".split()),
    "es": frozenset("el la los las y de del un una en para con por es ser al que".split()),
    "de": frozenset("der die das und zu von mit für im auf ist sein eine ein den dem".split()),
}

LO_LINT_RULES = (
    {
        "id": "vague_understand",
        "severity": "warn",
        "pattern": re.compile(r"\b(understand|understands|understanding)\b", re.IGNORECASE),
        "message": "'Understand' is hard to assess directly. Use an observable verb instead.",
        "suggestions": ["describe", "explain", "apply", "analyse", "evaluate"],
    },
    {
        "id": "vague_knowledge",
        "severity": "warn",
        "pattern": re.compile(r"\b(have knowledge of|has knowledge of|knowledge of|be knowledgeable about)\b", re.IGNORECASE),
        "message": "Vague knowledge phrasing. Prefer a demonstrable action.",
        "suggestions": ["identify", "summarise", "compare", "apply", "justify"],
    },
    {
        "id": "vague_familiar",
        "severity": "warn",
        "pattern": re.compile(r"\b(be familiar with|become familiar with|familiar with)\b", re.IGNORECASE),
        "message": "'Familiar with' is usually not measurable. State what learners will *do*.",
        "suggestions": ["use", "select", "demonstrate", "interpret"],
    },
    {
        "id": "vague_aware",
        "severity": "warn",
        "pattern": re.compile(r"\b(aware of|awareness of)\b", re.IGNORECASE),
        "message": "'Aware of' is often too soft. Specify the behaviour or output.",
        "suggestions": ["recognise", "identify", "explain", "evaluate"],
    },
)

_UNKNOWN = {"lang": "unknown", "confidence": 0, "scores": {}}


def normalise(text: Any) -> str:
    return re.sub(r"\s+", " ", unicodedata.normalize("NFKC", str(text or ""))).strip()


def tokenize(text: Any) -> list[str]:
    cleaned = re.sub(r"[^\w\s'-]", " ", normalise(text).lower())
    return [t for t in cleaned.split() if t]


def detect_language(text: Any, min_tokens: int = 6) -> dict:
    tokens = tokenize(text)
    if len(tokens) < min_tokens:
        return dict(_UNKNOWN, scores={})

    scores = {lang: sum(1 for t in tokens if t in words) for lang, words in LANGUAGE_STOPWORDS.items()}
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    best_lang, best_score = ranked[0]
    second_score = ranked[1][1] if len(ranked) > 1 else 0
    if best_score < 2:
        return {"lang": "unknown", "confidence": 0, "scores": scores}
    return {"lang": best_lang, "confidence": (best_score - second_score) / max(1, len(tokens)), "scores": scores}


def lint_learning_outcome(text: Any, expected_language: str = "en", allow_unknown_language: bool = True, min_tokens: int = 6) -> dict:
    t = normalise(text)
    issues: list[dict] = []
    if not t:
        return {"issues": issues, "language": dict(_UNKNOWN, scores={})}

    language = detect_language(t, min_tokens=min_tokens)
    expected = (expected_language or "en").lower()
    if language["lang"] != "unknown":
        if language["lang"] != expected:
            issues.append(
                {
                    "id": "language_mismatch",
                    "severity": "warn",
                    "start": 0,
                    "end": 0,
                    "match": "",
                    "message": f'Detected language looks like "{language["lang"]}" (expected "{expected}").',
                    "suggestions": [],
                }
            )
    elif not allow_unknown_language:
        issues.append(
            {
                "id": "language_unknown",
                "severity": "info",
                "start": 0,
                "end": 0,
                "match": "",
                "message": "Could not detect language reliably (short text).",
                "suggestions": [],
            }
        )

    for rule in LO_LINT_RULES:
        for m in rule["pattern"].finditer(t):
            issues.append(
                {
                    "id": rule["id"],
                    "severity": rule["severity"],
                    "start": m.start(),
                    "end": m.end(),
                    "match": m.group(0),
                    "message": rule["message"],
                    "suggestions": list(rule["suggestions"]),
                }
            )
    return {"issues": issues, "language": language}


def lint_learning_outcomes(outcomes: Any, **opts) -> list[dict]:
    return [{"index": idx, "text": text, **lint_learning_outcome(text, **opts)} for idx, text in enumerate(as_list(outcomes))]


def lint_programme(p: Any, expected_language: Optional[str] = "en") -> dict:
    doc = as_dict(p)
    plos = []
    for idx, plo in enumerate(as_list(doc.get("plos"))):
        res = lint_learning_outcome(outcome_text(plo), expected_language=expected_language or "en")
        plos.append({"index": idx, "id": as_dict(plo).get("id"), "text": outcome_text(plo), **res})

    modules = []
    for m in as_list(doc.get("modules")):
        m = as_dict(m)
        mimlos = []
        for idx, mi in enumerate(as_list(m.get("mimlos"))):
            res = lint_learning_outcome(outcome_text(mi), expected_language=expected_language or "en")
            mimlos.append({"index": idx, "id": as_dict(mi).get("id"), "text": outcome_text(mi), **res})
        modules.append({"module_id": m.get("id"), "code": str(m.get("code") or ""), "mimlos": mimlos})

    issue_count = sum(len(r["issues"]) for r in plos) + sum(len(r["issues"]) for mod in modules for r in mod["mimlos"])
    return {"plos": plos, "modules": modules, "issue_count": issue_count}
