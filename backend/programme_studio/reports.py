"""Assessment reports built from a programme document."""

from __future__ import annotations

from typing import Any, Optional

from .helpers import as_dict, as_list, fmt_num, text_or, to_number


ASSESSMENT_REPORT_TYPES = (
    {"id": "byStageType", "label": "By stage: assessment types + weighting"},
    {"id": "byModule", "label": "By module: assessment types + weighting"},
    {"id": "coverage", "label": "MIMLO coverage (unassessed outcomes)"},
)


def _version_or_first(p: dict, version_id: Optional[str]) -> Optional[dict]:
    versions = [v for v in as_list(p.get("versions")) if isinstance(v, dict)]
    for v in versions:
        if v.get("id") == version_id:
            return v
    return versions[0] if versions else None


def _type_mix(assessments: list) -> list[dict]:
    totals: dict[str, dict] = {}
    for a in assessments:
        a = as_dict(a)
        kind = text_or(a.get("type"), "Unspecified")
        rec = totals.setdefault(kind, {"type": kind, "count": 0, "weight": 0})
        rec["count"] += 1
        rec["weight"] += to_number(a.get("weighting"))
    return sorted(totals.values(), key=lambda r: r["weight"], reverse=True)


def report_by_stage_type(p: dict, version_id: Optional[str] = None) -> dict:
    v = _version_or_first(p, version_id)
    if not v:
        return {"report": "byStageType", "version_id": None, "stages": [], "message": "No versions found."}
    modules = {m.get("id"): m for m in as_list(p.get("modules")) if isinstance(m, dict)}
    stages = []
    for s in as_list(v.get("stages")):
        s = as_dict(s)
        assessments = []
        for ref in as_list(s.get("modules")):
            mod = modules.get(as_dict(ref).get("moduleId"))
            if mod:
                assessments.extend(as_list(mod.get("assessments")))
        stages.append({"stage_id": s.get("id"), "name": text_or(s.get("name"), "Stage"), "types": _type_mix(assessments)})
    return {"report": "byStageType", "version_id": v.get("id"), "stages": stages}


def report_by_module(p: dict) -> dict:
    rows = []
    for m in as_list(p.get("modules")):
        m = as_dict(m)
        mix = _type_mix(as_list(m.get("assessments")))
        summary = "; ".join(f"{r['type']} ({r['count']}, {fmt_num(r['weight'])}%)" for r in mix)
        rows.append(
            {
                "module_id": m.get("id"),
                "code": str(m.get("code") or ""),
                "title": str(m.get("title") or ""),
                "types": mix,
                "summary": summary or "—",
            }
        )
    return {"report": "byModule", "modules": rows}


def report_coverage(p: dict) -> dict:
    rows = []
    for m in as_list(p.get("modules")):
        m = as_dict(m)
        assessed = {mid for a in as_list(m.get("assessments")) for mid in as_list(as_dict(a).get("mimloIds"))}
        unassessed = []
        for mi in as_list(m.get("mimlos")):
            if isinstance(mi, str):
                unassessed.append({"id": None, "text": mi})
            elif isinstance(mi, dict) and mi.get("id") not in assessed:
                unassessed.append({"id": mi.get("id"), "text": str(mi.get("text") or "")})
        rows.append(
            {
                "module_id": m.get("id"),
                "code": str(m.get("code") or ""),
                "title": str(m.get("title") or ""),
                "unassessed": unassessed,
                "all_assessed": not unassessed,
            }
        )
    return {"report": "coverage", "modules": rows}


def build_assessment_report(p: Any, report_id: str, version_id: Optional[str] = None) -> dict:
    doc = as_dict(p)
    if report_id == "byStageType":
        return report_by_stage_type(doc, version_id)
    if report_id == "byModule":
        return report_by_module(doc)
    if report_id == "coverage":
        return report_coverage(doc)
    raise ValueError(f"Unknown report '{report_id}'")
