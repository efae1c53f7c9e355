"""Schema migration for programme documents.

Old exports are upgraded step by step (v1 -> v2 -> v3 -> v4) before anything
else looks at them. Nothing here mutates the document it is given.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Optional

from .config import CURRENT_SCHEMA_VERSION
from .helpers import as_dict, as_list, to_number, uid


logger = logging.getLogger(__name__)

STANDARD_ID_MAP = {
    "qqi-computing-l6-9": "computing",
    "qqi-professional-awards-l5-9": "professional",
    "qqi-generic-major-masters-l9": "generic-masters",
}

THREAD_NAME_MAP = {
    "Competence-Context": "Context",
    "Competence-Role": "Role",
    "Competence-Learning to Learn": "Learning to Learn",
    "Competence-Insight": "Insight",
    "Know-how & Skill-Range": "Range",
    "Know-how & Skill-Selectivity": "Selectivity",
    "Knowledge-Breadth": "Breadth",
    "Knowledge-Kind": "Kind",
}

CRITERIA_NAME_MAP = {"Know-how & Skill": "Know-How & Skill"}

LEGACY_PROGRAMME_FIELDS = ("deliveryMode", "syncPattern", "deliveryModalities", "standardsCache", "_cachedStandards")


def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"


def schema_version_of(data: dict) -> int:
    return int(to_number(data.get("schemaVersion"))) or 1


def migrate_programme(data: Any) -> dict:
    doc = as_dict(data)
    version = schema_version_of(doc)
    if version >= CURRENT_SCHEMA_VERSION:
        return doc
    migrated = copy.deepcopy(doc)
    if version < 2:
        migrated = migrate_v1_to_v2(migrated)
    if version < 3:
        migrated = migrate_v2_to_v3(migrated)
    if version < 4:
        migrated = migrate_v3_to_v4(migrated)
    return migrated


def migrate_v1_to_v2(data: dict) -> dict:
    logger.info("Migrating programme from schema v1 to v2")
    migrated = {**data, "schemaVersion": 2}

    if isinstance(migrated.get("awardStandardId"), str):
        old_id = migrated.pop("awardStandardId") or ""
        old_name = migrated.pop("awardStandardName", "") or ""
        migrated["awardStandardIds"] = [old_id] if old_id else []
        migrated["awardStandardNames"] = [old_name] if old_name else []

    for key in ("awardStandardIds", "awardStandardNames", "versions"):
        if not isinstance(migrated.get(key), list):
            migrated[key] = []

    for v in migrated["versions"]:
        if not isinstance(v, dict):
            continue
        legacy = v.get("deliveryModalities")
        if isinstance(legacy, list) and not v.get("deliveryModality"):
            v["deliveryModality"] = (legacy[0] if legacy else None) or "F2F"
            del v["deliveryModalities"]

    for key in LEGACY_PROGRAMME_FIELDS:
        migrated.pop(key, None)

    migrated["updatedAt"] = _now()
    return migrated


def _migrate_mapping(mapping: dict, default_standard_id: Optional[str]) -> dict:
    out = dict(mapping)
    sid = out.get("standardId")
    if sid and sid in STANDARD_ID_MAP:
        out["standardId"] = STANDARD_ID_MAP[sid]
    if not out.get("standardId") and default_standard_id:
        out["standardId"] = default_standard_id
    criteria = out.get("criteria")
    if criteria and criteria in CRITERIA_NAME_MAP:
        out["criteria"] = CRITERIA_NAME_MAP[criteria]
    thread = out.get("thread")
    if thread and thread in THREAD_NAME_MAP:
        out["thread"] = THREAD_NAME_MAP[thread]
    return out


def migrate_v2_to_v3(data: dict) -> dict:
    logger.info("Migrating programme from schema v2 to v3")
    migrated = {**data, "schemaVersion": 3}

    if isinstance(migrated.get("awardStandardIds"), list):
        migrated["awardStandardIds"] = [STANDARD_ID_MAP.get(x, x) for x in migrated["awardStandardIds"]]
    default_standard_id = (as_list(migrated.get("awardStandardIds")) or [None])[0]

    if isinstance(migrated.get("plos"), list):
        plos = []
        for plo in migrated["plos"]:
            if isinstance(plo, dict) and isinstance(plo.get("standardMappings"), list):
                mappings = [_migrate_mapping(m, default_standard_id) for m in plo["standardMappings"] if isinstance(m, dict)]
                plo = {**plo, "standardMappings": mappings}
            plos.append(plo)
        migrated["plos"] = plos

    migrated["updatedAt"] = _now()
    return migrated


def migrate_v3_to_v4(data: dict) -> dict:
    logger.info("Migrating programme from schema v3 to v4")
    migrated = {**data, "schemaVersion": 4}

    legacy = migrated.get("ploToModules")
    if isinstance(legacy, dict):
        modules = {m.get("id"): m for m in as_list(migrated.get("modules")) if isinstance(m, dict)}
        plo_to_mimlos: dict[str, list[str]] = {}
        for plo_id, module_ids in legacy.items():
            mimlo_ids: list[str] = []
            for module_id in as_list(module_ids):
                mod = modules.get(module_id)
                if not mod:
                    continue
                for mimlo in as_list(mod.get("mimlos")):
                    mid = as_dict(mimlo).get("id")
                    if mid and mid not in mimlo_ids:
                        mimlo_ids.append(mid)
            if mimlo_ids:
                plo_to_mimlos[plo_id] = mimlo_ids
        migrated["ploToMimlos"] = plo_to_mimlos
        del migrated["ploToModules"]

    if not migrated.get("ploToMimlos"):
        migrated["ploToMimlos"] = {}

    migrated["updatedAt"] = _now()
    return migrated


def normalize_outcomes(programme: dict) -> dict:
    p = {**programme}
    plos = as_list(p.get("plos"))
    if plos and isinstance(plos[0], str):
        p["plos"] = [{"id": uid("plo"), "text": str(t or ""), "standardMappings": []} for t in plos]
    modules = []
    for m in as_list(p.get("modules")):
        if isinstance(m, dict):
            mimlos = as_list(m.get("mimlos"))
            if mimlos and isinstance(mimlos[0], str):
                m = {**m, "mimlos": [{"id": uid("mimlo"), "text": str(t or "")} for t in mimlos]}
            elif "mimlos" not in m:
                m = {**m, "mimlos": []}
        modules.append(m)
    if "modules" in p:
        p["modules"] = modules
    return p


def _level_data(standard: Any, nfq_level: Any) -> Optional[dict]:
    if not standard:
        return None
    level = to_number(nfq_level)
    for row in as_list(as_dict(standard).get("nfqLevels")):
        if as_dict(row).get("level") == level:
            return row
    return None


def _indicator_group(level_data: Optional[dict], criteria: Any) -> Optional[dict]:
    for group in as_list(as_dict(level_data).get("indicatorGroups")):
        if as_dict(group).get("name") == criteria:
            return group
    return None


def get_standard_indicators(standard: Any, nfq_level: Any) -> list[dict]:
    level_data = _level_data(standard, nfq_level)
    if not level_data:
        return []
    out = []
    for group in as_list(level_data.get("indicatorGroups")):
        for indicator in as_list(as_dict(group).get("indicators")):
            out.append(
                {
                    "criteria": group.get("name"),
                    "thread": indicator.get("name"),
                    "descriptor": indicator.get("descriptor"),
                    "descriptorText": indicator.get("descriptorText"),
                    "id": indicator.get("id"),
                    "awardStandardId": standard.get("id"),
                }
            )
    return out


def get_criteria_list(standard: Any, nfq_level: Any) -> list[str]:
    level_data = _level_data(standard, nfq_level)
    return [as_dict(g).get("name") for g in as_list(as_dict(level_data).get("indicatorGroups"))]


def get_thread_list(standard: Any, nfq_level: Any, criteria: Optional[str]) -> list[str]:
    if not criteria:
        return []
    group = _indicator_group(_level_data(standard, nfq_level), criteria)
    return [as_dict(i).get("name") for i in as_list(as_dict(group).get("indicators"))]


def get_descriptor(standard: Any, nfq_level: Any, criteria: Optional[str], thread: Optional[str]) -> str:
    if not criteria or not thread:
        return ""
    group = _indicator_group(_level_data(standard, nfq_level), criteria)
    for indicator in as_list(as_dict(group).get("indicators")):
        if as_dict(indicator).get("name") == thread:
            return indicator.get("descriptor") or ""
    return ""


def validate_standard_mappings(programme: Any, standards: Any) -> dict:
    p = as_dict(programme)
    errors: list[dict] = []
    warnings: list[dict] = []
    standard_by_id = {as_dict(s).get("id"): s for s in as_list(standards)}
    nfq_level = p.get("nfqLevel")

    for plo_idx, plo in enumerate(as_list(p.get("plos"))):
        plo = as_dict(plo)
        for map_idx, mapping in enumerate(as_list(plo.get("standardMappings"))):
            mapping = as_dict(mapping)
            ref = {"ploId": plo.get("id"), "ploIndex": plo_idx, "mappingIndex": map_idx}
            standard_id = mapping.get("standardId")
            criteria = mapping.get("criteria")
            thread = mapping.get("thread")

            standard = standard_by_id.get(standard_id)
            if not standard:
                errors.append({**ref, "message": f"Standard '{standard_id}' not found"})
                continue
            if not nfq_level:
                warnings.append({**ref, "message": "Programme NFQ level not set, cannot validate mapping"})
                continue
            level_data = _level_data(standard, nfq_level)
            if not level_data:
                warnings.append({**ref, "message": f"Standard '{standard_id}' has no data for NFQ level {nfq_level}"})
                continue
            group = _indicator_group(level_data, criteria)
            if not group:
                errors.append({**ref, "message": f"Criteria '{criteria}' not found in standard '{standard_id}' at NFQ level {nfq_level}"})
                continue
            if not any(as_dict(i).get("name") == thread for i in as_list(group.get("indicators"))):
                errors.append({**ref, "message": f"Thread '{thread}' not found under criteria '{criteria}' in standard '{standard_id}'"})

    return {"errors": errors, "warnings": warnings, "is_valid": not errors}
