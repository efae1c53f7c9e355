"""Programme state: document factories, wizard navigation and persistence.

The programme document is owned by whoever holds it (an ``AppState`` or a
request handler); the validation engine only ever reads it.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select

from .config import CURRENT_SCHEMA_VERSION, SAVE_DEBOUNCE_SECONDS
from .db import ProgrammeRecord, SessionLocal
from .helpers import as_dict, as_list, default_pattern_for, uid
from .migrate import migrate_programme, normalize_outcomes
from .validation import completion_percent


logger = logging.getLogger(__name__)

STEPS = (
    {"key": "identity", "title": "Identity"},
    {"key": "outcomes", "title": "PLOs"},
    {"key": "versions", "title": "Programme Versions"},
    {"key": "stages", "title": "Stage Structure"},
    {"key": "structure", "title": "Credits & Modules"},
    {"key": "electives", "title": "Electives"},
    {"key": "mimlos", "title": "MIMLOs"},
    {"key": "effort-hours", "title": "Effort Hours"},
    {"key": "assessments", "title": "Assessments"},
    {"key": "reading-lists", "title": "Reading Lists"},
    {"key": "schedule", "title": "Programme Schedule"},
    {"key": "mapping", "title": "Mapping"},
    {"key": "traceability", "title": "Traceability"},
    {"key": "snapshot", "title": "QQI Snapshot"},
)

SCHOOL_OPTIONS = ("Computing", "Business", "Psychology", "Education")

AWARD_TYPE_OPTIONS = (
    "Higher Certificate",
    "Ordinary Bachelor Degree",
    "Honours Bachelor Degree",
    "Higher Diploma",
    "Postgraduate Diploma",
    "Masters",
    "Micro-credential",
    "Other",
)

DELIVERY_MODALITIES = ("F2F", "BLENDED", "ONLINE")
PROCTORED_OPTIONS = ("TBC", "YES", "NO")

PROGRAMME_OWNER = "PROGRAMME_OWNER"
MODULE_EDITOR = "MODULE_EDITOR"
MODULE_EDITOR_STEPS = frozenset({"mimlos", "effort-hours", "assessments", "reading-lists", "schedule", "mapping", "traceability", "snapshot"})
MODULE_EDITOR_LANDING_STEPS = frozenset({"mimlos", "mapping", "snapshot", "assessments"})


def default_programme() -> dict:
    return {
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "id": "current",
        "title": "",
        "awardType": "",
        "awardTypeIsOther": False,
        "nfqLevel": None,
        "school": "",
        "awardStandardIds": [],
        "awardStandardNames": [],
        "totalCredits": 0,
        "modules": [],
        "plos": [],
        "ploToMimlos": {},
        "electiveDefinitions": [],
        "versions": [],
        "updatedAt": None,
    }


def default_version() -> dict:
    return {
        "id": uid("ver"),
        "label": "Full-time",
        "code": "FT",
        "duration": "",
        "intakes": [],
        "targetCohortSize": 0,
        "numberOfGroups": 0,
        "deliveryModality": "F2F",
        "deliveryPatterns": {},
        "deliveryNotes": "",
        "onlineProctoredExams": "TBC",
        "onlineProctoredExamsNotes": "",
        "stages": [],
    }


def default_stage(sequence: int = 1) -> dict:
    return {
        "id": uid("stage"),
        "name": f"Stage {sequence}",
        "sequence": sequence,
        "creditsTarget": 0,
        "exitAward": {"enabled": False, "awardTitle": ""},
        "modules": [],
    }


def default_module() -> dict:
    return {
        "id": uid("mod"),
        "code": "",
        "title": "New module",
        "credits": 0,
        "isElective": False,
        "mimlos": [],
        "assessments": [],
        "effortHours": {},
        "readingList": [],
    }


def default_plo() -> dict:
    return {"id": uid("plo"), "text": "", "standardMappings": []}


def default_elective_definition() -> dict:
    return {"id": uid("edef"), "name": "", "code": "", "credits": 0, "groups": []}


def default_elective_group() -> dict:
    return {"id": uid("egrp"), "name": "", "code": "", "moduleIds": []}


def prepare_loaded(raw: Any) -> dict:
    """Migrate a stored or imported document and make it ready for editing.

    A programme without versions gets a default one, seeded from a legacy
    programme-level ``deliveryPatterns`` block when present.
    """
    migrated = normalize_outcomes(migrate_programme(raw))
    p = {**default_programme(), **migrated}
    if not as_list(p.get("versions")):
        v = default_version()
        legacy_patterns = p.get("deliveryPatterns")
        if isinstance(legacy_patterns, dict):
            v["deliveryPatterns"] = dict(legacy_patterns)
        if v["deliveryModality"] and not v["deliveryPatterns"].get(v["deliveryModality"]):
            v["deliveryPatterns"][v["deliveryModality"]] = default_pattern_for(v["deliveryModality"])
        p["versions"] = [v]
    return p


def active_steps(programme: dict) -> list[dict]:
    if as_dict(programme).get("mode") == MODULE_EDITOR:
        return [dict(s) for s in STEPS if s["key"] in MODULE_EDITOR_STEPS]
    return [dict(s) for s in STEPS]


def editable_module_ids(programme: dict) -> list[str]:
    p = as_dict(programme)
    all_ids = [m.get("id") for m in as_list(p.get("modules")) if isinstance(m, dict)]
    if p.get("mode") == MODULE_EDITOR:
        assigned = as_list(as_dict(p.get("moduleEditor")).get("assignedModuleIds"))
        return list(assigned) if assigned else all_ids
    return all_ids


def apply_mode(programme: dict, mode: str, assigned_module_ids: Optional[list[str]] = None) -> None:
    if mode not in (PROGRAMME_OWNER, MODULE_EDITOR):
        raise ValueError("Invalid mode. Use PROGRAMME_OWNER or MODULE_EDITOR")
    programme["mode"] = mode
    if mode == MODULE_EDITOR:
        editor = as_dict(programme.get("moduleEditor")) or {"assignedModuleIds": []}
        editor["assignedModuleIds"] = list(assigned_module_ids or []) or [m.get("id") for m in as_list(programme.get("modules")) if isinstance(m, dict)]
        editor.setdefault("locks", {"programme": True, "modulesMeta": True, "versions": True, "plos": True})
        programme["moduleEditor"] = editor
    else:
        programme.pop("moduleEditor", None)


@dataclass
class AppState:
    programme: dict = field(default_factory=default_programme)
    step_index: int = 0
    saving: bool = False
    last_saved: Optional[str] = None
    selected_version_id: Optional[str] = None
    selected_module_id: Optional[str] = None

    def active_steps(self) -> list[dict]:
        return active_steps(self.programme)

    @property
    def current_step(self) -> str:
        return STEPS[self.step_index]["key"]

    def go_to_step(self, key: str) -> bool:
        for idx, step in enumerate(STEPS):
            if step["key"] == key and any(s["key"] == key for s in self.active_steps()):
                self.step_index = idx
                return True
        return False

    def navigate_to_flag(self, flag: dict) -> bool:
        return self.go_to_step(str(as_dict(flag).get("step") or ""))

    def _move(self, delta: int) -> str:
        keys = [s["key"] for s in self.active_steps()]
        current = self.current_step
        pos = keys.index(current) if current in keys else 0
        target = keys[max(0, min(len(keys) - 1, pos + delta))]
        self.go_to_step(target)
        return target

    def next_step(self) -> str:
        return self._move(1)

    def prev_step(self) -> str:
        return self._move(-1)

    def get_version_by_id(self, version_id: str) -> Optional[dict]:
        return find_by_id(self.programme.get("versions"), version_id)

    def selected_module(self) -> str:
        ids = editable_module_ids(self.programme)
        if not ids:
            return ""
        if self.selected_module_id not in ids:
            self.selected_module_id = ids[0]
        return self.selected_module_id

    def set_mode(self, mode: str, assigned_module_ids: Optional[list[str]] = None) -> None:
        apply_mode(self.programme, mode, assigned_module_ids)
        if mode == MODULE_EDITOR and self.current_step not in MODULE_EDITOR_LANDING_STEPS:
            self.go_to_step("mimlos")

    def load(self, raw: Any) -> None:
        self.programme = prepare_loaded(raw)
        versions = self.programme["versions"]
        if not self.selected_version_id and versions:
            self.selected_version_id = versions[0].get("id")
        self.last_saved = self.programme.get("updatedAt")

    def reset(self) -> None:
        self.programme = default_programme()
        self.step_index = 0
        self.selected_version_id = None
        self.selected_module_id = None


def find_by_id(items: Any, item_id: Any) -> Optional[dict]:
    for item in as_list(items):
        if isinstance(item, dict) and item.get("id") == item_id:
            return item
    return None


def _overlay(base: dict, fields: Optional[dict]) -> dict:
    base.update({k: v for k, v in (fields or {}).items() if k != "id" and v is not None})
    return base


def add_module(p: dict, fields: Optional[dict] = None) -> dict:
    mod = _overlay(default_module(), fields)
    p.setdefault("modules", []).append(mod)
    return mod


def remove_module(p: dict, module_id: str) -> bool:
    mod = find_by_id(p.get("modules"), module_id)
    if not mod:
        return False
    p["modules"] = [m for m in as_list(p.get("modules")) if m is not mod]
    mimlo_ids = {as_dict(x).get("id") for x in as_list(mod.get("mimlos"))}
    mapping = as_dict(p.get("ploToMimlos"))
    p["ploToMimlos"] = {plo_id: [x for x in as_list(ids) if x not in mimlo_ids] for plo_id, ids in mapping.items()}
    for d in as_list(p.get("electiveDefinitions")):
        for g in as_list(as_dict(d).get("groups")):
            if isinstance(g, dict):
                g["moduleIds"] = [x for x in as_list(g.get("moduleIds")) if x != module_id]
    for v in as_list(p.get("versions")):
        for s in as_list(as_dict(v).get("stages")):
            if isinstance(s, dict):
                s["modules"] = [x for x in as_list(s.get("modules")) if as_dict(x).get("moduleId") != module_id]
    editor = p.get("moduleEditor")
    if isinstance(editor, dict):
        editor["assignedModuleIds"] = [x for x in as_list(editor.get("assignedModuleIds")) if x != module_id]
    return True


def add_plo(p: dict, fields: Optional[dict] = None) -> dict:
    plo = _overlay(default_plo(), fields)
    p.setdefault("plos", []).append(plo)
    return plo


def remove_plo(p: dict, plo_id: str) -> bool:
    if not find_by_id(p.get("plos"), plo_id):
        return False
    p["plos"] = [o for o in as_list(p.get("plos")) if as_dict(o).get("id") != plo_id]
    as_dict(p.get("ploToMimlos")).pop(plo_id, None)
    return True


def set_plo_mapping(p: dict, plo_id: str, mimlo_ids: list[str]) -> Optional[list[str]]:
    if not find_by_id(p.get("plos"), plo_id):
        return None
    known = {as_dict(x).get("id") for m in as_list(p.get("modules")) for x in as_list(as_dict(m).get("mimlos"))}
    kept = [x for x in dict.fromkeys(mimlo_ids) if x in known]
    if not isinstance(p.get("ploToMimlos"), dict):
        p["ploToMimlos"] = {}
    p["ploToMimlos"][plo_id] = kept
    return kept


def add_version(p: dict, fields: Optional[dict] = None) -> dict:
    v = _overlay(default_version(), fields)
    mod = v.get("deliveryModality")
    if mod and not as_dict(v.get("deliveryPatterns")).get(mod):
        v["deliveryPatterns"] = {**as_dict(v.get("deliveryPatterns")), mod: default_pattern_for(mod)}
    p.setdefault("versions", []).append(v)
    return v


def remove_version(p: dict, version_id: str) -> bool:
    if not find_by_id(p.get("versions"), version_id):
        return False
    p["versions"] = [v for v in as_list(p.get("versions")) if as_dict(v).get("id") != version_id]
    return True


def add_stage(p: dict, version_id: str, fields: Optional[dict] = None) -> Optional[dict]:
    v = find_by_id(p.get("versions"), version_id)
    if not v:
        return None
    stages = v.setdefault("stages", [])
    stage = _overlay(default_stage(len(stages) + 1), fields)
    stages.append(stage)
    return stage


def remove_stage(p: dict, version_id: str, stage_id: str) -> bool:
    v = find_by_id(p.get("versions"), version_id)
    if not v or not find_by_id(v.get("stages"), stage_id):
        return False
    v["stages"] = [s for s in as_list(v.get("stages")) if as_dict(s).get("id") != stage_id]
    return True


def add_elective_definition(p: dict, fields: Optional[dict] = None) -> dict:
    d = _overlay(default_elective_definition(), fields)
    p.setdefault("electiveDefinitions", []).append(d)
    return d


def remove_elective_definition(p: dict, definition_id: str) -> bool:
    if not find_by_id(p.get("electiveDefinitions"), definition_id):
        return False
    p["electiveDefinitions"] = [d for d in as_list(p.get("electiveDefinitions")) if as_dict(d).get("id") != definition_id]
    return True


def add_elective_group(p: dict, definition_id: str, fields: Optional[dict] = None) -> Optional[dict]:
    d = find_by_id(p.get("electiveDefinitions"), definition_id)
    if not d:
        return None
    g = _overlay(default_elective_group(), fields)
    d.setdefault("groups", []).append(g)
    return g


def remove_elective_group(p: dict, definition_id: str, group_id: str) -> bool:
    d = find_by_id(p.get("electiveDefinitions"), definition_id)
    if not d or not find_by_id(d.get("groups"), group_id):
        return False
    d["groups"] = [g for g in as_list(d.get("groups")) if as_dict(g).get("id") != group_id]
    return True


class ProgrammeStore:
    def __init__(self, session_factory=SessionLocal, debounce_seconds: float = SAVE_DEBOUNCE_SECONDS):
        self.session_factory = session_factory
        self.debounce_seconds = debounce_seconds
        self._timers: dict[str, threading.Timer] = {}
        self._pending: dict[str, tuple[dict, Optional[Callable[[dict], None]]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _write(row: ProgrammeRecord, doc: dict) -> None:
        row.title = str(doc.get("title") or "")
        row.schema_version = int(doc.get("schemaVersion") or CURRENT_SCHEMA_VERSION)
        row.mode = str(doc.get("mode") or PROGRAMME_OWNER)
        row.document_json = json.dumps(doc)
        row.updated_at = datetime.utcnow()

    def create(self, doc: Optional[dict] = None) -> tuple[str, dict]:
        body = {**default_programme(), **normalize_outcomes(migrate_programme(doc or {}))}
        with self.session_factory() as db:
            row = ProgrammeRecord()
            db.add(row)
            db.flush()
            body["id"] = row.id
            self._write(row, body)
            db.commit()
            logger.info("Created programme %s", row.id)
            return row.id, body

    def import_document(self, raw: Any) -> tuple[str, dict]:
        logger.info("Importing programme document (schema v%s)", as_dict(raw).get("schemaVersion") or 1)
        doc = prepare_loaded(raw)
        doc.pop("id", None)
        return self.create(doc)

    def get(self, programme_id: str) -> Optional[dict]:
        with self.session_factory() as db:
            row = db.get(ProgrammeRecord, programme_id)
            if not row:
                return None
            return json.loads(row.document_json or "{}")

    def list(self) -> list[dict]:
        out = []
        with self.session_factory() as db:
            for row in db.scalars(select(ProgrammeRecord).order_by(ProgrammeRecord.updated_at.desc())).all():
                doc = json.loads(row.document_json or "{}")
                out.append(
                    {
                        "id": row.id,
                        "title": row.title,
                        "schema_version": row.schema_version,
                        "mode": row.mode,
                        "completion": completion_percent(doc),
                        "updated_at": row.updated_at.isoformat() + "Z" if row.updated_at else None,
                    }
                )
        return out

    def save(self, programme_id: str, doc: dict) -> Optional[dict]:
        with self.session_factory() as db:
            row = db.get(ProgrammeRecord, programme_id)
            if not row:
                return None
            doc["id"] = programme_id
            doc["updatedAt"] = datetime.utcnow().isoformat() + "Z"
            self._write(row, doc)
            db.commit()
        logger.debug("Saved programme %s", programme_id)
        return doc

    def delete(self, programme_id: str) -> bool:
        self._cancel(programme_id)
        with self.session_factory() as db:
            row = db.get(ProgrammeRecord, programme_id)
            if not row:
                return False
            db.delete(row)
            db.commit()
        logger.info("Deleted programme %s", programme_id)
        return True

    def reset(self, programme_id: str) -> Optional[dict]:
        self._cancel(programme_id)
        return self.save(programme_id, default_programme())

    def save_debounced(self, programme_id: str, doc: dict, on_saved: Optional[Callable[[dict], None]] = None) -> None:
        with self._lock:
            pending = self._timers.pop(programme_id, None)
            if pending:
                pending.cancel()
            self._pending[programme_id] = (copy.deepcopy(doc), on_saved)
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(programme_id,))
            timer.daemon = True
            self._timers[programme_id] = timer
            timer.start()

    def _fire(self, programme_id: str) -> None:
        with self._lock:
            self._timers.pop(programme_id, None)
            entry = self._pending.pop(programme_id, None)
        if not entry:
            return
        doc, on_saved = entry
        saved = self.save(programme_id, doc)
        if saved is not None and on_saved:
            on_saved(saved)

    def _cancel(self, programme_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(programme_id, None)
            if timer:
                timer.cancel()
            self._pending.pop(programme_id, None)

    def flush(self) -> None:
        with self._lock:
            ids = list(self._pending)
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        for programme_id in ids:
            self._fire(programme_id)
