from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from itsdangerous import BadSignature, URLSafeSerializer
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import CORS_ORIGINS, SESSION_SALT, SESSION_SECRET
from .db import AuditLog, Base, SessionLocal, User, engine
from .exporters import export_filename, export_gate, export_json, import_json
from .helpers import SNAPSHOT_PATTERN_DEFAULTS, default_pattern_for
from .lint import lint_programme
from .logging_config import setup_logging
from .migrate import migrate_programme, normalize_outcomes, validate_standard_mappings
from .reports import ASSESSMENT_REPORT_TYPES, build_assessment_report
from .store import (
    AWARD_TYPE_OPTIONS,
    DELIVERY_MODALITIES,
    PROCTORED_OPTIONS,
    SCHOOL_OPTIONS,
    STEPS,
    ProgrammeStore,
    active_steps,
    add_elective_definition,
    add_elective_group,
    add_module,
    add_plo,
    add_stage,
    add_version,
    apply_mode,
    default_programme,
    remove_elective_definition,
    remove_elective_group,
    remove_module,
    remove_plo,
    remove_stage,
    remove_version,
    set_plo_mapping,
)
from .validation import summarize


logger = setup_logging(__name__)
serializer = URLSafeSerializer(SESSION_SECRET, salt=SESSION_SALT)
store = ProgrammeStore()

app = FastAPI(title="Programme Design Studio")
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class LoginIn(BaseModel):
    username: str
    password: str


class ProgrammeIn(CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")
    schema_version: Optional[int] = Field(None, alias="schemaVersion")
    title: Optional[str] = None
    award_type: Optional[str] = Field(None, alias="awardType")
    award_type_is_other: Optional[bool] = Field(None, alias="awardTypeIsOther")
    nfq_level: Optional[Any] = Field(None, alias="nfqLevel")
    school: Optional[str] = None
    total_credits: Optional[float] = Field(None, alias="totalCredits")
    modules: Optional[list[dict]] = None
    plos: Optional[list[Any]] = None
    plo_to_mimlos: Optional[dict[str, list[str]]] = Field(None, alias="ploToMimlos")
    elective_definitions: Optional[list[dict]] = Field(None, alias="electiveDefinitions")
    versions: Optional[list[dict]] = None


class ModuleIn(CamelModel):
    code: Optional[str] = None
    title: Optional[str] = None
    credits: Optional[float] = None
    is_elective: Optional[bool] = Field(None, alias="isElective")
    mimlos: Optional[list[Any]] = None
    assessments: Optional[list[dict]] = None


class PloIn(CamelModel):
    text: Optional[str] = None
    standard_mappings: Optional[list[dict]] = Field(None, alias="standardMappings")


class MappingIn(CamelModel):
    mimlo_ids: list[str] = Field(default_factory=list, alias="mimloIds")


class VersionIn(CamelModel):
    label: Optional[str] = None
    code: Optional[str] = None
    duration: Optional[str] = None
    target_cohort_size: Optional[int] = Field(None, alias="targetCohortSize")
    number_of_groups: Optional[int] = Field(None, alias="numberOfGroups")
    delivery_modality: Optional[str] = Field(None, alias="deliveryModality")
    delivery_patterns: Optional[dict[str, dict]] = Field(None, alias="deliveryPatterns")
    online_proctored_exams: Optional[str] = Field(None, alias="onlineProctoredExams")
    online_proctored_exams_notes: Optional[str] = Field(None, alias="onlineProctoredExamsNotes")


class StageIn(CamelModel):
    name: Optional[str] = None
    sequence: Optional[int] = None
    credits_target: Optional[float] = Field(None, alias="creditsTarget")
    exit_award: Optional[dict] = Field(None, alias="exitAward")
    modules: Optional[list[dict]] = None


class ElectiveDefinitionIn(CamelModel):
    name: Optional[str] = None
    code: Optional[str] = None
    credits: Optional[float] = None


class ElectiveGroupIn(CamelModel):
    name: Optional[str] = None
    code: Optional[str] = None
    module_ids: Optional[list[str]] = Field(None, alias="moduleIds")


class ModeIn(CamelModel):
    mode: str
    assigned_module_ids: Optional[list[str]] = Field(None, alias="assignedModuleIds")


class StandardsCheckIn(BaseModel):
    standards: list[dict] = Field(default_factory=list)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(session_token: str = Query(...), db: Session = Depends(get_db)) -> User:
    try:
        payload = serializer.loads(session_token)
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    user = db.get(User, payload["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def require_owner(user: User = Depends(current_user)) -> User:
    if user.role != "OWNER":
        raise HTTPException(status_code=403, detail="OWNER role required")
    return user


def write_audit(db: Session, user: User, action: str, entity: str, entity_id: str, payload: Optional[str] = None) -> None:
    db.add(AuditLog(actor_user_id=user.id, action=action, entity_type=entity, entity_id=entity_id, payload=payload))
    db.commit()


def load_programme(programme_id: str) -> dict:
    doc = store.get(programme_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Programme not found")
    return doc


def commit_programme(db: Session, user: User, programme_id: str, doc: dict, action: str, entity: str, entity_id: str, payload: Any = None) -> dict:
    saved = store.save(programme_id, doc)
    if saved is None:
        raise HTTPException(status_code=404, detail="Programme not found")
    write_audit(db, user, action, entity, entity_id, json.dumps(payload) if payload is not None else None)
    return {"programme": saved, "summary": summarize(saved)}


def upgrade(doc: dict) -> dict:
    return normalize_outcomes(migrate_programme(doc))


@app.on_event("startup")
def startup():
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        if not db.scalar(select(User).where(User.username == "owner_admin")):
            db.add(User(username="owner_admin", password="owner_admin", role="OWNER"))
            db.add(User(username="reviewer", password="reviewer", role="VIEWER"))
            db.commit()
            logger.info("Seeded default users")


@app.on_event("shutdown")
def shutdown():
    store.flush()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.username == payload.username))
    if not user or user.password != payload.password:
        logger.warning("Failed login for %s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"session_token": serializer.dumps({"user_id": user.id}), "role": user.role}


@app.get("/meta/steps")
def meta_steps():
    return {
        "steps": list(STEPS),
        "school_options": list(SCHOOL_OPTIONS),
        "award_type_options": list(AWARD_TYPE_OPTIONS),
        "delivery_modalities": list(DELIVERY_MODALITIES),
        "proctored_options": list(PROCTORED_OPTIONS),
        "default_patterns": {m: default_pattern_for(m) for m in DELIVERY_MODALITIES},
        "snapshot_patterns": SNAPSHOT_PATTERN_DEFAULTS,
        "report_types": list(ASSESSMENT_REPORT_TYPES),
    }


@app.post("/validate")
def validate_document(payload: dict[str, Any]):
    return summarize(upgrade(payload))


@app.get("/programmes")
def list_programmes(_: User = Depends(current_user)):
    return store.list()


@app.post("/programmes")
def create_programme(payload: Optional[ProgrammeIn] = None, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    programme_id, doc = store.create(payload.document() if payload else None)
    write_audit(db, user, "CREATE", "Programme", programme_id, doc.get("title") or None)
    return {"id": programme_id, "programme": doc, "summary": summarize(doc)}


@app.post("/programmes/import")
async def import_programme(file: UploadFile = File(...), db: Session = Depends(get_db), user: User = Depends(require_owner)):
    result = import_json(await file.read())
    if not result["success"]:
        raise HTTPException(status_code=400, detail=f"Import failed: {result['error']}")
    programme_id, doc = store.import_document(result["programme"])
    write_audit(db, user, "IMPORT", "Programme", programme_id, file.filename)
    return {"id": programme_id, "programme": doc, "summary": summarize(doc)}


@app.get("/programmes/{programme_id}")
def get_programme(programme_id: str, _: User = Depends(current_user)):
    return load_programme(programme_id)


@app.put("/programmes/{programme_id}")
def replace_programme(programme_id: str, payload: ProgrammeIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    load_programme(programme_id)
    doc = {**default_programme(), **upgrade(payload.document())}
    return commit_programme(db, user, programme_id, doc, "UPDATE", "Programme", programme_id)


@app.delete("/programmes/{programme_id}")
def delete_programme(programme_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    if not store.delete(programme_id):
        raise HTTPException(status_code=404, detail="Programme not found")
    write_audit(db, user, "DELETE", "Programme", programme_id)
    return {"status": "deleted"}


@app.post("/programmes/{programme_id}/reset")
def reset_programme(programme_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    load_programme(programme_id)
    return commit_programme(db, user, programme_id, default_programme(), "RESET", "Programme", programme_id)


@app.get("/programmes/{programme_id}/validation")
def programme_validation(programme_id: str, _: User = Depends(current_user)):
    return summarize(load_programme(programme_id))


@app.get("/programmes/{programme_id}/export/json")
def export_programme_json(programme_id: str, _: User = Depends(current_user)):
    doc = load_programme(programme_id)
    return Response(
        content=export_json(doc),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(doc)}"'},
    )


@app.get("/programmes/{programme_id}/export/gate")
def programme_export_gate(programme_id: str, _: User = Depends(current_user)):
    return export_gate(load_programme(programme_id))


@app.post("/programmes/{programme_id}/modules")
def create_module(programme_id: str, payload: ModuleIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    mod = add_module(doc, payload.document())
    return commit_programme(db, user, programme_id, doc, "CREATE", "Module", mod["id"], payload.document())


@app.delete("/programmes/{programme_id}/modules/{module_id}")
def delete_module(programme_id: str, module_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_module(doc, module_id):
        raise HTTPException(status_code=404, detail="Module not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "Module", module_id)


@app.post("/programmes/{programme_id}/plos")
def create_plo(programme_id: str, payload: PloIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    plo = add_plo(doc, payload.document())
    return commit_programme(db, user, programme_id, doc, "CREATE", "PLO", plo["id"], payload.document())


@app.delete("/programmes/{programme_id}/plos/{plo_id}")
def delete_plo(programme_id: str, plo_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_plo(doc, plo_id):
        raise HTTPException(status_code=404, detail="PLO not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "PLO", plo_id)


@app.put("/programmes/{programme_id}/mapping/{plo_id}")
def update_mapping(programme_id: str, plo_id: str, payload: MappingIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    kept = set_plo_mapping(doc, plo_id, payload.mimlo_ids)
    if kept is None:
        raise HTTPException(status_code=404, detail="PLO not found")
    return commit_programme(db, user, programme_id, doc, "MAP", "PLO", plo_id, kept)


@app.post("/programmes/{programme_id}/versions")
def create_version(programme_id: str, payload: VersionIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    modality = payload.delivery_modality
    if modality and modality not in DELIVERY_MODALITIES:
        raise HTTPException(status_code=400, detail=f"deliveryModality must be one of {', '.join(DELIVERY_MODALITIES)}")
    v = add_version(doc, payload.document())
    return commit_programme(db, user, programme_id, doc, "CREATE", "Version", v["id"], payload.document())


@app.delete("/programmes/{programme_id}/versions/{version_id}")
def delete_version(programme_id: str, version_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_version(doc, version_id):
        raise HTTPException(status_code=404, detail="Version not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "Version", version_id)


@app.post("/programmes/{programme_id}/versions/{version_id}/stages")
def create_stage(programme_id: str, version_id: str, payload: StageIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    stage = add_stage(doc, version_id, payload.document())
    if stage is None:
        raise HTTPException(status_code=404, detail="Version not found")
    return commit_programme(db, user, programme_id, doc, "CREATE", "Stage", stage["id"], payload.document())


@app.delete("/programmes/{programme_id}/versions/{version_id}/stages/{stage_id}")
def delete_stage(programme_id: str, version_id: str, stage_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_stage(doc, version_id, stage_id):
        raise HTTPException(status_code=404, detail="Stage not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "Stage", stage_id)


@app.post("/programmes/{programme_id}/electives")
def create_elective_definition(programme_id: str, payload: ElectiveDefinitionIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    d = add_elective_definition(doc, payload.document())
    return commit_programme(db, user, programme_id, doc, "CREATE", "ElectiveDefinition", d["id"], payload.document())


@app.delete("/programmes/{programme_id}/electives/{definition_id}")
def delete_elective_definition(programme_id: str, definition_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_elective_definition(doc, definition_id):
        raise HTTPException(status_code=404, detail="Elective definition not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "ElectiveDefinition", definition_id)


@app.post("/programmes/{programme_id}/electives/{definition_id}/groups")
def create_elective_group(programme_id: str, definition_id: str, payload: ElectiveGroupIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    g = add_elective_group(doc, definition_id, payload.document())
    if g is None:
        raise HTTPException(status_code=404, detail="Elective definition not found")
    return commit_programme(db, user, programme_id, doc, "CREATE", "ElectiveGroup", g["id"], payload.document())


@app.delete("/programmes/{programme_id}/electives/{definition_id}/groups/{group_id}")
def delete_elective_group(programme_id: str, definition_id: str, group_id: str, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    if not remove_elective_group(doc, definition_id, group_id):
        raise HTTPException(status_code=404, detail="Elective group not found")
    return commit_programme(db, user, programme_id, doc, "DELETE", "ElectiveGroup", group_id)


@app.put("/programmes/{programme_id}/mode")
def set_mode(programme_id: str, payload: ModeIn, db: Session = Depends(get_db), user: User = Depends(require_owner)):
    doc = load_programme(programme_id)
    try:
        apply_mode(doc, payload.mode, payload.assigned_module_ids)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    out = commit_programme(db, user, programme_id, doc, "SET_MODE", "Programme", programme_id, payload.document())
    out["steps"] = active_steps(doc)
    return out


@app.get("/programmes/{programme_id}/reports/{report_id}")
def assessment_report(programme_id: str, report_id: str, version_id: Optional[str] = None, _: User = Depends(current_user)):
    doc = load_programme(programme_id)
    try:
        return build_assessment_report(doc, report_id, version_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/programmes/{programme_id}/lint")
def lint_outcomes(programme_id: str, expected_language: str = "en", _: User = Depends(current_user)):
    return lint_programme(load_programme(programme_id), expected_language=expected_language)


@app.post("/programmes/{programme_id}/standards/check")
def check_standards(programme_id: str, payload: StandardsCheckIn, _: User = Depends(current_user)):
    return validate_standard_mappings(load_programme(programme_id), payload.standards)
