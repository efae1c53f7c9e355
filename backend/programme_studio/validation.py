"""Programme validation and completion scoring.

``validate_programme`` and ``completion_percent`` are pure: they read the
programme document (camelCase keys, as exported) and never mutate it. They are
intentionally independent rule sets; a 100% complete programme can still carry
warnings.
"""

from __future__ import annotations

from typing import Any

from .helpers import as_dict, as_list, fmt_num, is_blank, sum_pattern, sum_stage_credits, text_or, to_number


STEP_KEYS = (
    "identity",
    "outcomes",
    "versions",
    "stages",
    "structure",
    "electives",
    "mimlos",
    "effort-hours",
    "assessments",
    "reading-lists",
    "schedule",
    "mapping",
    "traceability",
    "snapshot",
)


def _document(p: Any) -> dict:
    if hasattr(p, "model_dump"):
        return p.model_dump(by_alias=True)
    return as_dict(p)


def _flag(flags: list[dict], kind: str, msg: str, step: str) -> None:
    flags.append({"type": kind, "msg": msg, "step": step})


def _modules(p: dict) -> list[dict]:
    return [m for m in as_list(p.get("modules")) if isinstance(m, dict)]


def _identity_flags(p: dict, flags: list[dict]) -> None:
    if is_blank(p.get("title")):
        _flag(flags, "error", "Programme title is missing.", "identity")
    level = p.get("nfqLevel")
    if not level:
        _flag(flags, "error", "NFQ level is missing.", "identity")
    elif not 6 <= to_number(level) <= 9:
        _flag(flags, "error", "NFQ level must be between 6 and 9.", "identity")
    if is_blank(p.get("awardType")):
        _flag(flags, "warn", "Award type is missing.", "identity")


def _elective_flags(p: dict, definitions: list[dict], mandatory_credits: float, flags: list[dict]) -> None:
    modules = _modules(p)
    module_by_id = {m.get("id"): m for m in modules}
    assignments: dict[Any, list[str]] = {}

    for def_idx, d in enumerate(definitions):
        def_name = text_or(d.get("name"), f"Definition {def_idx + 1}")
        def_code = str(d.get("code") or "").strip()
        def_label = f"[{def_code}] {def_name}" if def_code else def_name
        def_credits = to_number(d.get("credits"))
        groups = [g for g in as_list(d.get("groups")) if isinstance(g, dict)]

        if not groups:
            _flag(flags, "warn", f"{def_label}: no groups defined (students need at least one option).", "identity")
        if def_credits == 0 and groups:
            _flag(flags, "warn", f"{def_label}: has groups but no credit value set.", "identity")

        for grp_idx, g in enumerate(groups):
            grp_name = text_or(g.get("name"), f"Group {grp_idx + 1}")
            grp_code = str(g.get("code") or "").strip()
            grp_label = f"[{grp_code}] {grp_name}" if grp_code else grp_name
            full_label = f"{def_label} → {grp_label}"
            module_ids = list(dict.fromkeys(x for x in as_list(g.get("moduleIds")) if isinstance(x, (str, int))))

            if not module_ids:
                _flag(flags, "warn", f"{full_label}: no modules assigned.", "electives")
                continue

            for mid in module_ids:
                assignments.setdefault(mid, []).append(full_label)

            members = [m for m in modules if m.get("id") in module_ids]
            non_elective = sum(1 for m in members if not m.get("isElective"))
            if non_elective > 0:
                _flag(flags, "warn", f"{full_label}: contains {non_elective} mandatory module(s).", "electives")
            group_credits = sum(to_number(m.get("credits")) for m in members)
            if group_credits != def_credits:
                _flag(
                    flags,
                    "warn",
                    f"{full_label}: module credits ({fmt_num(group_credits)}) don't match definition requirement ({fmt_num(def_credits)}).",
                    "electives",
                )

    for mid, labels in assignments.items():
        if len(labels) < 2:
            continue
        mod = module_by_id.get(mid)
        if mod:
            name = next((str(x) for x in (mod.get("code"), mod.get("title")) if not is_blank(x)), str(mid))
        else:
            name = str(mid)
        _flag(flags, "warn", f'Module "{name}" is assigned to {len(labels)} groups: {", ".join(labels)}.', "electives")

    definition_credits = sum(to_number(d.get("credits")) for d in definitions)
    total = to_number(p.get("totalCredits"))
    expected = mandatory_credits + definition_credits
    if definition_credits > 0 and expected != total:
        _flag(
            flags,
            "warn",
            f"Credit check: mandatory ({fmt_num(mandatory_credits)}) + elective definitions ({fmt_num(definition_credits)}) = {fmt_num(expected)}, but programme total is {fmt_num(total)}.",
            "structure",
        )


def _credit_flags(p: dict, flags: list[dict]) -> None:
    modules = _modules(p)
    total = to_number(p.get("totalCredits"))
    if total <= 0:
        _flag(flags, "error", "Total programme credits are missing/zero.", "structure")

    sum_credits = sum(to_number(m.get("credits")) for m in modules)
    mandatory_credits = sum(to_number(m.get("credits")) for m in modules if not m.get("isElective"))
    definitions = [d for d in as_list(p.get("electiveDefinitions")) if isinstance(d, dict)]

    if not definitions:
        if total > 0 and sum_credits != total:
            _flag(
                flags,
                "error",
                f"Credits mismatch: totalCredits={fmt_num(total)} but modules sum to {fmt_num(sum_credits)}.",
                "structure",
            )
        return
    _elective_flags(p, definitions, mandatory_credits, flags)


def _stage_flags(p: dict, v: dict, prefix: str, flags: list[dict]) -> None:
    stages = [s for s in as_list(v.get("stages")) if isinstance(s, dict)]
    if not stages:
        _flag(flags, "warn", f"{prefix}: no stages defined yet.", "stages")
        return

    total = to_number(p.get("totalCredits"))
    target_sum = sum(to_number(s.get("creditsTarget")) for s in stages)
    if total > 0 and target_sum > 0 and target_sum != total:
        _flag(
            flags,
            "warn",
            f"{prefix}: sum of stage credit targets ({fmt_num(target_sum)}) does not match programme total credits ({fmt_num(total)}).",
            "stages",
        )

    modules = _modules(p)
    for s in stages:
        name = text_or(s.get("name"), "stage")
        target = to_number(s.get("creditsTarget"))
        credit_sum = sum_stage_credits(modules, s.get("modules"))
        if target > 0 and credit_sum != target:
            _flag(
                flags,
                "warn",
                f"{prefix}: {name} module credits sum to {fmt_num(credit_sum)} but target is {fmt_num(target)}.",
                "stages",
            )
        exit_award = as_dict(s.get("exitAward"))
        if exit_award.get("enabled") and is_blank(exit_award.get("awardTitle")):
            _flag(flags, "warn", f"{prefix}: {name} has an exit award enabled but no award title entered.", "stages")


def _version_flags(p: dict, flags: list[dict]) -> None:
    versions = as_list(p.get("versions"))
    if not versions:
        _flag(flags, "error", "At least one Programme Version is required (e.g., FT/PT/Online).", "versions")
        return

    seen_labels: set[str] = set()
    for idx, v in enumerate(versions):
        v = as_dict(v)
        prefix = f"Version {idx + 1}"
        label = v.get("label")
        if is_blank(label):
            _flag(flags, "warn", f"{prefix}: label is missing.", "versions")
        else:
            norm = str(label).strip().lower()
            if norm in seen_labels:
                _flag(flags, "warn", f'{prefix}: duplicate label ("{label}").', "versions")
            seen_labels.add(norm)

        modality = v.get("deliveryModality")
        if modality:
            pattern = as_dict(v.get("deliveryPatterns")).get(modality)
            if pattern is None:
                _flag(flags, "error", f"{prefix}: missing delivery pattern for {modality}.", "versions")
            else:
                pct = sum_pattern(pattern)
                if pct != 100:
                    _flag(
                        flags,
                        "error",
                        f"{prefix}: {modality} delivery pattern must total 100% (currently {fmt_num(pct)}%).",
                        "versions",
                    )

        if (v.get("onlineProctoredExams") or "TBC") == "YES" and is_blank(v.get("onlineProctoredExamsNotes")):
            _flag(flags, "warn", f"{prefix}: online proctored exams marked YES but notes are empty.", "versions")

        if to_number(v.get("targetCohortSize")) <= 0:
            _flag(flags, "warn", f"{prefix}: cohort size is missing/zero.", "versions")

        _stage_flags(p, v, prefix, flags)


def _outcome_flags(p: dict, flags: list[dict]) -> None:
    plos = as_list(p.get("plos"))
    if len(plos) < 6:
        _flag(flags, "warn", "PLOs: fewer than 6 (usually aim for ~6–12).", "outcomes")
    if len(plos) > 12:
        _flag(flags, "warn", "PLOs: more than 12 (consider tightening).", "outcomes")

    missing_mimlos = sum(1 for m in _modules(p) if not as_list(m.get("mimlos")))
    if missing_mimlos > 0:
        _flag(flags, "warn", f"Some modules have no MIMLOs yet ({missing_mimlos}).", "mimlos")

    mapping = as_dict(p.get("ploToMimlos"))
    unmapped = sum(1 for o in plos if not mapping.get(as_dict(o).get("id")))
    if unmapped > 0:
        _flag(flags, "error", f"Some PLOs are not mapped to any MIMLO ({unmapped}).", "mapping")


def validate_programme(programme: Any) -> list[dict]:
    p = _document(programme)
    flags: list[dict] = []
    _identity_flags(p, flags)
    _credit_flags(p, flags)
    _version_flags(p, flags)
    _outcome_flags(p, flags)
    return flags


def completion_percent(programme: Any) -> int:
    p = _document(programme)
    versions = as_list(p.get("versions"))
    first = as_dict(versions[0]) if versions else {}
    checks = [
        not is_blank(p.get("title")),
        bool(p.get("nfqLevel")),
        not is_blank(p.get("awardType")),
        not is_blank(p.get("school")),
        to_number(p.get("totalCredits")) > 0,
        len(as_list(p.get("modules"))) > 0,
        len(as_list(p.get("plos"))) >= 6,
        len(as_dict(p.get("ploToMimlos"))) > 0,
        len(versions) > 0,
        len(as_list(first.get("stages"))) > 0,
    ]
    return round(100 * sum(checks) / len(checks))


def summarize(programme: Any) -> dict:
    p = _document(programme)
    flags = validate_programme(p)
    completion = completion_percent(p)
    return {
        "completion": completion,
        "flags": flags,
        "error_count": sum(1 for f in flags if f["type"] == "error"),
        "warn_count": sum(1 for f in flags if f["type"] == "warn"),
        "export_ready": completion == 100,
    }
