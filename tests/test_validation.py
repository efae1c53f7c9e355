import copy

import pytest

from programme_studio.validation import STEP_KEYS, completion_percent, summarize, validate_programme


def messages(flags):
    return [f["msg"] for f in flags]


def test_complete_programme_has_no_flags(complete_programme):
    assert validate_programme(complete_programme) == []
    assert completion_percent(complete_programme) == 100


def test_empty_programme_flags_in_rule_order():
    flags = validate_programme({})
    assert flags == [
        {"type": "error", "msg": "Programme title is missing.", "step": "identity"},
        {"type": "error", "msg": "NFQ level is missing.", "step": "identity"},
        {"type": "warn", "msg": "Award type is missing.", "step": "identity"},
        {"type": "error", "msg": "Total programme credits are missing/zero.", "step": "structure"},
        {"type": "error", "msg": "At least one Programme Version is required (e.g., FT/PT/Online).", "step": "versions"},
        {"type": "warn", "msg": "PLOs: fewer than 6 (usually aim for ~6–12).", "step": "outcomes"},
    ]


def test_blank_title_after_trim(complete_programme):
    complete_programme["title"] = "   "
    flags = validate_programme(complete_programme)
    assert {"type": "error", "msg": "Programme title is missing.", "step": "identity"} in flags


@pytest.mark.parametrize("level", [None, 0, ""])
def test_nfq_level_missing(complete_programme, level):
    complete_programme["nfqLevel"] = level
    msgs = messages(validate_programme(complete_programme))
    assert "NFQ level is missing." in msgs
    assert "NFQ level must be between 6 and 9." not in msgs


def test_nfq_level_absent_key(complete_programme):
    del complete_programme["nfqLevel"]
    assert "NFQ level is missing." in messages(validate_programme(complete_programme))


@pytest.mark.parametrize("level", [5, 10, 1])
def test_nfq_level_out_of_range(complete_programme, level):
    complete_programme["nfqLevel"] = level
    msgs = messages(validate_programme(complete_programme))
    assert "NFQ level must be between 6 and 9." in msgs
    assert "NFQ level is missing." not in msgs


@pytest.mark.parametrize("level", [6, 7, 8, 9, "7"])
def test_nfq_level_in_range(complete_programme, level):
    complete_programme["nfqLevel"] = level
    msgs = messages(validate_programme(complete_programme))
    assert "NFQ level is missing." not in msgs
    assert "NFQ level must be between 6 and 9." not in msgs


def test_validation_is_pure(complete_programme):
    complete_programme["totalCredits"] = 90
    before = copy.deepcopy(complete_programme)
    first = validate_programme(complete_programme)
    second = validate_programme(complete_programme)
    assert first == second
    assert complete_programme == before


def test_credits_mismatch_without_electives(complete_programme):
    complete_programme["totalCredits"] = 90
    flags = validate_programme(complete_programme)
    assert {"type": "error", "msg": "Credits mismatch: totalCredits=90 but modules sum to 60.", "step": "structure"} in flags


def test_credits_mismatch_formats_floats_like_integers(complete_programme):
    complete_programme["totalCredits"] = 90.0
    complete_programme["modules"][0]["credits"] = "30"
    msgs = messages(validate_programme(complete_programme))
    assert "Credits mismatch: totalCredits=90 but modules sum to 60." in msgs


def _with_electives(p):
    p["totalCredits"] = 60
    p["modules"][1]["isElective"] = True
    p["modules"].append({"id": "mod_c", "code": "", "title": "Cloud Computing", "credits": 10, "isElective": True, "mimlos": [{"id": "mimlo_c1", "text": "x"}]})
    p["electiveDefinitions"] = [
        {
            "id": "edef_1",
            "name": "Specialism",
            "code": "SPL",
            "credits": 30,
            "groups": [
                {"id": "egrp_1", "name": "Data", "code": "D", "moduleIds": ["mod_b"]},
                {"id": "egrp_2", "name": "", "code": "", "moduleIds": ["mod_c", "mod_b"]},
            ],
        }
    ]
    return p


def test_elective_group_credit_and_duplicate_warnings(complete_programme):
    p = _with_electives(complete_programme)
    flags = validate_programme(p)
    msgs = messages(flags)
    assert "[SPL] Specialism → Group 2: module credits (40) don't match definition requirement (30)." in msgs
    assert 'Module "CS102" is assigned to 2 groups: [SPL] Specialism → [D] Data, [SPL] Specialism → Group 2.' in msgs
    assert not any(m.startswith("Credits mismatch") for m in msgs)
    for f in flags:
        if "assigned to 2 groups" in f["msg"] or "don't match definition requirement" in f["msg"]:
            assert f["type"] == "warn"
            assert f["step"] == "electives"


def test_elective_group_with_mandatory_module(complete_programme):
    p = _with_electives(complete_programme)
    p["electiveDefinitions"][0]["groups"][0]["moduleIds"] = ["mod_a"]
    msgs = messages(validate_programme(p))
    assert "[SPL] Specialism → [D] Data: contains 1 mandatory module(s)." in msgs


def test_elective_definition_without_groups(complete_programme):
    complete_programme["electiveDefinitions"] = [{"id": "edef_x", "name": "", "code": "", "credits": 0, "groups": []}]
    flags = validate_programme(complete_programme)
    assert {"type": "warn", "msg": "Definition 1: no groups defined (students need at least one option).", "step": "identity"} in flags


def test_elective_definition_with_groups_but_no_credits(complete_programme):
    complete_programme["electiveDefinitions"] = [
        {"id": "edef_x", "name": "Options", "code": "", "credits": 0, "groups": [{"id": "g", "name": "A", "code": "", "moduleIds": []}]}
    ]
    flags = validate_programme(complete_programme)
    assert {"type": "warn", "msg": "Options: has groups but no credit value set.", "step": "identity"} in flags
    assert {"type": "warn", "msg": "Options → A: no modules assigned.", "step": "electives"} in flags
    # no definition credits, so no credit check line either
    assert not any(m.startswith("Credit check") for m in messages(flags))


def test_elective_credit_check(complete_programme):
    p = _with_electives(complete_programme)
    p["totalCredits"] = 100
    flags = validate_programme(p)
    assert {
        "type": "warn",
        "msg": "Credit check: mandatory (30) + elective definitions (30) = 60, but programme total is 100.",
        "step": "structure",
    } in flags


def test_version_label_checks(complete_programme):
    second = copy.deepcopy(complete_programme["versions"][0])
    second["id"] = "ver_pt"
    second["label"] = "  full-TIME "
    third = copy.deepcopy(second)
    third["id"] = "ver_x"
    third["label"] = ""
    complete_programme["versions"] += [second, third]
    msgs = messages(validate_programme(complete_programme))
    assert 'Version 2: duplicate label ("  full-TIME ").' in msgs
    assert "Version 3: label is missing." in msgs


def test_delivery_pattern_must_total_100(complete_programme):
    v = complete_programme["versions"][0]
    v["deliveryModality"] = "online"
    v["deliveryPatterns"] = {"online": {"syncOnlinePct": 40, "asyncDirectedPct": 50, "onCampusPct": 0}}
    flags = validate_programme(complete_programme)
    assert {"type": "error", "msg": "Version 1: online delivery pattern must total 100% (currently 90%).", "step": "versions"} in flags

    v["deliveryPatterns"]["online"]["asyncDirectedPct"] = 60
    assert not any("delivery pattern must total 100%" in m for m in messages(validate_programme(complete_programme)))


def test_missing_delivery_pattern(complete_programme):
    complete_programme["versions"][0]["deliveryModality"] = "BLENDED"
    msgs = messages(validate_programme(complete_programme))
    assert "Version 1: missing delivery pattern for BLENDED." in msgs


def test_proctored_exam_notes_and_cohort(complete_programme):
    v = complete_programme["versions"][0]
    v["onlineProctoredExams"] = "YES"
    v["onlineProctoredExamsNotes"] = "  "
    v["targetCohortSize"] = 0
    msgs = messages(validate_programme(complete_programme))
    assert "Version 1: online proctored exams marked YES but notes are empty." in msgs
    assert "Version 1: cohort size is missing/zero." in msgs


def test_stage_checks(complete_programme):
    v = complete_programme["versions"][0]
    v["stages"][0]["creditsTarget"] = 50
    v["stages"][0]["exitAward"] = {"enabled": True, "awardTitle": ""}
    v["stages"].append({"id": "stage_2", "name": "", "creditsTarget": 10, "modules": []})
    flags = validate_programme(complete_programme)
    stage_flags = [f for f in flags if f["step"] == "stages"]
    assert messages(stage_flags) == [
        "Version 1: Stage 1 module credits sum to 60 but target is 50.",
        "Version 1: Stage 1 has an exit award enabled but no award title entered.",
        "Version 1: stage module credits sum to 0 but target is 10.",
    ]


def test_stage_target_sum_mismatch(complete_programme):
    complete_programme["versions"][0]["stages"][0]["creditsTarget"] = 30
    msgs = messages(validate_programme(complete_programme))
    assert "Version 1: sum of stage credit targets (30) does not match programme total credits (60)." in msgs


def test_version_without_stages(complete_programme):
    complete_programme["versions"][0]["stages"] = []
    flags = validate_programme(complete_programme)
    assert {"type": "warn", "msg": "Version 1: no stages defined yet.", "step": "stages"} in flags


def test_outcome_counts_and_mapping():
    p = {
        "plos": [{"id": "p1", "text": "a"}, {"id": "p2", "text": "b"}],
        "ploToMimlos": {"p1": ["m1"], "p2": []},
        "modules": [{"id": "x", "credits": 5, "mimlos": []}],
    }
    flags = validate_programme(p)
    assert {"type": "warn", "msg": "PLOs: fewer than 6 (usually aim for ~6–12).", "step": "outcomes"} in flags
    assert {"type": "error", "msg": "Some PLOs are not mapped to any MIMLO (1).", "step": "mapping"} in flags
    assert {"type": "warn", "msg": "Some modules have no MIMLOs yet (1).", "step": "mimlos"} in flags


def test_too_many_plos(complete_programme):
    complete_programme["plos"] = [{"id": f"p{n}", "text": "x"} for n in range(13)]
    msgs = messages(validate_programme(complete_programme))
    assert "PLOs: more than 12 (consider tightening)." in msgs
    assert "Some PLOs are not mapped to any MIMLO (13)." in msgs


def test_every_flag_routes_to_a_known_step(complete_programme):
    p = _with_electives(complete_programme)
    p["title"] = ""
    p["versions"][0]["stages"] = []
    for f in validate_programme(p) + validate_programme({}):
        assert f["step"] in STEP_KEYS
        assert f["type"] in ("error", "warn")


def test_completion_identity_only():
    p = {"title": "T", "nfqLevel": 8, "awardType": "Masters", "school": "Business"}
    assert completion_percent(p) == 40


def test_completion_is_independent_of_flags(complete_programme):
    complete_programme["versions"].append(copy.deepcopy(complete_programme["versions"][0]))
    assert completion_percent(complete_programme) == 100
    assert validate_programme(complete_programme) != []


def test_completion_only_looks_at_first_version_stages(complete_programme):
    complete_programme["versions"][0]["stages"] = []
    assert completion_percent(complete_programme) == 90


def test_completion_of_empty_programme():
    assert completion_percent({}) == 0


def test_summarize(complete_programme):
    complete_programme["totalCredits"] = 90
    out = summarize(complete_programme)
    assert out["completion"] == 100
    assert out["error_count"] == 1
    assert out["warn_count"] == 1
    assert out["export_ready"] is True


def test_empty_delivery_pattern_is_checked_for_total(complete_programme):
    v = complete_programme["versions"][0]
    v["deliveryModality"] = "ONLINE"
    v["deliveryPatterns"] = {"ONLINE": {}}
    msgs = messages(validate_programme(complete_programme))
    assert "Version 1: ONLINE delivery pattern must total 100% (currently 0%)." in msgs
    assert "Version 1: missing delivery pattern for ONLINE." not in msgs


def test_duplicate_module_label_falls_back_to_title_then_id(complete_programme):
    p = _with_electives(complete_programme)
    p["modules"][1]["code"] = "  "
    p["electiveDefinitions"][0]["groups"][0]["moduleIds"] = ["mod_b", "mod_ghost"]
    p["electiveDefinitions"][0]["groups"][1]["moduleIds"] = ["mod_c", "mod_b", "mod_ghost"]
    msgs = messages(validate_programme(p))
    assert 'Module "Databases" is assigned to 2 groups: [SPL] Specialism → [D] Data, [SPL] Specialism → Group 2.' in msgs
    assert 'Module "mod_ghost" is assigned to 2 groups: [SPL] Specialism → [D] Data, [SPL] Specialism → Group 2.' in msgs


def test_accepts_pydantic_programme_model(complete_programme):
    from programme_studio.main import ProgrammeIn

    model = ProgrammeIn.model_validate(complete_programme)
    assert validate_programme(model) == []
    assert completion_percent(model) == 100

    model.total_credits = 90
    assert "Credits mismatch: totalCredits=90 but modules sum to 60." in messages(validate_programme(model))
