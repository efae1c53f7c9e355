import pytest

from programme_studio.reports import build_assessment_report, report_by_module, report_by_stage_type, report_coverage


def test_by_stage_type_aggregates_and_sorts(complete_programme):
    out = report_by_stage_type(complete_programme, "ver_ft")
    assert out["version_id"] == "ver_ft"
    stage = out["stages"][0]
    assert stage["name"] == "Stage 1"
    assert stage["types"] == [
        {"type": "Project", "count": 2, "weight": 140},
        {"type": "Exam", "count": 1, "weight": 60},
    ]


def test_by_stage_type_falls_back_to_first_version(complete_programme):
    assert report_by_stage_type(complete_programme, "unknown")["version_id"] == "ver_ft"
    assert report_by_stage_type({"versions": []})["stages"] == []


def test_unspecified_assessment_type(complete_programme):
    complete_programme["modules"][0]["assessments"] = [{"id": "x", "weighting": "25"}]
    out = report_by_module(complete_programme)
    assert out["modules"][0]["summary"] == "Unspecified (1, 25%)"
    assert out["modules"][1]["summary"] == "Project (1, 100%)"


def test_module_without_assessments_summary(complete_programme):
    complete_programme["modules"][0]["assessments"] = []
    assert report_by_module(complete_programme)["modules"][0]["summary"] == "—"


def test_coverage_lists_unassessed_mimlos(complete_programme):
    rows = report_coverage(complete_programme)["modules"]
    assert rows[0]["all_assessed"] is True
    assert rows[1]["unassessed"] == [{"id": "mimlo_b2", "text": "Query data with SQL."}]


def test_build_report_dispatch(complete_programme):
    assert build_assessment_report(complete_programme, "coverage")["report"] == "coverage"
    with pytest.raises(ValueError):
        build_assessment_report(complete_programme, "byLecturer")
