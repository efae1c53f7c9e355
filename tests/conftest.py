"""Shared fixtures: a throwaway SQLite database and sample programme documents."""

import copy
import os
import tempfile
from pathlib import Path

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="pds-tests-")
os.environ.setdefault("PDS_DATABASE_URL", f"sqlite:///{Path(_DB_DIR) / 'test.db'}")

from fastapi.testclient import TestClient  # noqa: E402

from programme_studio.main import app  # noqa: E402


COMPLETE_PROGRAMME = {
    "schemaVersion": 4,
    "id": "current",
    "title": "BSc (Hons) in Computing",
    "awardType": "Honours Bachelor Degree",
    "awardTypeIsOther": False,
    "nfqLevel": 8,
    "school": "Computing",
    "awardStandardIds": ["computing"],
    "awardStandardNames": ["Computing"],
    "totalCredits": 60,
    "modules": [
        {
            "id": "mod_a",
            "code": "CS101",
            "title": "Programming Fundamentals",
            "credits": 30,
            "isElective": False,
            "mimlos": [{"id": "mimlo_a1", "text": "Write structured programs in Python."}],
            "assessments": [
                {"id": "asm_1", "type": "Exam", "weighting": 60, "mimloIds": ["mimlo_a1"]},
                {"id": "asm_2", "type": "Project", "weighting": 40, "mimloIds": []},
            ],
        },
        {
            "id": "mod_b",
            "code": "CS102",
            "title": "Databases",
            "credits": 30,
            "isElective": False,
            "mimlos": [
                {"id": "mimlo_b1", "text": "Design normalised relational schemas."},
                {"id": "mimlo_b2", "text": "Query data with SQL."},
            ],
            "assessments": [{"id": "asm_3", "type": "Project", "weighting": 100, "mimloIds": ["mimlo_b1"]}],
        },
    ],
    "plos": [{"id": f"plo_{n}", "text": f"Outcome {n}", "standardMappings": []} for n in range(1, 7)],
    "ploToMimlos": {f"plo_{n}": ["mimlo_a1" if n % 2 else "mimlo_b1"] for n in range(1, 7)},
    "electiveDefinitions": [],
    "versions": [
        {
            "id": "ver_ft",
            "label": "Full-time",
            "code": "FT",
            "targetCohortSize": 40,
            "numberOfGroups": 2,
            "deliveryModality": "F2F",
            "deliveryPatterns": {"F2F": {"syncOnlinePct": 0, "asyncDirectedPct": 0, "onCampusPct": 100}},
            "onlineProctoredExams": "NO",
            "onlineProctoredExamsNotes": "",
            "stages": [
                {
                    "id": "stage_1",
                    "name": "Stage 1",
                    "sequence": 1,
                    "creditsTarget": 60,
                    "exitAward": {"enabled": False, "awardTitle": ""},
                    "modules": [{"moduleId": "mod_a", "semester": "1"}, {"moduleId": "mod_b", "semester": "2"}],
                }
            ],
        }
    ],
    "updatedAt": None,
}


@pytest.fixture
def complete_programme():
    return copy.deepcopy(COMPLETE_PROGRAMME)


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


def _login(client, username):
    res = client.post("/auth/login", json={"username": username, "password": username})
    assert res.status_code == 200
    return res.json()["session_token"]


@pytest.fixture(scope="session")
def owner_token(client):
    return _login(client, "owner_admin")


@pytest.fixture(scope="session")
def viewer_token(client):
    return _login(client, "reviewer")
