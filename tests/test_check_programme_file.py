import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[1] / "tools" / "check_programme_file.py"


@pytest.fixture(scope="module")
def checker():
    spec = importlib.util.spec_from_file_location("check_programme_file", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_reports_flags_and_strict_exit(checker, tmp_path, capsys):
    path = tmp_path / "legacy.json"
    path.write_text(json.dumps({"title": "Legacy", "plos": ["Understand things"]}), encoding="utf-8")

    assert checker.main([str(path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Legacy: 20% complete")
    assert "NFQ level is missing." in out

    assert checker.main([str(path), "--strict"]) == 1


def test_json_output_with_lint_and_migrated_copy(checker, tmp_path, capsys, complete_programme):
    path = tmp_path / "complete.json"
    path.write_text(json.dumps(complete_programme), encoding="utf-8")
    migrated = tmp_path / "migrated.json"

    assert checker.main([str(path), "--json", "--lint", "--report", "coverage", "--write-migrated", str(migrated)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["completion"] == 100
    assert out["flags"] == []
    assert out["lint"]["issue_count"] == 0
    assert out["report"]["report"] == "coverage"
    assert json.loads(migrated.read_text(encoding="utf-8"))["versions"][0]["id"] == "ver_ft"


def test_rejects_non_object_json(checker, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(SystemExit, match="Invalid JSON structure"):
        checker.main([str(path)])
