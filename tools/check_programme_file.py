import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from programme_studio.exporters import export_json, import_json  # noqa: E402
from programme_studio.lint import lint_programme  # noqa: E402
from programme_studio.logging_config import setup_logging  # noqa: E402
from programme_studio.reports import build_assessment_report  # noqa: E402
from programme_studio.store import prepare_loaded  # noqa: E402
from programme_studio.validation import summarize  # noqa: E402


logger = setup_logging("check_programme_file")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Validate an exported programme JSON file and print its QQI readiness.")
    p.add_argument("file", help="Path to a programme JSON export")
    p.add_argument("--lint", action="store_true", help="Also lint PLO and MIMLO wording")
    p.add_argument("--report", choices=["byStageType", "byModule", "coverage"], help="Print an assessment report")
    p.add_argument("--version-id", help="Version used by the byStageType report")
    p.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
    p.add_argument("--strict", action="store_true", help="Exit 1 when any error flag is raised")
    p.add_argument("--write-migrated", help="Write the migrated document to this path")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    path = Path(args.file)
    if not path.exists():
        raise SystemExit(f"Missing input file: {path}")

    result = import_json(path.read_text(encoding="utf-8"))
    if not result["success"]:
        raise SystemExit(f"Import failed: {result['error']}")
    programme = prepare_loaded(result["programme"])
    summary = summarize(programme)
    if args.write_migrated:
        out_path = Path(args.write_migrated)
        out_path.write_text(export_json(programme) + "\n", encoding="utf-8")
        logger.info("Wrote migrated programme to %s", out_path)

    out = {"file": str(path), "title": programme.get("title") or "", **summary}
    if args.lint:
        out["lint"] = lint_programme(programme)
    if args.report:
        out["report"] = build_assessment_report(programme, args.report, args.version_id)

    if args.json:
        print(json.dumps(out, indent=2, ensure_ascii=False))
    else:
        print(f"{out['title'] or '(untitled)'}: {summary['completion']}% complete, {summary['error_count']} error(s), {summary['warn_count']} warning(s)")
        for flag in summary["flags"]:
            print(f"  [{flag['type'].upper():5}] {flag['step']}: {flag['msg']}")
        if args.lint:
            print(f"Lint issues: {out['lint']['issue_count']}")
        if args.report:
            print(json.dumps(out["report"], indent=2, ensure_ascii=False))

    if args.strict and summary["error_count"]:
        logger.warning("%s has %s error flag(s)", path, summary["error_count"])
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
