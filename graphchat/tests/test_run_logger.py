import json
import os
import time

from graphchat.pipeline.log_report import summarize
from graphchat.pipeline.run_logger import RunLogger, format_timeline

TIMELINE = [
    {"step": "direct", "rule": None, "query": "MATCH (a)-[:R]->(b) RETURN a", "ok": True, "nodes": 0, "relationships": 0},
    {"step": "reversed", "rule": "reverse_direction", "query": "MATCH (a)<-[:R]-(b) RETURN a", "ok": True, "nodes": 2,
     "relationships": 1},
]


def test_disabled_logger_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.delenv("GRAPHCHAT_LOG_DIR", raising=False)
    logger = RunLogger(base_dir=None)
    logger.base_dir = None

    assert logger.start("q", {}) is None
    logger.log_event("schema", {"x": 1})
    logger.finalize("success")
    assert list(tmp_path.iterdir()) == []


def test_run_artifacts(tmp_path):
    logger = RunLogger(base_dir=str(tmp_path))

    run_dir = logger.start("Who is married?", {"model": "gpt-4"})
    logger.log_event("schema", {"labels": 2})
    logger.log_event("synthesize", {"query": "MATCH (n) RETURN n"})
    logger.log_timeline("Who is married?", TIMELINE)
    logger.log_usage({"total_tokens": 12})
    logger.finalize("success", {"query": "MATCH (n) RETURN n", "rules": ["reverse_direction"]})

    assert json.loads((run_dir / "metadata.json").read_text())["params"] == {"model": "gpt-4"}
    events = [json.loads(line) for line in (run_dir / "debug.jsonl").read_text().splitlines()]
    assert [e["stage"] for e in events] == ["schema", "synthesize"]
    assert json.loads((run_dir / "timeline.json").read_text())["timeline"] == TIMELINE
    assert json.loads((run_dir / "usage.json").read_text())["usage"] == {"total_tokens": 12}
    assert json.loads((run_dir / "summary.json").read_text())["status"] == "success"


def test_old_runs_are_pruned(tmp_path):
    for idx in range(3):
        stale = tmp_path / f"old-{idx}"
        stale.mkdir()
        past = time.time() - 1000 + idx
        os.utime(stale, (past, past))
    logger = RunLogger(base_dir=str(tmp_path), retain=2)

    run_dir = logger.start("q", {})
    logger.finalize("success")

    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert len(remaining) == 2
    assert run_dir.name in remaining
    assert "old-2" in remaining


def test_format_timeline_lists_each_attempt():
    text = format_timeline("Who?", TIMELINE + [{"step": "undirected", "query": "q", "ok": False, "error": "boom"}])

    assert "Attempts: 3" in text
    assert "ATTEMPT 2: REVERSED (reverse_direction)" in text
    assert "✓ data returned" in text
    assert "✓ empty result" in text
    assert "Error: boom" in text


def test_report_counts_statuses_diagnostics_and_rules(tmp_path):
    for idx, (status, rules) in enumerate([("success", ["reverse_direction"]), ("error", []), ("success", ["strip_direction"])]):
        run = tmp_path / f"run-{idx}"
        run.mkdir()
        summary = {
            "status": status,
            "rules": rules,
            "diagnostics": [
                {"stage": "synthesize", "severity": "warning", "message": "unparsable LLM response"},
                {"stage": "synthesize", "severity": "info", "message": "parsed with json_body"},
            ],
        }
        (run / "summary.json").write_text(json.dumps(summary))

    report = summarize(str(tmp_path))

    assert report["total_runs"] == 3
    assert report["status_counts"] == {"success": 2, "error": 1}
    assert report["top_diagnostics"] == [("[synthesize] unparsable LLM response", 3)]
    assert dict(report["top_rules"]) == {"reverse_direction": 1, "strip_direction": 1}
