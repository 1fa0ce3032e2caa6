import json

from graphchat.pipeline import cli
from graphchat.pipeline.orchestrator import TurnReply
from graphchat.pipeline.result import Diagnostic


def test_report_command_prints_totals(tmp_path, capsys):
    run = tmp_path / "run-1"
    run.mkdir()
    (run / "summary.json").write_text(json.dumps({"status": "success", "rules": ["strip_direction"]}))

    assert cli.main(["report", "--logs", str(tmp_path)]) == 0

    out = capsys.readouterr().out
    assert "Total runs: 1" in out
    assert "(1) strip_direction" in out


def test_chat_requires_a_question(capsys):
    assert cli.main(["chat", "--api-key", "k", "--uri", "bolt://x", "--username", "u", "--password", "p"]) == 1
    assert "--question is required" in capsys.readouterr().err


def test_history_file_is_parsed(tmp_path):
    path = tmp_path / "history.json"
    path.write_text(json.dumps([{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]))

    history = cli.read_history(str(path))

    assert [m.role for m in history] == ["user", "assistant"]


def test_print_reply_json_and_verbose(capsys):
    reply = TurnReply(
        reply_text="Nothing found.",
        query="MATCH (n) RETURN n",
        diagnostics=[Diagnostic(stage="repair", message="no rewrite returned any nodes", severity="info")],
        timeline=[{"step": "direct", "query": "MATCH (n) RETURN n", "ok": True, "nodes": 0}],
    )

    cli.print_reply(reply, "Anything?", as_json=True, verbose=False, color=False)
    assert json.loads(capsys.readouterr().out) == {"replyText": "Nothing found."}

    cli.print_reply(reply, "Anything?", as_json=False, verbose=True, color=False)
    out = capsys.readouterr().out
    assert "TURN EXECUTION SUMMARY" in out
    assert "MATCH (n) RETURN n" in out
    assert "[repair] no rewrite returned any nodes" in out
