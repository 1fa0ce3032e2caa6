import json
import types
import unittest
from contextlib import contextmanager
from pathlib import Path

import pytest

from graphchat.pipeline.connection import DatabaseError
from graphchat.pipeline.models import (
    CanonicalGraph,
    CanonicalNode,
    ConversationMessage,
    Credentials,
    InputValidationError,
    SchemaDescriptor,
    TableResult,
)
from graphchat.pipeline.normalizer import collect_entities
from graphchat.pipeline.orchestrator import (
    DIRECTION_CAVEAT,
    ChatOrchestrator,
    compose_reply,
    merge_schema_message,
    render_markdown_table,
)
from graphchat.pipeline.repair import RepairEngine
from graphchat.pipeline.result import Result
from graphchat.pipeline.schema_graph import SchemaIntrospector
from graphchat.pipeline.synthesizer import QuerySynthesizer

CREDS = Credentials(llm_api_key="sk-test", db_uri="bolt://localhost:7687", db_username="neo4j", db_password="pw")


def _node(element_id, label, **props):
    return types.SimpleNamespace(element_id=element_id, labels=[label], properties=props)


def _rel(element_id, rel_type, start, end):
    return types.SimpleNamespace(element_id=element_id, type=rel_type, start_node=start, end_node=end, properties={})


class FakeManager:
    """Stands in for ConnectionManager: maps query text to canned records."""

    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.queries = []
        self.configs = []

    def run(self, query, params=None, *, config=None):
        self.queries.append(query)
        self.configs.append(config)
        if self.error is not None:
            raise self.error
        return collect_entities(self.responses.get(query, []))

    @contextmanager
    def session(self, config=None):
        raise DatabaseError("Failed to connect to Neo4j: refused", kind="connectivity")
        yield  # pragma: no cover


class FixedSchema:
    def __init__(self, schema=None):
        self.schema = schema or SchemaDescriptor(["Character"], ["妻子"], {"Character": ["name"]})
        self.calls = 0

    def get_schema(self, config=None):
        self.calls += 1
        return Result(self.schema)


class FakeCompletion:
    def __init__(self, query, explanation="Finds the answer."):
        self.body = json.dumps({"cypherQuery": query, "explanation": explanation})
        self.calls = []

    def __call__(self, messages, **kwargs):
        self.calls.append(messages)
        return self.body, None


def _orchestrator(manager, completion, schema=None, **kwargs):
    return ChatOrchestrator(
        manager,
        synthesizer=QuerySynthesizer(completion_fn=completion),
        introspector=schema or FixedSchema(),
        repair_engine=RepairEngine(ambiguous_labels=["妻子"]),
        **kwargs,
    )


class ValidationTests(unittest.TestCase):
    def test_missing_llm_key_is_rejected_without_side_effects(self):
        manager = FakeManager()
        completion = FakeCompletion("MATCH (n) RETURN n")
        schema = FixedSchema()
        orchestrator = _orchestrator(manager, completion, schema)

        with self.assertRaises(InputValidationError) as ctx:
            orchestrator.handle_turn([], "Who?", Credentials(db_uri="bolt://x", db_username="u", db_password="p"))

        self.assertIn("API key", str(ctx.exception))
        self.assertEqual(manager.queries, [])
        self.assertEqual(completion.calls, [])
        self.assertEqual(schema.calls, 0)

    def test_missing_database_fields_are_rejected(self):
        orchestrator = _orchestrator(FakeManager(), FakeCompletion("MATCH (n) RETURN n"))

        with self.assertRaises(InputValidationError) as ctx:
            orchestrator.handle_turn([], "Who?", Credentials(llm_api_key="k", db_uri="bolt://x"))

        self.assertIn("Database connection parameters", str(ctx.exception))

    def test_empty_message_set_is_rejected(self):
        orchestrator = _orchestrator(FakeManager(), FakeCompletion("MATCH (n) RETURN n"))

        with self.assertRaises(InputValidationError):
            orchestrator.handle_turn([ConversationMessage("system", "be brief")], "  ", CREDS)


def test_graph_turn_end_to_end():
    zhang = _node("c1", "Character", name="Zhang")
    li = _node("c2", "Character", name="Li")
    wife = _rel("r1", "妻子", zhang, li)
    undirected = "MATCH (a:Character)-[r:妻子]-(b:Character) RETURN a, r, b"
    manager = FakeManager({undirected: [{"a": zhang, "r": wife, "b": li}]})
    completion = FakeCompletion("MATCH (a:Character)-[r:妻子]->(b:Character) RETURN a, r, b", "Finds married couples.")

    reply = _orchestrator(manager, completion).handle_turn([], "Who is married?", CREDS)

    assert manager.queries == [undirected]
    assert reply.query == undirected
    assert reply.table is None
    assert [n.id for n in reply.graph.nodes] == ["c1", "c2"]
    assert reply.graph.links[0].source == 0 and reply.graph.links[0].target == 1
    assert reply.reply_text.startswith("Finds married couples.")
    assert "Found 2 nodes and 1 relationships." in reply.reply_text
    assert "visualization" in reply.reply_text
    wire = reply.as_dict()
    assert set(wire) == {"replyText", "graph"}
    assert manager.configs[0].uri == "bolt://localhost:7687"


def test_direction_repair_runs_inside_a_turn():
    zhang = _node("c1", "Character", name="Zhang")
    directed = "MATCH (a:Character)-[:KNOWS]->(b:Character) RETURN a, b"
    reversed_query = "MATCH (a:Character)<-[:KNOWS]-(b:Character) RETURN a, b"
    manager = FakeManager({reversed_query: [{"a": zhang, "b": zhang}]})

    reply = _orchestrator(manager, FakeCompletion(directed)).handle_turn([], "Who knows whom?", CREDS)

    assert manager.queries == [directed, reversed_query]
    assert reply.query == reversed_query
    assert [entry["step"] for entry in reply.timeline] == ["direct", "reversed"]


def test_projection_turn_renders_a_table():
    query = "MATCH (c:Character) RETURN c.name AS name, c.age AS age"
    manager = FakeManager({query: [{"name": "Zhang", "age": 40}, {"name": "Li", "age": None}]})

    reply = _orchestrator(manager, FakeCompletion(query, "Lists names.")).handle_turn([], "Names?", CREDS)

    assert reply.table.columns == ["name", "age"]
    assert "| name | age |" in reply.reply_text
    assert "| Li |  |" in reply.reply_text
    assert "visualization" not in reply.reply_text
    assert reply.as_dict()["table"]["rows"][0] == {"name": "Zhang", "age": 40}
    assert "graph" not in reply.as_dict()


def test_schema_outage_still_reaches_synthesis():
    manager = FakeManager({"MATCH (n) RETURN n": []})
    completion = FakeCompletion("MATCH (n) RETURN n")
    orchestrator = ChatOrchestrator(
        manager,
        synthesizer=QuerySynthesizer(completion_fn=completion),
        introspector=SchemaIntrospector(manager),
        repair_engine=RepairEngine(ambiguous_labels=[]),
    )

    reply = orchestrator.handle_turn([], "Anything?", CREDS)

    assert len(completion.calls) == 1
    system_prompt = completion.calls[0][0]["content"]
    assert "Node Labels:\n- none" in system_prompt
    assert any(d.message == "schema introspection failed" for d in reply.diagnostics)
    assert "The query returned no results." in reply.reply_text


def test_execution_failure_becomes_reply_only_turn():
    manager = FakeManager(error=DatabaseError("Database query failed: Invalid input 'MATC'"))

    reply = _orchestrator(manager, FakeCompletion("MATC (n) RETURN n")).handle_turn([], "Broken?", CREDS)

    assert reply.graph is None and reply.table is None
    assert reply.failed
    assert "Invalid input" in reply.reply_text
    assert reply.as_dict() == {"replyText": reply.reply_text}


def test_connection_lost_during_direction_repair_fails_the_turn():
    directed = "MATCH (a:Character)-[:KNOWS]->(b:Character) RETURN a, b"

    class DroppingManager(FakeManager):
        def run(self, query, params=None, *, config=None):
            if self.queries:
                self.queries.append(query)
                raise DatabaseError("Database query failed: ServiceUnavailable", kind="connectivity")
            return super().run(query, params, config=config)

    manager = DroppingManager()

    reply = _orchestrator(manager, FakeCompletion(directed)).handle_turn([], "Who knows whom?", CREDS)

    assert reply.failed
    assert reply.graph is None
    assert "ServiceUnavailable" in reply.reply_text
    assert "The query returned no results." not in reply.reply_text
    assert [entry["step"] for entry in reply.timeline] == ["direct", "reversed"]


def test_turn_logs_are_written_when_enabled(tmp_path):
    query = "MATCH (c:Character) RETURN c"
    manager = FakeManager({query: [{"c": _node("c1", "Character")}]})
    orchestrator = _orchestrator(manager, FakeCompletion(query), log_dir=str(tmp_path))

    orchestrator.handle_turn([], "Characters?", CREDS)

    run_dir = orchestrator.last_run_logger.run_dir
    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "success"
    assert summary["query"] == query
    metadata = (run_dir / "metadata.json").read_text(encoding="utf-8")
    assert "sk-test" not in metadata and "pw" not in json.loads(metadata)["params"]["credentials"].values()
    stages = [json.loads(line)["stage"] for line in (run_dir / "debug.jsonl").read_text(encoding="utf-8").splitlines()]
    assert stages[:2] == ["schema", "synthesize"]
    assert "execute" in stages and "normalize" in stages
    assert Path(run_dir / "timeline.txt").exists()


def test_merge_appends_to_existing_system_message():
    schema = SchemaDescriptor(["Person"], [], {})
    conversation = [ConversationMessage("system", "Be concise."), ConversationMessage("user", "hi")]

    merged = merge_schema_message(conversation, schema)

    assert len(merged) == 2
    assert merged[0].content.startswith("Be concise.\n\nDatabase Schema Information:")
    assert merged[0].content.endswith(DIRECTION_CAVEAT)
    assert merged[1] == conversation[1]


def test_merge_prepends_system_message_when_missing():
    merged = merge_schema_message([ConversationMessage("user", "hi")], SchemaDescriptor())

    assert merged[0].role == "system"
    assert "Database Schema Information:" in merged[0].content
    assert DIRECTION_CAVEAT in merged[0].content


def test_markdown_table_cells():
    table = TableResult(columns=["name", "tags", "note"], rows=[{"name": "A|B", "tags": ["x"], "note": None}])

    assert render_markdown_table(table).splitlines() == [
        "| name | tags | note |",
        "| --- | --- | --- |",
        '| A\\|B | ["x"] |  |',
    ]


def test_reply_without_results():
    text = compose_reply("Looks for people.", CanonicalGraph(), None)

    assert text == "Looks for people.\n\nThe query returned no results."


def test_reply_with_nodes_only():
    graph = CanonicalGraph(nodes=[CanonicalNode("1", "Person")])

    text = compose_reply("E.", graph, None)

    assert "Found 1 nodes and 0 relationships." in text
    assert text.endswith("A graph visualization of the result has been generated.")


@pytest.mark.parametrize("history_text", ["Earlier question", "Another one"])
def test_history_is_forwarded_to_the_model(history_text):
    query = "MATCH (n) RETURN n"
    completion = FakeCompletion(query)
    history = [ConversationMessage("user", history_text), ConversationMessage("assistant", "ok")]

    _orchestrator(FakeManager(), completion).handle_turn(history, "Follow up", CREDS)

    sent = completion.calls[0]
    assert [m["role"] for m in sent] == ["system", "system", "user", "assistant", "user"]
    assert sent[2]["content"] == history_text
    assert sent[-1]["content"] == "Follow up"
