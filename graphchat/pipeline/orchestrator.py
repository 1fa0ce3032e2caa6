"""Conversational NL -> Cypher turn handling over a Neo4j graph.

Architecture:
1) SchemaIntrospector: labels, relationship types and sampled property keys,
   folded into the system message together with a direction caveat.
2) QuerySynthesizer: one chat completion, parsed leniently; any failure yields
   a fixed default query instead of an error.
3) RepairEngine: always-on undirected rewrite for ambiguous relationship types,
   then bounded re-execution (node-only on relationship-shape errors; reversed,
   then undirected, on empty directed results).
4) Normalizer: canonical graph (index-based links) plus a table when the RETURN
   clause projects scalar values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_LOG_RETAIN
from .connection import ConnectionManager
from .models import (
    CanonicalGraph,
    ConversationMessage,
    Credentials,
    InputValidationError,
    SchemaDescriptor,
    TableResult,
)
from .normalizer import relink, to_graph, to_table
from .openai_client import reset_usage_log, usage_totals
from .repair import QueryExecutionFailure, RepairEngine
from .result import Diagnostic
from .run_logger import RunLogger
from .schema_graph import SchemaIntrospector
from .synthesizer import QuerySynthesizer
from .utils import compact_json, preview

GREETING = "You are a helpful assistant that answers questions about the data stored in a Neo4j graph database."

DIRECTION_CAVEAT = (
    "Note: the direction of some relationships in this database may not match their natural-language reading. "
    "When unsure, match the relationship without a direction, e.g. (a)-[:TYPE]-(b) instead of (a)-[:TYPE]->(b)."
)

ERROR_REPLY = "Sorry, an error occurred while processing your question: {error}"


def schema_context(schema: SchemaDescriptor) -> str:
    return "Database Schema Information:\n" + schema.describe()


def merge_schema_message(
    conversation: Sequence[ConversationMessage], schema: SchemaDescriptor
) -> List[ConversationMessage]:
    """Fold the schema and the direction caveat into the conversation's system message.

    An existing system message is extended in place; otherwise a greeting plus schema
    is prepended. Other messages keep their order.
    """
    context = schema_context(schema)
    merged: List[ConversationMessage] = []
    seen_system = False
    for message in conversation:
        if message.role == "system" and not seen_system:
            seen_system = True
            content = f"{message.content}\n\n{context}\n\n{DIRECTION_CAVEAT}"
            merged.append(ConversationMessage("system", content))
        else:
            merged.append(message)
    if not seen_system:
        merged.insert(0, ConversationMessage("system", f"{GREETING}\n\n{context}\n\n{DIRECTION_CAVEAT}"))
    return merged


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        text = compact_json(value)
    else:
        text = str(value)
    return text.replace("|", "\\|").replace("\n", " ")


def render_markdown_table(table: TableResult) -> str:
    if not table.columns:
        return ""
    lines = [
        "| " + " | ".join(_cell(c) for c in table.columns) + " |",
        "| " + " | ".join("---" for _ in table.columns) + " |",
    ]
    for row in table.rows:
        lines.append("| " + " | ".join(_cell(row.get(c)) for c in table.columns) + " |")
    return "\n".join(lines)


def compose_reply(explanation: str, graph: CanonicalGraph, table: Optional[TableResult]) -> str:
    parts = [explanation.strip()]
    if table is not None and table.rows:
        parts.append(f"Query results ({len(table.rows)} rows):\n\n{render_markdown_table(table)}")
    elif graph.nodes:
        parts.append(f"Found {len(graph.nodes)} nodes and {len(graph.links)} relationships.")
    else:
        parts.append("The query returned no results.")
    if graph.nodes:
        parts.append("A graph visualization of the result has been generated.")
    return "\n\n".join(p for p in parts if p)


@dataclass
class TurnReply:
    reply_text: str
    graph: Optional[CanonicalGraph] = None
    table: Optional[TableResult] = None
    query: Optional[str] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    timeline: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.graph is None and self.table is None and any(d.severity == "error" for d in self.diagnostics)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"replyText": self.reply_text}
        if self.graph is not None and self.graph.nodes:
            data["graph"] = self.graph.as_dict()
        if self.table is not None:
            data["table"] = self.table.as_dict()
        return data


def validate_turn(
    conversation: Sequence[ConversationMessage], new_user_text: Optional[str], credentials: Credentials
) -> None:
    credentials.validate()
    has_text = bool(new_user_text and new_user_text.strip())
    if not has_text and not any(m.role == "user" and m.content.strip() for m in conversation):
        raise InputValidationError("No messages were provided. Send at least one user message.")


class ChatOrchestrator:
    """
    One conversational turn, strictly in order:
    validate -> schema -> synthesize -> ambiguous-relationship rewrite -> execute with repair -> normalize -> reply.
    Only input validation raises; every later failure becomes a reply-only turn.
    """

    def __init__(
        self,
        manager: Optional[ConnectionManager] = None,
        *,
        synthesizer: Optional[QuerySynthesizer] = None,
        introspector: Optional[SchemaIntrospector] = None,
        repair_engine: Optional[RepairEngine] = None,
        log_dir: Optional[str] = None,
        log_retain: int = DEFAULT_LOG_RETAIN,
    ) -> None:
        self.manager = manager or ConnectionManager()
        self.synthesizer = synthesizer or QuerySynthesizer()
        self.introspector = introspector or SchemaIntrospector(self.manager)
        self.repair_engine = repair_engine or RepairEngine()
        self.log_dir = log_dir
        self.log_retain = log_retain
        self.last_run_logger: Optional[RunLogger] = None

    def handle_turn(
        self,
        conversation: Sequence[ConversationMessage],
        new_user_text: Optional[str],
        credentials: Credentials,
        *,
        spinner=None,
        run_logger: Optional[RunLogger] = None,
    ) -> TurnReply:
        validate_turn(conversation, new_user_text, credentials)
        messages = list(conversation)
        if new_user_text and new_user_text.strip():
            messages.append(ConversationMessage("user", new_user_text.strip()))
        question = next((m.content for m in reversed(messages) if m.role == "user"), "")

        logger = run_logger or RunLogger(base_dir=self.log_dir, retain=self.log_retain)
        self.last_run_logger = logger
        logger.start(question, {"credentials": credentials.presence(), "history": len(conversation)})
        reset_usage_log()

        diagnostics: List[Diagnostic] = []
        timeline: List[Dict[str, Any]] = []
        try:
            reply = self._run(messages, credentials, diagnostics, timeline, logger, spinner)
        except QueryExecutionFailure as exc:
            timeline = exc.timeline
            reply = self._failure(exc, diagnostics)
        except Exception as exc:
            reply = self._failure(exc, diagnostics)
        finally:
            logger.log_usage(usage_totals())

        reply.timeline = timeline
        if timeline:
            logger.log_timeline(question, timeline)
        logger.finalize(
            "error" if reply.failed else "success",
            {
                "query": reply.query,
                "diagnostics": [d.as_dict() for d in reply.diagnostics],
                "rules": [entry.get("rule") for entry in timeline if entry.get("rule")],
            },
        )
        return reply

    def _failure(self, exc: BaseException, diagnostics: List[Diagnostic]) -> TurnReply:
        diagnostics.append(Diagnostic(stage="turn", message="turn failed", severity="error", detail=str(exc)))
        return TurnReply(reply_text=ERROR_REPLY.format(error=exc), diagnostics=diagnostics)

    def _stage(self, spinner, label: str) -> None:
        if spinner is not None:
            spinner.update(label)

    def _run(
        self,
        messages: List[ConversationMessage],
        credentials: Credentials,
        diagnostics: List[Diagnostic],
        timeline: List[Dict[str, Any]],
        logger: RunLogger,
        spinner,
    ) -> TurnReply:
        config = credentials.connection_config()

        self._stage(spinner, "Reading schema")
        schema_result = self.introspector.get_schema(config)
        diagnostics.extend(schema_result.diagnostics)
        schema = schema_result.value
        logger.log_event("schema", {"schema": schema.as_dict(), "ok": schema_result.ok})
        messages = merge_schema_message(messages, schema)

        self._stage(spinner, "Writing query")
        trace: Dict[str, Any] = {}
        synthesized = self.synthesizer.synthesize(messages, schema, credentials, trace=trace)
        diagnostics.extend(synthesized.diagnostics)
        query = synthesized.value
        logger.log_event(
            "synthesize",
            {"query": query.query_text, "explanation": query.explanation, "trace": trace,
             "diagnostics": [d.as_dict() for d in synthesized.diagnostics]},
        )

        prepared = self.repair_engine.prepare(query.query_text)
        diagnostics.extend(prepared.diagnostics)
        if prepared.diagnostics:
            logger.log_event("rewrite", {"before": query.query_text, "after": prepared.value})

        self._stage(spinner, "Running query")
        outcome_result = self.repair_engine.execute_with_repair(
            prepared.value, lambda q: self.manager.run(q, config=config)
        )
        diagnostics.extend(outcome_result.diagnostics)
        outcome = outcome_result.value
        timeline.extend(outcome.timeline())
        for attempt in outcome.attempts:
            logger.log_event("execute", attempt.as_dict())

        self._stage(spinner, "Building result")
        graph_result = to_graph(outcome.raw)
        diagnostics.extend(graph_result.diagnostics)
        graph = graph_result.value
        if not graph.links and outcome.raw.relationships:
            relinked = relink(graph, outcome.raw)
            diagnostics.extend(relinked.diagnostics)
            graph = relinked.value
        table = to_table(outcome.query, outcome.raw.records, outcome.raw.keys)
        logger.log_event(
            "normalize",
            {"raw": outcome.raw.summary(), "nodes": len(graph.nodes), "links": len(graph.links),
             "table_rows": len(table.rows) if table else None},
        )

        reply_text = compose_reply(query.explanation, graph, table)
        logger.log_event("reply", {"preview": preview(reply_text, 400)})
        return TurnReply(
            reply_text=reply_text,
            graph=graph,
            table=table,
            query=outcome.query,
            diagnostics=diagnostics,
        )


__all__ = [
    "ChatOrchestrator",
    "TurnReply",
    "compose_reply",
    "merge_schema_message",
    "render_markdown_table",
    "validate_turn",
    "DIRECTION_CAVEAT",
]
