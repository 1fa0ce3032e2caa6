from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from .api import handle_models_request, handle_schema_request
from .config import (
    DEFAULT_LOG_DIR,
    DEFAULT_NEO4J_DATABASE,
    DEFAULT_NEO4J_PASSWORD,
    DEFAULT_NEO4J_URI,
    DEFAULT_NEO4J_USERNAME,
    DEFAULT_OPENAI_API_KEY,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_OPENAI_MODEL,
)
from .connection import ConnectionManager
from .log_report import print_report, summarize
from .models import ConversationMessage, Credentials, InputValidationError
from .openai_client import usage_totals
from .orchestrator import ChatOrchestrator, TurnReply
from .run_logger import format_timeline
from .ui import Spinner, icon, style


def _add_llm_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--api-key", default=DEFAULT_OPENAI_API_KEY, help="LLM API key (default: OPENAI_API_KEY)")
    parser.add_argument("--base-url", default=DEFAULT_OPENAI_BASE_URL, help="LLM base URL (default: OPENAI_BASE_URL)")


def _add_db_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--uri", default=DEFAULT_NEO4J_URI, help="Neo4j URI (default: NEO4J_URI)")
    parser.add_argument("--username", default=DEFAULT_NEO4J_USERNAME, help="Neo4j user (default: NEO4J_USERNAME)")
    parser.add_argument("--password", default=DEFAULT_NEO4J_PASSWORD, help="Neo4j password (default: NEO4J_PASSWORD)")
    parser.add_argument("--database", default=DEFAULT_NEO4J_DATABASE, help="Neo4j database name")


def _credentials(args: argparse.Namespace) -> Credentials:
    return Credentials(
        llm_api_key=getattr(args, "api_key", None),
        llm_base_url=getattr(args, "base_url", None),
        model_name=getattr(args, "model", None),
        db_uri=args.uri,
        db_username=args.username,
        db_password=args.password,
        db_name=args.database,
    )


def _db_body(args: argparse.Namespace) -> Dict[str, Any]:
    return {"dbUri": args.uri, "dbUsername": args.username, "dbPassword": args.password, "dbName": args.database}


def read_history(path: str) -> List[ConversationMessage]:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise InputValidationError("history file must hold a JSON list of {role, content} messages")
    return [ConversationMessage.from_dict(item) for item in data]


def print_reply(reply: TurnReply, question: str, *, as_json: bool, verbose: bool, color: bool) -> None:
    if as_json:
        print(json.dumps(reply.as_dict(), indent=2, ensure_ascii=False, default=str))
        return
    print(reply.reply_text)
    if reply.graph is not None and reply.graph.nodes:
        print(f"\n{icon('graph', color)} {len(reply.graph.nodes)} nodes, {len(reply.graph.links)} links")
    if verbose:
        if reply.timeline:
            print("\n" + format_timeline(question, reply.timeline))
        if reply.query:
            print("\n" + style("Cypher:", "sky", color, bold=True))
            print("  " + reply.query)
        for diag in reply.diagnostics:
            marker = icon("warn", color) if diag.severity != "info" else icon("dot", color)
            print(f"{marker} {diag}" + (f": {diag.detail}" if diag.detail else ""))


def _turn(
    orchestrator: ChatOrchestrator,
    history: List[ConversationMessage],
    question: str,
    credentials: Credentials,
    spinner: Spinner,
) -> TurnReply:
    spinner.start("Starting turn")
    try:
        reply = orchestrator.handle_turn(history, question, credentials, spinner=spinner)
    except Exception:
        spinner.stop()
        raise
    if reply.failed:
        spinner.stop(f"{icon('cross', False)} Turn failed.", color="red")
    else:
        spinner.stop()
    return reply


def cmd_chat(args: argparse.Namespace) -> int:
    credentials = _credentials(args)
    history = read_history(args.history) if args.history else []
    color = sys.stdout.isatty() and not args.json
    spinner = Spinner(enabled=color)
    with ConnectionManager() as manager:
        orchestrator = ChatOrchestrator(manager, log_dir=args.log_dir)
        if not args.interactive:
            if not args.question:
                print("error: --question is required unless --interactive is given", file=sys.stderr)
                return 1
            reply = _turn(orchestrator, history, args.question, credentials, spinner)
            print_reply(reply, args.question, as_json=args.json, verbose=args.verbose, color=color)
            if args.verbose and orchestrator.last_run_logger and orchestrator.last_run_logger.run_dir:
                print(f"\nRun log: {orchestrator.last_run_logger.run_dir}")
            return 1 if reply.failed else 0

        while True:
            try:
                question = input(style("you> ", "mauve", color, bold=True)).strip()
            except (EOFError, KeyboardInterrupt):
                print()
                return 0
            if not question:
                continue
            if question in {":q", "exit", "quit"}:
                return 0
            reply = _turn(orchestrator, history, question, credentials, spinner)
            print_reply(reply, question, as_json=args.json, verbose=args.verbose, color=color)
            print()
            history.append(ConversationMessage("user", question))
            history.append(ConversationMessage("assistant", reply.reply_text))


def cmd_schema(args: argparse.Namespace) -> int:
    with ConnectionManager() as manager:
        status, body = handle_schema_request(_db_body(args), manager)
    if status != 200:
        print(f"error: {body.get('error')}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(body, indent=2, ensure_ascii=False))
        return 0
    print("Node Labels:")
    for label in body["nodeLabels"]:
        props = body["nodeProperties"].get(label) or []
        print(f"  - {label}" + (f" ({', '.join(props)})" if props else ""))
    print("Relationship Types:")
    for rel in body["relationshipTypes"]:
        print(f"  - {rel}")
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    status, body = handle_models_request({"llmApiKey": args.api_key, "llmBaseUrl": args.base_url})
    if status != 200:
        print(f"error: {body.get('error')}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(body, indent=2))
    else:
        for model in body["models"]:
            print(model)
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    print_report(summarize(args.logs))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ask questions about a Neo4j graph in natural language.")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="Ask a question (or start an interactive session)")
    chat.add_argument("--question", "-q", help="Natural language question")
    chat.add_argument("--history", help="JSON file with prior conversation messages")
    chat.add_argument("--interactive", "-i", action="store_true", help="Keep the conversation going across turns")
    chat.add_argument("--model", default=DEFAULT_OPENAI_MODEL, help="LLM model name (default: OPENAI_MODEL or gpt-4)")
    chat.add_argument("--log-dir", default=DEFAULT_LOG_DIR, help="Write per-turn run logs here (default: GRAPHCHAT_LOG_DIR)")
    chat.add_argument("--json", action="store_true", help="Print the wire-format response")
    chat.add_argument("--verbose", action="store_true", help="Print the executed query and diagnostics")
    _add_llm_flags(chat)
    _add_db_flags(chat)
    chat.set_defaults(func=cmd_chat)

    schema = sub.add_parser("schema", help="Show labels, relationship types and sampled properties")
    schema.add_argument("--json", action="store_true")
    _add_db_flags(schema)
    schema.set_defaults(func=cmd_schema)

    models = sub.add_parser("models", help="List models offered by the LLM provider")
    models.add_argument("--json", action="store_true")
    _add_llm_flags(models)
    models.set_defaults(func=cmd_models)

    report = sub.add_parser("report", help="Summarize retained run logs")
    report.add_argument("--logs", default=DEFAULT_LOG_DIR or "graphchat-logs")
    report.set_defaults(func=cmd_report)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except InputValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if getattr(args, "verbose", False):
            usage = usage_totals()
            print(
                f"\nToken usage → prompt: {usage['prompt_tokens']}, "
                f"completion: {usage['completion_tokens']}, total: {usage['total_tokens']}",
                file=sys.stderr,
            )


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
