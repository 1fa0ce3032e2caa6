from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import AMBIGUOUS_RELATIONSHIPS
from .models import RawGraphResult, RawRelationship
from .normalizer import DEFAULT_RELATIONSHIP_TYPE
from .result import Result
from .rewriter import QueryRewriter, has_directed_pattern

ExecuteFn = Callable[[str], RawGraphResult]

# Error text that means the driver could not read relationship identity fields.
# Phrased so that Cypher's own toString() echoed back in a syntax error does not match.
RELATIONSHIP_SHAPE_SIGNALS = (
    "reading 'tostring'",
    "tostring is not a function",
    "startnodeidentity",
    "endnodeidentity",
    "startnodeelementid",
    "endnodeelementid",
)

PLACEHOLDER_RELATIONSHIP_ID = "virtual-rel-1"


class QueryExecutionFailure(RuntimeError):
    def __init__(self, message: str, timeline: List[Dict[str, Any]], cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.timeline = timeline
        self.cause = cause


@dataclass
class Attempt:
    step: str
    query: str
    rule: Optional[str] = None
    ok: bool = True
    nodes: int = 0
    relationships: int = 0
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "rule": self.rule,
            "query": self.query,
            "ok": self.ok,
            "nodes": self.nodes,
            "relationships": self.relationships,
            "error": self.error,
        }


@dataclass
class RepairOutcome:
    raw: RawGraphResult
    query: str
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return bool(self.attempts) and self.query != self.attempts[0].query

    def timeline(self) -> List[Dict[str, Any]]:
        return [a.as_dict() for a in self.attempts]


def is_relationship_shape_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(signal in text for signal in RELATIONSHIP_SHAPE_SIGNALS)


def is_connectivity_error(exc: BaseException) -> bool:
    return bool(getattr(exc, "is_connectivity", False))


def _relationship_type_in(query: str) -> str:
    match = re.search(r"-\[[^\[\]]*?:\s*`?([^\]`|*{\s]+)", query)
    return match.group(1) if match else DEFAULT_RELATIONSHIP_TYPE


class RepairEngine:
    """
    Bounded rewrite-and-retry over one synthesized query:
    direct -> (relationship-shape error) node-only retry
    direct -> (empty result, directed pattern) reversed -> undirected
    """

    def __init__(self, rewriter: Optional[QueryRewriter] = None, *, ambiguous_labels: Sequence[str] = AMBIGUOUS_RELATIONSHIPS) -> None:
        self.rewriter = rewriter or QueryRewriter(ambiguous_labels)

    def prepare(self, query: str) -> Result[str]:
        outcome = self.rewriter.apply("force_undirected_for_label", query)
        result: Result[str] = Result(outcome.after)
        if outcome.changed:
            result.note("rewrite", "matched ambiguous relationship without direction", severity="info", detail=outcome.after)
        return result

    def _run(self, execute_fn: ExecuteFn, query: str, step: str, rule: Optional[str], attempts: List[Attempt]) -> RawGraphResult:
        attempt = Attempt(step=step, query=query, rule=rule)
        attempts.append(attempt)
        try:
            raw = execute_fn(query)
        except Exception as exc:
            attempt.ok = False
            attempt.error = str(exc)
            raise
        attempt.nodes = len(raw.nodes)
        attempt.relationships = len(raw.relationships)
        return raw

    def _node_only(self, query: str, execute_fn: ExecuteFn, original: Exception, attempts: List[Attempt]) -> Result[RepairOutcome]:
        node_query = self.rewriter.apply("strip_relationship_column", query).after
        if node_query == query:
            raise original
        try:
            raw = self._run(execute_fn, node_query, "node_only", "strip_relationship_column", attempts)
        except Exception:
            raise QueryExecutionFailure(str(original), [a.as_dict() for a in attempts], original) from original
        result: Result[RepairOutcome] = Result(RepairOutcome(raw=raw, query=node_query, attempts=attempts))
        result.note("repair", "relationship columns could not be read; re-ran the query for nodes only", detail=str(original))
        if len(raw.nodes) >= 2:
            raw.relationships = [
                RawRelationship(
                    id=PLACEHOLDER_RELATIONSHIP_ID,
                    type=_relationship_type_in(query),
                    start_node_id=raw.nodes[0].id,
                    end_node_id=raw.nodes[1].id,
                )
            ]
            result.note("repair", "added a placeholder relationship between the first two nodes", severity="info")
        return result

    def execute_with_repair(self, query: str, execute_fn: ExecuteFn) -> Result[RepairOutcome]:
        attempts: List[Attempt] = []
        try:
            raw = self._run(execute_fn, query, "direct", None, attempts)
        except Exception as exc:
            if is_relationship_shape_error(exc):
                return self._node_only(query, execute_fn, exc, attempts)
            raise

        result: Result[RepairOutcome] = Result(RepairOutcome(raw=raw, query=query, attempts=attempts))
        if raw.nodes or not has_directed_pattern(query):
            return result

        for step, rule in (("reversed", "reverse_direction"), ("undirected", "strip_direction")):
            candidate = self.rewriter.apply(rule, query).after
            if candidate == query:
                continue
            try:
                retry = self._run(execute_fn, candidate, step, rule, attempts)
            except Exception as exc:
                if is_connectivity_error(exc):
                    raise QueryExecutionFailure(str(exc), [a.as_dict() for a in attempts], exc) from exc
                result.note("repair", f"{step} retry failed", detail=str(exc))
                continue
            result.value = RepairOutcome(raw=retry, query=candidate, attempts=attempts)
            if retry.nodes:
                result.note("repair", f"empty result; {step} query returned data", severity="info", detail=candidate)
                return result
        result.note("repair", "no rewrite returned any nodes", severity="info")
        return result


__all__ = [
    "Attempt",
    "RepairEngine",
    "RepairOutcome",
    "QueryExecutionFailure",
    "is_connectivity_error",
    "is_relationship_shape_error",
    "RELATIONSHIP_SHAPE_SIGNALS",
    "PLACEHOLDER_RELATIONSHIP_ID",
]
