from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import (
    CanonicalGraph,
    CanonicalLink,
    CanonicalNode,
    RawGraphResult,
    RawNode,
    RawRelationship,
    TableResult,
)
from .result import Result
from .rewriter import return_clause

DEFAULT_NODE_LABEL = "Node"
DEFAULT_RELATIONSHIP_TYPE = "RELATED_TO"

_PROPERTY_ACCESS = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\.[A-Za-z_][A-Za-z0-9_]*")
_ALIAS = re.compile(r"\bAS\b", re.IGNORECASE)


# Driver entities are recognised by shape so that records from the neo4j driver
# and plain test doubles go through the same path.
def _is_relationship(value: Any) -> bool:
    return hasattr(value, "start_node") and hasattr(value, "end_node") and hasattr(value, "type")


def _is_node(value: Any) -> bool:
    return hasattr(value, "labels") and (hasattr(value, "element_id") or hasattr(value, "id"))


def _is_path(value: Any) -> bool:
    return hasattr(value, "nodes") and hasattr(value, "relationships") and not hasattr(value, "labels")


def _entity_id(entity: Any) -> str:
    if entity is None:
        return ""
    element_id = getattr(entity, "element_id", None)
    if element_id not in (None, ""):
        return str(element_id)
    legacy = getattr(entity, "id", None)
    return "" if legacy is None else str(legacy)


def _properties(entity: Any) -> Dict[str, Any]:
    props = getattr(entity, "properties", None)
    if isinstance(props, Mapping):
        return dict(props)
    items = getattr(entity, "items", None)
    if callable(items):
        return dict(items())
    return {}


def _record_to_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, Mapping):
        return dict(record)
    return {key: record[key] for key in record.keys()}


class _EntityCollector:
    def __init__(self) -> None:
        self.nodes: "OrderedDict[str, RawNode]" = OrderedDict()
        self.relationships: "OrderedDict[str, RawRelationship]" = OrderedDict()
        self._pending_rels: List[Any] = []

    def visit(self, value: Any) -> None:
        if value is None:
            return
        if _is_relationship(value):
            self._pending_rels.append(value)
        elif _is_node(value):
            self._add_node(value)
        elif _is_path(value):
            for node in value.nodes:
                self._add_node(node)
            self._pending_rels.extend(value.relationships)
        elif isinstance(value, (list, tuple)):
            for item in value:
                self.visit(item)

    def _add_node(self, node: Any) -> None:
        node_id = _entity_id(node)
        if node_id in self.nodes:
            return
        self.nodes[node_id] = RawNode(id=node_id, labels=[str(lbl) for lbl in (node.labels or [])], properties=_properties(node))

    def finish(self) -> None:
        for rel in self._pending_rels:
            rel_id = _entity_id(rel) or f"rel-{len(self.relationships) + 1}"
            if rel_id in self.relationships:
                continue
            start_id = _entity_id(getattr(rel, "start_node", None))
            end_id = _entity_id(getattr(rel, "end_node", None))
            self.relationships[rel_id] = RawRelationship(
                id=rel_id,
                type=str(getattr(rel, "type", None) or DEFAULT_RELATIONSHIP_TYPE),
                start_node_id=start_id,
                end_node_id=end_id,
                properties=_properties(rel),
            )
        self._pending_rels = []


def collect_entities(records: Iterable[Any]) -> RawGraphResult:
    """Pull every node and relationship (including those inside paths and lists) out of a record set."""
    collector = _EntityCollector()
    rows: List[Dict[str, Any]] = []
    for record in records:
        row = _record_to_dict(record)
        rows.append(row)
        for value in row.values():
            collector.visit(value)
    collector.finish()
    keys = list(rows[0].keys()) if rows else []
    return RawGraphResult(
        nodes=list(collector.nodes.values()),
        relationships=list(collector.relationships.values()),
        records=rows,
        keys=keys,
    )


def display_label(node: RawNode) -> str:
    return node.labels[0] if node.labels else DEFAULT_NODE_LABEL


def to_graph(raw: RawGraphResult) -> Result[CanonicalGraph]:
    graph = CanonicalGraph()
    index: Dict[str, int] = {}
    for node in raw.nodes:
        if node.id in index:
            continue
        index[node.id] = len(graph.nodes)
        graph.nodes.append(CanonicalNode(id=node.id, label=display_label(node), properties=dict(node.properties)))

    result: Result[CanonicalGraph] = Result(graph)
    dropped: List[str] = []
    for rel in raw.relationships:
        source = index.get(rel.start_node_id)
        target = index.get(rel.end_node_id)
        if source is None or target is None:
            dropped.append(rel.id)
            continue
        graph.links.append(
            CanonicalLink(
                source=source,
                target=target,
                type=rel.type or DEFAULT_RELATIONSHIP_TYPE,
                properties=dict(rel.properties),
                id=rel.id,
            )
        )
    if dropped:
        result.note(
            "normalize",
            f"dropped {len(dropped)} relationship(s) whose endpoints are not in the result",
            detail=", ".join(dropped[:10]),
        )
    return result


def relink(graph: CanonicalGraph, raw: RawGraphResult) -> Result[CanonicalGraph]:
    """Second pass for results whose links all went missing: match endpoints on textual ids."""
    result: Result[CanonicalGraph] = Result(graph)
    if graph.links or not raw.relationships:
        return result
    index = {str(node.id).strip(): pos for pos, node in enumerate(graph.nodes)}
    for rel in raw.relationships:
        if not rel.start_node_id or not rel.end_node_id:
            result.note("relink", f"skipped relationship {rel.id} with missing endpoint ids")
            continue
        source = index.get(str(rel.start_node_id).strip())
        target = index.get(str(rel.end_node_id).strip())
        if source is None or target is None:
            result.note("relink", f"no node index for relationship {rel.id}")
            continue
        graph.links.append(
            CanonicalLink(
                source=source,
                target=target,
                type=rel.type or DEFAULT_RELATIONSHIP_TYPE,
                properties=dict(rel.properties),
                id=rel.id or f"rel-{source}-{target}",
            )
        )
    result.note("relink", f"manually linked {len(graph.links)} relationship(s)", severity="info")
    return result


def looks_like_projection(query_text: str) -> bool:
    clause = return_clause(query_text)
    if clause is None:
        return False
    return bool(_PROPERTY_ACCESS.search(clause) or _ALIAS.search(clause))


def _flatten(value: Any) -> Any:
    if _is_node(value) or _is_relationship(value):
        return _properties(value)
    if isinstance(value, (list, tuple)):
        return [_flatten(item) for item in value]
    return value


def to_table(query_text: str, records: List[Any], keys: Optional[List[str]] = None) -> Optional[TableResult]:
    """Project records into a table; `keys` fixes the column order when the driver reported it."""
    if not records or not looks_like_projection(query_text):
        return None
    rows_in = [_record_to_dict(record) for record in records]
    columns = list(dict.fromkeys(keys or rows_in[0].keys()))
    rows = [{column: _flatten(row.get(column)) for column in columns} for row in rows_in]
    return TableResult(columns=columns, rows=rows)


__all__ = [
    "DEFAULT_NODE_LABEL",
    "DEFAULT_RELATIONSHIP_TYPE",
    "collect_entities",
    "display_label",
    "to_graph",
    "relink",
    "looks_like_projection",
    "to_table",
]
