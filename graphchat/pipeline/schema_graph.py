from __future__ import annotations

from typing import Any, Dict, List, Optional

from .connection import ConnectionManager
from .models import ConnectionConfig, SchemaDescriptor
from .result import Result

LABELS_QUERY = "CALL db.labels()"
RELATIONSHIP_TYPES_QUERY = "CALL db.relationshipTypes()"


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def sample_query(label: str) -> str:
    return f"MATCH (n:{quote_identifier(label)}) RETURN n LIMIT 1"


def _first_column(result: Any) -> List[str]:
    return [str(record[0]) for record in result if record[0] is not None]


def _property_keys(node: Any) -> List[str]:
    keys = getattr(node, "keys", None)
    if callable(keys):
        return [str(k) for k in keys()]
    props = getattr(node, "properties", None)
    return [str(k) for k in props] if props else []


class SchemaIntrospector:
    """Labels, relationship types and one-sample property keys, read through a pooled session."""

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    def _labels_and_types(self, session) -> Dict[str, List[str]]:
        return {
            "labels": _first_column(session.run(LABELS_QUERY)),
            "types": _first_column(session.run(RELATIONSHIP_TYPES_QUERY)),
        }

    def _sample_properties(self, session, labels: List[str], result: Result) -> Dict[str, List[str]]:
        properties: Dict[str, List[str]] = {}
        for label in labels:
            try:
                record = session.run(sample_query(label)).single()
            except Exception as exc:
                result.note("schema", f"could not sample properties for label {label}", detail=str(exc))
                properties[label] = []
                continue
            properties[label] = _property_keys(record["n"]) if record is not None else []
        return properties

    def get_schema(self, config: Optional[ConnectionConfig] = None) -> Result[SchemaDescriptor]:
        result: Result[SchemaDescriptor] = Result(SchemaDescriptor())
        try:
            with self.manager.session(config) as session:
                found = self._labels_and_types(session)
                properties = self._sample_properties(session, found["labels"], result)
        except Exception as exc:
            return result.note("schema", "schema introspection failed", severity="error", detail=str(exc))
        result.value = SchemaDescriptor(
            node_labels=found["labels"], relationship_types=found["types"], node_properties=properties
        )
        return result

    def get_node_properties(self, config: Optional[ConnectionConfig] = None) -> Result[Dict[str, List[str]]]:
        result: Result[Dict[str, List[str]]] = Result({})
        try:
            with self.manager.session(config) as session:
                labels = _first_column(session.run(LABELS_QUERY))
                result.value = self._sample_properties(session, labels, result)
        except Exception as exc:
            result.value = {}
            result.note("schema", "node property sampling failed", severity="error", detail=str(exc))
        return result


__all__ = ["SchemaIntrospector", "sample_query", "quote_identifier", "LABELS_QUERY", "RELATIONSHIP_TYPES_QUERY"]
