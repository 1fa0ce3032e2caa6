from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import (
    DEFAULT_NEO4J_DATABASE,
    DEFAULT_OPENAI_MODEL,
)

ROLES = ("system", "user", "assistant")


class InputValidationError(ValueError):
    """Rejected request input (missing credentials, nothing to answer)."""


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise InputValidationError(f"unsupported message role {self.role!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationMessage":
        if not isinstance(data, Mapping):
            raise InputValidationError("each message must be an object with role and content")
        return cls(role=str(data.get("role") or ""), content=str(data.get("content") or ""))

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


def _unique(items: Iterable[Any]) -> List[str]:
    return list(dict.fromkeys(str(item) for item in items if item is not None and str(item) != ""))


@dataclass
class SchemaDescriptor:
    node_labels: List[str] = field(default_factory=list)
    relationship_types: List[str] = field(default_factory=list)
    node_properties: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.node_labels = _unique(self.node_labels)
        self.relationship_types = _unique(self.relationship_types)
        self.node_properties = {str(label): _unique(props) for label, props in self.node_properties.items()}

    @property
    def is_empty(self) -> bool:
        return not self.node_labels and not self.relationship_types

    def list_properties(self, label: str) -> List[str]:
        return self.node_properties.get(label, [])

    def describe(self) -> str:
        label_lines = [
            f"- {label} (Properties: {', '.join(self.list_properties(label)) or 'none'})" for label in self.node_labels
        ]
        rel_lines = [f"- {rel}" for rel in self.relationship_types]
        return (
            "Node Labels:\n"
            + ("\n".join(label_lines) if label_lines else "- none")
            + "\n\nRelationship Types:\n"
            + ("\n".join(rel_lines) if rel_lines else "- none")
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "nodeLabels": list(self.node_labels),
            "relationshipTypes": list(self.relationship_types),
            "nodeProperties": {label: list(props) for label, props in self.node_properties.items()},
        }


@dataclass(frozen=True)
class SynthesizedQuery:
    query_text: str
    explanation: str

    def __post_init__(self) -> None:
        if not self.query_text or not self.query_text.strip():
            raise ValueError("query_text must be non-empty")


@dataclass
class RawNode:
    id: str
    labels: List[str] = field(default_factory=list)
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawRelationship:
    id: str
    type: str
    start_node_id: str
    end_node_id: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawGraphResult:
    """Entities pulled out of one query execution, plus the records they came from."""

    nodes: List[RawNode] = field(default_factory=list)
    relationships: List[RawRelationship] = field(default_factory=list)
    records: List[Dict[str, Any]] = field(default_factory=list)
    keys: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def summary(self) -> Dict[str, int]:
        return {"nodes": len(self.nodes), "relationships": len(self.relationships), "records": len(self.records)}


@dataclass
class CanonicalNode:
    id: str
    label: str
    properties: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "properties": dict(self.properties)}


@dataclass
class CanonicalLink:
    source: int
    target: int
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "properties": dict(self.properties),
        }
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class CanonicalGraph:
    nodes: List[CanonicalNode] = field(default_factory=list)
    links: List[CanonicalLink] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"nodes": [n.as_dict() for n in self.nodes], "links": [link.as_dict() for link in self.links]}


@dataclass
class TableResult:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"columns": list(self.columns), "rows": [dict(row) for row in self.rows]}


@dataclass(frozen=True)
class ConnectionConfig:
    uri: str
    username: str
    password: str
    database: Optional[str] = DEFAULT_NEO4J_DATABASE

    def redacted(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "username": "********" if self.username else "not provided",
            "password": "********" if self.password else "not provided",
            "database": self.database,
        }


@dataclass(frozen=True)
class Credentials:
    llm_api_key: Optional[str] = None
    db_uri: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    llm_base_url: Optional[str] = None
    model_name: Optional[str] = None
    db_name: Optional[str] = DEFAULT_NEO4J_DATABASE

    @property
    def model(self) -> str:
        return self.model_name or DEFAULT_OPENAI_MODEL

    def validate(self) -> None:
        if not self.llm_api_key:
            raise InputValidationError(
                "LLM API key was not provided. Configure a valid API key in the application settings."
            )
        self.validate_database()

    def validate_database(self) -> None:
        if not self.db_uri or not self.db_username or not self.db_password:
            raise InputValidationError(
                "Database connection parameters are incomplete. Provide the database URI, username and password."
            )

    def connection_config(self) -> ConnectionConfig:
        self.validate_database()
        return ConnectionConfig(
            uri=str(self.db_uri), username=str(self.db_username), password=str(self.db_password), database=self.db_name
        )

    def presence(self) -> Dict[str, Any]:
        return {
            "has_llm_key": bool(self.llm_api_key),
            "has_llm_base_url": bool(self.llm_base_url),
            "has_db_uri": bool(self.db_uri),
            "has_db_username": bool(self.db_username),
            "has_db_password": bool(self.db_password),
            "model": self.model,
        }


__all__ = [
    "ROLES",
    "InputValidationError",
    "ConversationMessage",
    "SchemaDescriptor",
    "SynthesizedQuery",
    "RawNode",
    "RawRelationship",
    "RawGraphResult",
    "CanonicalNode",
    "CanonicalLink",
    "CanonicalGraph",
    "TableResult",
    "ConnectionConfig",
    "Credentials",
]
