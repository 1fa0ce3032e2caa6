from .orchestrator import ChatOrchestrator, TurnReply
from .connection import ConnectionManager, DatabaseError
from .schema_graph import SchemaIntrospector
from .synthesizer import QuerySynthesizer
from .rewriter import QueryRewriter, RewriteRule
from .repair import RepairEngine, RepairOutcome, QueryExecutionFailure
from .normalizer import to_graph, to_table, relink
from .response_parser import ChunkSequence, Direct, Structured, parse_response
from .models import (
    CanonicalGraph,
    ConnectionConfig,
    ConversationMessage,
    Credentials,
    InputValidationError,
    RawGraphResult,
    SchemaDescriptor,
    SynthesizedQuery,
    TableResult,
)
from .result import Diagnostic, Result
from .run_logger import RunLogger

__all__ = [
    "ChatOrchestrator",
    "TurnReply",
    "ConnectionManager",
    "DatabaseError",
    "SchemaIntrospector",
    "QuerySynthesizer",
    "QueryRewriter",
    "RewriteRule",
    "RepairEngine",
    "RepairOutcome",
    "QueryExecutionFailure",
    "to_graph",
    "to_table",
    "relink",
    "Direct",
    "ChunkSequence",
    "Structured",
    "parse_response",
    "CanonicalGraph",
    "ConnectionConfig",
    "ConversationMessage",
    "Credentials",
    "InputValidationError",
    "RawGraphResult",
    "SchemaDescriptor",
    "SynthesizedQuery",
    "TableResult",
    "Diagnostic",
    "Result",
    "RunLogger",
]
