from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from .connection import ConnectionManager
from .models import ConversationMessage, Credentials, InputValidationError
from .openai_client import list_models
from .orchestrator import ChatOrchestrator
from .schema_graph import SchemaIntrospector

Response = Tuple[int, Dict[str, Any]]

# Current field name first, then the names older clients still send.
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "conversation": ("conversationHistory", "messages"),
    "llm_api_key": ("llmApiKey", "openaiApiKey"),
    "llm_base_url": ("llmBaseUrl", "openaiBaseUrl"),
    "model_name": ("modelName", "model"),
    "db_uri": ("dbUri", "neo4jUri"),
    "db_username": ("dbUsername", "neo4jUsername"),
    "db_password": ("dbPassword", "neo4jPassword"),
    "db_name": ("dbName", "neo4jDatabase"),
}


def _field(body: Mapping[str, Any], name: str) -> Any:
    for key in _FIELD_ALIASES[name]:
        value = body.get(key)
        if value not in (None, ""):
            return value
    return None


def credentials_from_body(body: Mapping[str, Any]) -> Credentials:
    values = {name: _field(body, name) for name in _FIELD_ALIASES if name != "conversation"}
    if values["db_name"] is None:
        values.pop("db_name")
    return Credentials(**values)


def conversation_from_body(body: Mapping[str, Any]) -> Tuple[List[ConversationMessage], Optional[str]]:
    """Split a request into prior messages and the new user text.

    Without `userText`, the trailing user message of the history is taken as the new turn.
    """
    raw = _field(body, "conversation") or []
    if not isinstance(raw, list):
        raise InputValidationError("conversationHistory must be a list of messages")
    messages = [ConversationMessage.from_dict(item) for item in raw]
    user_text = body.get("userText")
    if isinstance(user_text, str) and user_text.strip():
        return messages, user_text
    if messages and messages[-1].role == "user":
        return messages[:-1], messages[-1].content
    return messages, None


def handle_chat_request(body: Mapping[str, Any], orchestrator: Optional[ChatOrchestrator] = None) -> Response:
    if not isinstance(body, Mapping):
        return 400, {"message": "Request body must be a JSON object."}
    orchestrator = orchestrator or ChatOrchestrator()
    try:
        messages, user_text = conversation_from_body(body)
        credentials = credentials_from_body(body)
        reply = orchestrator.handle_turn(messages, user_text, credentials)
    except InputValidationError as exc:
        return 400, {"message": str(exc)}
    return 200, reply.as_dict()


def handle_schema_request(body: Mapping[str, Any], manager: Optional[ConnectionManager] = None) -> Response:
    if not isinstance(body, Mapping):
        return 400, {"error": "Request body must be a JSON object."}
    credentials = credentials_from_body(body)
    try:
        config = credentials.connection_config()
    except InputValidationError as exc:
        return 400, {"error": str(exc)}
    introspector = SchemaIntrospector(manager or ConnectionManager())
    result = introspector.get_schema(config)
    return 200, result.value.as_dict()


def handle_models_request(body: Mapping[str, Any], lister=list_models) -> Response:
    if not isinstance(body, Mapping):
        return 400, {"error": "Request body must be a JSON object."}
    credentials = credentials_from_body(body)
    if not credentials.llm_api_key:
        return 400, {"error": "LLM API key was not provided."}
    return 200, {"models": lister(credentials.llm_api_key, credentials.llm_base_url)}


__all__ = [
    "credentials_from_body",
    "conversation_from_body",
    "handle_chat_request",
    "handle_schema_request",
    "handle_models_request",
]
