from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import FALLBACK_QUERY, LLM_TEMPERATURE, RESULT_CAP
from .models import ConversationMessage, Credentials, SchemaDescriptor, SynthesizedQuery
from .openai_client import chat_complete
from .response_parser import parse_response
from .result import Result

CompletionFn = Callable[..., Tuple[Any, Optional[Dict[str, Any]]]]


class QuerySynthesizer:
    SYSTEM = """You are a helpful assistant that translates natural language questions into Neo4j Cypher queries.
Your task is to understand the user's question about graph data and generate an appropriate Cypher query.

Database Schema Information:
{schema}

Follow these guidelines:
1. Analyze the user's question to understand what they're asking about.
2. Use the provided schema information to create accurate queries; never invent labels or relationship types.
3. Generate a valid Cypher query that would answer their question.
4. Keep queries simple and focused on what the user is asking.
5. Return ONLY nodes and relationships that are relevant to the question.
6. Limit results to a reasonable number (at most {cap} primary entities) to avoid overwhelming visualizations.
7. Prefer returning whole nodes and relationships so their properties are included.
8. If you can't generate a query for the question, return a simple query like "MATCH (n) RETURN n LIMIT 5".

Your response must be ONLY the following JSON object:
{{
  "cypherQuery": "The Cypher query to execute",
  "explanation": "A brief explanation of what the query does"
}}
"""

    def __init__(
        self,
        *,
        completion_fn: Optional[CompletionFn] = None,
        fallback_query: str = FALLBACK_QUERY,
        result_cap: int = RESULT_CAP,
        temperature: float = LLM_TEMPERATURE,
    ) -> None:
        self.completion_fn = completion_fn or chat_complete
        self.fallback_query = fallback_query
        self.result_cap = result_cap
        self.temperature = temperature
        self.last_usage: Optional[Dict[str, Any]] = None

    def build_system_prompt(self, schema: SchemaDescriptor) -> str:
        return self.SYSTEM.format(schema=schema.describe(), cap=self.result_cap)

    def build_messages(self, messages: Sequence[ConversationMessage], schema: SchemaDescriptor) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.build_system_prompt(schema)}] + [m.as_dict() for m in messages]

    def fallback(self, reason: str) -> SynthesizedQuery:
        return SynthesizedQuery(query_text=self.fallback_query, explanation=reason)

    def synthesize(
        self,
        messages: Sequence[ConversationMessage],
        schema: SchemaDescriptor,
        credentials: Credentials,
        trace: Optional[dict] = None,
    ) -> Result[SynthesizedQuery]:
        prompt_messages = self.build_messages(messages, schema)
        if trace is not None:
            trace["model"] = credentials.model
            trace["message_count"] = len(prompt_messages)
        if not credentials.llm_api_key:
            reason = "No LLM API key was configured, so a default query is shown instead."
            return Result(self.fallback(reason)).note("synthesize", "LLM API key missing", severity="warning")
        try:
            raw, usage = self.completion_fn(
                prompt_messages,
                api_key=credentials.llm_api_key,
                base_url=credentials.llm_base_url,
                model=credentials.model,
                temperature=self.temperature,
            )
        except Exception as exc:
            reason = (
                "An error occurred while generating the query. Check the LLM API key and connection "
                "settings; a default query is shown instead."
            )
            return Result(self.fallback(reason)).note("synthesize", "LLM call failed", severity="warning", detail=str(exc))
        self.last_usage = usage
        if trace is not None:
            trace["raw"] = raw if isinstance(raw, str) else repr(raw)[:4000]

        try:
            parsed, strategy = parse_response(raw)
        except Exception as exc:
            parsed, strategy = None, None
            parse_error: Optional[str] = str(exc)
        else:
            parse_error = None
        if parsed is None:
            reason = "A valid query could not be extracted from the model response; a default query is shown instead."
            return Result(self.fallback(reason)).note(
                "synthesize", "unparsable LLM response", severity="warning", detail=parse_error
            )
        result: Result[SynthesizedQuery] = Result(parsed)
        result.note("synthesize", f"parsed with {strategy}", severity="info")
        return result


__all__ = ["QuerySynthesizer"]
