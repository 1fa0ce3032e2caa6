from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .models import SynthesizedQuery
from .utils import safe_json_loads

DEFAULT_EXPLANATION = "No explanation was provided for this query."

_QUERY_KEYS = ("cypherQuery", "cypher_query", "cypher", "query")
_EXPLANATION_KEYS = ("explanation", "reason", "description")

_FENCED_JSON = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_FENCED_CYPHER = re.compile(r"```(?:cypher)?\s*(MATCH[\s\S]*?;?)\s*```", re.IGNORECASE)
_BRACE_GREEDY = re.compile(r"\{[\s\S]*\}")
_BRACE_LAZY = re.compile(r"\{[\s\S]*?\}")
_QUERY_LITERAL = re.compile(r"""["']?cypherQuery["']?\s*[:=]\s*"((?:[^"\\]|\\.)*)\"""")
_EXPLANATION_LITERAL = re.compile(r"""["']?explanation["']?\s*[:=]\s*"((?:[^"\\]|\\.)*)\"""")
_EXPLANATION_LINE = re.compile(r"(?:explanation|解释)\s*[:：]\s*([\s\S]*?)(?=```|$)", re.IGNORECASE)


@dataclass(frozen=True)
class Direct:
    text: str


@dataclass(frozen=True)
class ChunkSequence:
    fragments: Tuple[str, ...]


@dataclass(frozen=True)
class Structured:
    query_text: str
    explanation: str


ParsedLLMResponse = Union[Direct, ChunkSequence, Structured]


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _first_choice(obj: Any) -> Any:
    choices = _get(obj, "choices") or []
    return choices[0] if choices else None


def _chunk_text(chunk: Any) -> str:
    if isinstance(chunk, str):
        return chunk
    choice = _first_choice(chunk)
    delta = _get(choice, "delta") if choice is not None else None
    content = _get(delta, "content") if delta is not None else None
    return content or ""


def classify_response(raw: Any) -> ParsedLLMResponse:
    """Sort a provider reply into one of the three shapes it shows up in."""
    if isinstance(raw, str):
        return Direct(raw)
    if isinstance(raw, (list, tuple)):
        return ChunkSequence(tuple(_chunk_text(chunk) for chunk in raw))
    if isinstance(raw, Mapping) and any(key in raw for key in _QUERY_KEYS) and "choices" not in raw:
        data = _pick_fields(raw)
        if data:
            return Structured(*data)
        return Direct(json.dumps(dict(raw), ensure_ascii=False, default=str))
    choice = _first_choice(raw)
    if choice is not None:
        delta = _get(choice, "delta")
        if delta is not None and _get(choice, "message") is None:
            return ChunkSequence((_get(delta, "content") or "",))
        message = _get(choice, "message")
        return Direct(str(_get(message, "content") or ""))
    return Direct("" if raw is None else str(raw))


def _pick_fields(data: Any) -> Optional[Tuple[str, str]]:
    if not isinstance(data, Mapping):
        return None
    query = next((data[k] for k in _QUERY_KEYS if isinstance(data.get(k), str) and data[k].strip()), None)
    if not query:
        return None
    explanation = next((data[k] for k in _EXPLANATION_KEYS if isinstance(data.get(k), str) and data[k].strip()), None)
    return query.strip(), (explanation or DEFAULT_EXPLANATION).strip()


def _from_whole_body(text: str) -> Optional[Tuple[str, str]]:
    try:
        return _pick_fields(json.loads(text))
    except ValueError:
        return None


def _from_fenced_json(text: str) -> Optional[Tuple[str, str]]:
    for block in _FENCED_JSON.findall(text):
        picked = _pick_fields(safe_json_loads(block))
        if picked:
            return picked
    return None


def _from_brace_span(text: str) -> Optional[Tuple[str, str]]:
    for pattern in (_BRACE_GREEDY, _BRACE_LAZY):
        match = pattern.search(text)
        if match:
            picked = _pick_fields(safe_json_loads(match.group(0)))
            if picked:
                return picked
    return None


def _unescape(literal: str) -> str:
    try:
        return json.loads(f'"{literal}"')
    except ValueError:
        return literal


def _from_literal(text: str) -> Optional[Tuple[str, str]]:
    match = _QUERY_LITERAL.search(text)
    if not match or not match.group(1).strip():
        return None
    explanation = _EXPLANATION_LITERAL.search(text)
    return _unescape(match.group(1)).strip(), (_unescape(explanation.group(1)).strip() if explanation else DEFAULT_EXPLANATION)


def _from_fenced_cypher(text: str) -> Optional[Tuple[str, str]]:
    match = _FENCED_CYPHER.search(text)
    if not match:
        return None
    explanation = _EXPLANATION_LINE.search(text)
    expl = explanation.group(1).strip() if explanation and explanation.group(1).strip() else DEFAULT_EXPLANATION
    return match.group(1).strip(), expl


# Tried in order; the first strategy that yields a non-empty query wins.
STRATEGIES: List[Tuple[str, Callable[[str], Optional[Tuple[str, str]]]]] = [
    ("json_body", _from_whole_body),
    ("fenced_json", _from_fenced_json),
    ("brace_span", _from_brace_span),
    ("query_literal", _from_literal),
    ("fenced_cypher", _from_fenced_cypher),
]


def parse_text(text: str) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    """Return the parsed query and the name of the strategy that produced it."""
    body = (text or "").strip()
    if not body:
        return None, None
    for name, strategy in STRATEGIES:
        picked = strategy(body)
        if picked and picked[0]:
            return SynthesizedQuery(query_text=picked[0], explanation=picked[1]), name
    return None, None


def _resolve_direct(parsed: Direct) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    return parse_text(parsed.text)


def _resolve_chunks(parsed: ChunkSequence) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    return parse_text("".join(parsed.fragments))


def _resolve_structured(parsed: Structured) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    if not parsed.query_text.strip():
        return None, None
    return SynthesizedQuery(parsed.query_text.strip(), parsed.explanation or DEFAULT_EXPLANATION), "structured"


_RESOLVERS: Dict[type, Callable[[Any], Tuple[Optional[SynthesizedQuery], Optional[str]]]] = {
    Direct: _resolve_direct,
    ChunkSequence: _resolve_chunks,
    Structured: _resolve_structured,
}


def resolve(parsed: ParsedLLMResponse) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    return _RESOLVERS[type(parsed)](parsed)


def parse_response(raw: Any) -> Tuple[Optional[SynthesizedQuery], Optional[str]]:
    return resolve(classify_response(raw))


__all__ = [
    "DEFAULT_EXPLANATION",
    "Direct",
    "ChunkSequence",
    "Structured",
    "ParsedLLMResponse",
    "STRATEGIES",
    "classify_response",
    "parse_text",
    "resolve",
    "parse_response",
]
