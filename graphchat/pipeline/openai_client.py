from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_OPENAI_BASE_URL, DEFAULT_OPENAI_MODEL, LLM_TEMPERATURE

_client_singleton = None
_client_key: Optional[Tuple[str, Optional[str]]] = None
_client_lock = threading.Lock()
_USAGE_LOG = threading.local()


def _load_openai_client():
    try:
        from openai import OpenAI  # type: ignore
    except Exception as exc:  # pragma: no cover
        raise SystemExit("OpenAI client missing. Install with: pip install openai") from exc
    return OpenAI


def _openai_errors():
    try:
        from openai import APIStatusError, BadRequestError, NotFoundError  # type: ignore
        return (APIStatusError, BadRequestError, NotFoundError)
    except Exception:  # pragma: no cover
        return ()


def _is_temperature_unsupported(exc: Exception) -> bool:
    """Detect models that only allow the default temperature."""
    text = str(exc).lower()
    return "temperature" in text and "supported" in text


def _requires_fixed_temperature(model: str) -> bool:
    # Reasoning-style models only accept the default temperature (1).
    lowered = model.lower()
    return lowered.startswith(("o1", "o3", "o4")) or "gpt-5" in lowered


def _client(api_key: str, base_url: Optional[str] = None):
    """Return the shared client, rebuilding it when the key or base URL changes."""
    global _client_singleton, _client_key
    key = (api_key, base_url or DEFAULT_OPENAI_BASE_URL)
    with _client_lock:
        if _client_singleton is None or _client_key != key:
            OpenAI = _load_openai_client()
            _client_singleton = OpenAI(api_key=api_key, base_url=key[1]) if key[1] else OpenAI(api_key=api_key)
            _client_key = key
        return _client_singleton


def reset_clients() -> None:
    global _client_singleton, _client_key
    with _client_lock:
        _client_singleton = None
        _client_key = None


def reset_usage_log() -> None:
    log = getattr(_USAGE_LOG, "entries", None)
    if log is None:
        _USAGE_LOG.entries = []
    else:
        log.clear()


def record_usage(usage: Dict[str, Any]) -> None:
    prompt = int(usage.get("prompt_tokens", 0) or 0)
    completion = int(usage.get("completion_tokens", 0) or 0)
    total = int(usage.get("total_tokens", prompt + completion) or 0)
    log = getattr(_USAGE_LOG, "entries", None)
    if log is None:
        log = []
        _USAGE_LOG.entries = log
    log.append({"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": total})


def usage_totals() -> Dict[str, int]:
    log = getattr(_USAGE_LOG, "entries", []) or []
    totals = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    for entry in log:
        totals["prompt_tokens"] += int(entry.get("prompt_tokens", 0))
        totals["completion_tokens"] += int(entry.get("completion_tokens", 0))
        totals["total_tokens"] += int(entry.get("total_tokens", 0))
    return totals


def _usage_of(resp: Any) -> Optional[Dict[str, Any]]:
    usage_data = getattr(resp, "usage", None)
    if not usage_data:
        return None
    usage = {
        "prompt_tokens": getattr(usage_data, "prompt_tokens", 0),
        "completion_tokens": getattr(usage_data, "completion_tokens", 0),
        "total_tokens": getattr(usage_data, "total_tokens", 0),
    }
    record_usage(usage)
    return usage


def chat_complete(
    messages: Sequence[Dict[str, str]],
    *,
    api_key: str,
    base_url: Optional[str] = None,
    model: str = DEFAULT_OPENAI_MODEL,
    temperature: float = LLM_TEMPERATURE,
) -> Tuple[Any, Optional[Dict[str, Any]]]:
    """
    One non-streaming chat completion.

    Returns the provider response untouched (some OpenAI-compatible gateways hand back
    chunk lists or bare strings) together with token usage when reported.
    """
    temp = None if _requires_fixed_temperature(model) else temperature

    def _call(temp_override: Optional[float]):
        params: Dict[str, Any] = {"model": model, "messages": list(messages), "stream": False}
        if temp_override is not None:
            params["temperature"] = temp_override
        return _client(api_key, base_url).chat.completions.create(**params)

    try:
        resp = _call(temp)
    except _openai_errors() as exc:
        if _is_temperature_unsupported(exc) and temp is not None:
            try:
                resp = _call(None)
            except _openai_errors() as exc2:
                raise RuntimeError(f"OpenAI model '{model}' is not available: {exc2}") from exc2
        else:
            raise RuntimeError(f"OpenAI model '{model}' is not available: {exc}") from exc

    return resp, _usage_of(resp)


def list_models(api_key: str, base_url: Optional[str] = None) -> List[str]:
    try:
        page = _client(api_key, base_url).models.list()
        data = getattr(page, "data", None)
        items = data if data is not None else list(page)
        return [str(getattr(item, "id", item)) for item in items]
    except Exception:
        return []


__all__ = [
    "chat_complete",
    "list_models",
    "reset_clients",
    "reset_usage_log",
    "record_usage",
    "usage_totals",
    "DEFAULT_OPENAI_MODEL",
]
