from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parents[1] / "config.env"

if _ENV_PATH.exists():
    load_dotenv(_ENV_PATH)
else:
    load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


DEFAULT_OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4")
DEFAULT_OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
DEFAULT_OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY") or None
LLM_TEMPERATURE = 0.1

DEFAULT_NEO4J_URI: Optional[str] = os.getenv("NEO4J_URI") or None
DEFAULT_NEO4J_USERNAME: Optional[str] = os.getenv("NEO4J_USERNAME") or None
DEFAULT_NEO4J_PASSWORD: Optional[str] = os.getenv("NEO4J_PASSWORD") or None
DEFAULT_NEO4J_DATABASE: Optional[str] = os.getenv("NEO4J_DATABASE") or None

# Pool settings; no per-query timeout is configured.
DRIVER_MAX_CONNECTION_LIFETIME = 3 * 60 * 60
DRIVER_MAX_POOL_SIZE = 50
DRIVER_ACQUISITION_TIMEOUT = 2 * 60

FALLBACK_LABEL = os.getenv("GRAPHCHAT_FALLBACK_LABEL", "Character")
FALLBACK_QUERY = f"MATCH (n:{FALLBACK_LABEL}) RETURN n LIMIT 25"
AMBIGUOUS_RELATIONSHIPS: List[str] = _split_csv(os.getenv("GRAPHCHAT_AMBIGUOUS_RELATIONSHIPS", "妻子"))
RESULT_CAP = int(os.getenv("GRAPHCHAT_RESULT_CAP", "50"))

DEFAULT_LOG_DIR: Optional[str] = os.getenv("GRAPHCHAT_LOG_DIR") or None
DEFAULT_LOG_RETAIN = int(os.getenv("GRAPHCHAT_LOG_RETAIN", "20"))
