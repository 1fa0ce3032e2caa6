from __future__ import annotations

import json
import os
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DEFAULT_LOG_DIR, DEFAULT_LOG_RETAIN

QUESTION_PREVIEW_LIMIT = 2000


def _utc_timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _status_icon(ok: bool) -> str:
    return "✓" if ok else "✗"


def format_timeline(question: str, timeline: List[Dict[str, Any]]) -> str:
    """Render the execution attempts of one turn into a human-readable string for log files."""
    lines: List[str] = []
    lines.append("=" * 80)
    lines.append("TURN EXECUTION SUMMARY")
    lines.append("=" * 80)
    lines.append(f"Question: {question}")
    lines.append(f"Attempts: {len(timeline)}")

    for idx, entry in enumerate(timeline, start=1):
        ok = bool(entry.get("ok", True))
        step = entry.get("step", "?")
        rule = entry.get("rule")
        lines.append("")
        lines.append(f"┌─ ATTEMPT {idx}: {step.upper()}" + (f" ({rule})" if rule else ""))
        for query_line in str(entry.get("query", "")).strip().splitlines():
            lines.append(f"│    {query_line}")
        if ok:
            lines.append(f"│  Nodes: {entry.get('nodes', 0)}  Relationships: {entry.get('relationships', 0)}")
        else:
            error = str(entry.get("error") or "unknown error")
            if len(error) > 120:
                error = error[:117] + "..."
            lines.append(f"│  Error: {error}")
        found = ok and entry.get("nodes", 0)
        lines.append(f"└─ {_status_icon(ok)} {'data returned' if found else ('empty result' if ok else 'failed')}")

    lines.append("")
    lines.append("=" * 80)
    return "\n".join(lines)


class RunLogger:
    """
    Per-turn run artifacts (metadata, stage events, repair timeline, usage, summary).
    - Disabled unless a log directory is given or GRAPHCHAT_LOG_DIR is set.
    - Caps retained runs to avoid unbounded growth.
    """

    def __init__(self, base_dir: Optional[str] = None, retain: int = DEFAULT_LOG_RETAIN) -> None:
        env_dir = os.getenv("GRAPHCHAT_LOG_DIR") or DEFAULT_LOG_DIR
        chosen = base_dir or env_dir
        self.base_dir: Optional[Path] = Path(chosen) if chosen else None
        self.retain = max(1, retain)
        self.run_dir: Optional[Path] = None

    @property
    def enabled(self) -> bool:
        return self.base_dir is not None

    def start(self, question: str, params: Dict[str, Any]) -> Optional[Path]:
        """Create a new run directory and capture initial metadata."""
        if self.base_dir is None:
            return None
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            stamp = time.strftime("%Y%m%d-%H%M%S")
            slug = re.sub(r"[^a-zA-Z0-9]+", "-", question.strip())[:36].strip("-") or "turn"
            self.run_dir = self.base_dir / f"{stamp}-{slug}-{uuid.uuid4().hex[:6]}"
            self.run_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self.run_dir = None
            return None
        metadata = {
            "question": question[:QUESTION_PREVIEW_LIMIT],
            "params": params,
            "started_at": _utc_timestamp(),
        }
        self._write_json(self.run_dir / "metadata.json", metadata)
        return self.run_dir

    def log_event(self, stage: str, payload: Dict[str, Any]) -> None:
        if not self.run_dir:
            return
        entry = {"stage": stage, **payload, "logged_at": _utc_timestamp()}
        try:
            with (self.run_dir / "debug.jsonl").open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=False, default=str))
                fh.write("\n")
        except Exception:
            pass

    def log_timeline(self, question: str, timeline: List[Dict[str, Any]]) -> None:
        if not self.run_dir:
            return
        payload = {"question": question, "timeline": timeline, "logged_at": _utc_timestamp()}
        self._write_json(self.run_dir / "timeline.json", payload)
        try:
            (self.run_dir / "timeline.txt").write_text(format_timeline(question, timeline), encoding="utf-8")
        except Exception:
            pass

    def log_usage(self, usage: Dict[str, Any]) -> None:
        if not self.run_dir:
            return
        self._write_json(self.run_dir / "usage.json", {"usage": usage, "logged_at": _utc_timestamp()})

    def finalize(self, status: str, extra: Optional[Dict[str, Any]] = None) -> None:
        if not self.run_dir:
            return
        summary = {"status": status, "finished_at": _utc_timestamp()}
        if extra:
            summary.update(extra)
        self._write_json(self.run_dir / "summary.json", summary)
        self._prune_old_runs()

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        except Exception:
            # Logging must never block the turn.
            pass

    def _prune_old_runs(self) -> None:
        try:
            if self.base_dir is None or not self.base_dir.exists():
                return
            candidates = [p for p in self.base_dir.iterdir() if p.is_dir()]
            candidates.sort(key=lambda p: p.stat().st_mtime, reverse=True)
            for stale in candidates[self.retain :]:
                if self.run_dir and stale == self.run_dir:
                    continue
                shutil.rmtree(stale, ignore_errors=True)
        except Exception:
            pass


__all__ = ["RunLogger", "format_timeline"]
