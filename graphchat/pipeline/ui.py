from __future__ import annotations

import sys
import threading
import time
from typing import List, Optional

_ANSI = {
    "mauve": "\033[38;5;141m",
    "peach": "\033[38;5;209m",
    "sky": "\033[38;5;117m",
    "teal": "\033[38;5;37m",
    "yellow": "\033[38;5;221m",
    "green": "\033[38;5;114m",
    "red": "\033[38;5;203m",
    "white": "\033[38;5;255m",
    "gray": "\033[38;5;245m",
    "dim": "\033[38;5;240m",
    "reset": "\033[0m",
    "bold": "\033[1m",
    "italic": "\033[3m",
}


def style(text: str, color: str, enabled: bool, *, italic: bool = False, bold: bool = False) -> str:
    if not enabled:
        return text
    prefix = (_ANSI["bold"] if bold else "") + (_ANSI["italic"] if italic else "") + _ANSI.get(color, "")
    if not prefix:
        return text
    return f"{prefix}{text}{_ANSI['reset']}"


def icon(name: str, enabled: bool = True) -> str:
    icons = {
        "check": ("✓", "green"),
        "cross": ("✗", "red"),
        "arrow": ("➤", "mauve"),
        "dot": ("●", "gray"),
        "warn": ("⚠", "peach"),
        "graph": ("◉", "teal"),
        "table": ("▤", "sky"),
    }
    char, color = icons.get(name, ("?", "white"))
    return style(char, color, enabled)


# Labels the orchestrator reports, in turn order.
TURN_STAGES: List[str] = ["Reading schema", "Writing query", "Running query", "Building result"]


class Spinner:
    """Single-line terminal spinner showing which stage of the turn is running."""

    _FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

    def __init__(self, enabled: bool = True, color: str = "mauve") -> None:
        self.enabled = enabled and sys.stdout.isatty()
        self.color = color
        self._text = ""
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self, initial: str = "") -> None:
        self._text = initial
        self._stop.clear()
        if not self.enabled:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def update(self, text: str) -> None:
        with self._lock:
            self._text = text

    def stop(self, final: Optional[str] = None, color: Optional[str] = None) -> None:
        if self.enabled:
            self._stop.set()
            if self._thread:
                self._thread.join(timeout=0.5)
            sys.stdout.write("\r\033[K")
            sys.stdout.flush()
        if final:
            print(style(final, color or "green", self.enabled, bold=True))

    def _line(self, frame: int) -> str:
        spin = style(self._FRAMES[frame % len(self._FRAMES)], self.color, self.enabled, bold=True)
        parts = []
        current = TURN_STAGES.index(self._text) if self._text in TURN_STAGES else -1
        for idx, label in enumerate(TURN_STAGES):
            if idx < current:
                parts.append(style(f"✓ {label}", "green", self.enabled))
            elif idx == current:
                parts.append(style(label, "white", self.enabled, bold=True))
            else:
                parts.append(style(label, "dim", self.enabled))
        if current < 0 and self._text:
            parts.append(style(self._text, "gray", self.enabled, italic=True))
        return f"{spin} " + " → ".join(parts)

    def _run(self) -> None:
        frame = 0
        while not self._stop.is_set():
            with self._lock:
                line = self._line(frame)
            sys.stdout.write(f"\r{line}\033[K")
            sys.stdout.flush()
            frame += 1
            time.sleep(0.08)


__all__ = ["Spinner", "TURN_STAGES", "style", "icon"]
