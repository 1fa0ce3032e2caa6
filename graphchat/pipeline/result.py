from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")

SEVERITIES = ("info", "warning", "error")


@dataclass(frozen=True)
class Diagnostic:
    stage: str
    message: str
    severity: str = "warning"
    detail: Optional[str] = None

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ValueError(f"unknown severity {self.severity!r}")

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"stage": self.stage, "severity": self.severity, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


@dataclass
class Result(Generic[T]):
    """A value plus everything that went wrong (or was worked around) producing it."""

    value: T
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(d.severity == "error" for d in self.diagnostics)

    def note(self, stage: str, message: str, *, severity: str = "warning", detail: Optional[str] = None) -> "Result[T]":
        self.diagnostics.append(Diagnostic(stage=stage, message=message, severity=severity, detail=detail))
        return self

    def extend(self, diagnostics: Iterable[Diagnostic]) -> "Result[T]":
        self.diagnostics.extend(diagnostics)
        return self

    def messages(self, stage: Optional[str] = None) -> List[str]:
        return [d.message for d in self.diagnostics if stage is None or d.stage == stage]


__all__ = ["Diagnostic", "Result", "SEVERITIES"]
