from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .utils import split_top_level

# -[...]-> / <-[...]- / -[...]- ; the bracket body never contains brackets itself.
_REL_PATTERN = re.compile(r"(<)?-\[([^\[\]]*)\]-(>)?")
# Bare arrows between two node patterns: (a)-->(b), (a)<--(b).
_BARE_PATTERN = re.compile(r"(\)\s*)(<)?--(>)?(\s*\()")
_RETURN_KEYWORD = re.compile(r"\bRETURN\b", re.IGNORECASE)
_RETURN_TAIL = re.compile(r"\b(ORDER\s+BY|SKIP|LIMIT|UNION)\b", re.IGNORECASE)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def return_clause(query: str) -> Optional[str]:
    """Text of the last RETURN clause, without ORDER BY / SKIP / LIMIT."""
    matches = list(_RETURN_KEYWORD.finditer(query or ""))
    if not matches:
        return None
    body = query[matches[-1].end() :]
    tail = _RETURN_TAIL.search(body)
    if tail:
        body = body[: tail.start()]
    return body.strip().rstrip(";").strip()


def _relationship_types(body: str) -> List[str]:
    if ":" not in body:
        return []
    type_part = body.split(":", 1)[1]
    type_part = re.split(r"[*{]", type_part, maxsplit=1)[0]
    return [t.strip().lstrip(":").strip("`").strip() for t in type_part.split("|") if t.strip()]


def _relationship_variable(body: str) -> Optional[str]:
    head = re.split(r"[:*{]", body, maxsplit=1)[0].strip()
    return head if _IDENTIFIER.match(head) else None


def relationship_variables(query: str) -> List[str]:
    names = [_relationship_variable(m.group(2)) for m in _REL_PATTERN.finditer(query or "")]
    return list(dict.fromkeys(n for n in names if n))


def has_directed_pattern(query: str) -> bool:
    for match in _REL_PATTERN.finditer(query or ""):
        if bool(match.group(1)) != bool(match.group(3)):
            return True
    return any(bool(m.group(2)) != bool(m.group(3)) for m in _BARE_PATTERN.finditer(query or ""))


class RewriteRule:
    """A single mechanical rewrite; `apply` returns the query unchanged when the rule does not fit."""

    name = "rule"

    def apply(self, query: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def applies(self, query: str) -> bool:
        return self.apply(query) != query


class ReverseDirection(RewriteRule):
    name = "reverse_direction"

    def apply(self, query: str) -> str:
        def _flip(match: re.Match) -> str:
            left, body, right = match.group(1), match.group(2), match.group(3)
            if left and not right:
                return f"-[{body}]->"
            if right and not left:
                return f"<-[{body}]-"
            return match.group(0)

        def _flip_bare(match: re.Match) -> str:
            pre, left, right, post = match.groups()
            if left and not right:
                return f"{pre}-->{post}"
            if right and not left:
                return f"{pre}<--{post}"
            return match.group(0)

        return _BARE_PATTERN.sub(_flip_bare, _REL_PATTERN.sub(_flip, query))


class StripDirection(RewriteRule):
    name = "strip_direction"

    def apply(self, query: str) -> str:
        flat = _REL_PATTERN.sub(lambda m: f"-[{m.group(2)}]-", query)
        return _BARE_PATTERN.sub(lambda m: f"{m.group(1)}--{m.group(4)}", flat)


class StripRelationshipColumn(RewriteRule):
    """Drop relationship variables from the RETURN clause so only node columns come back."""

    name = "strip_relationship_column"

    def apply(self, query: str) -> str:
        rel_vars = set(relationship_variables(query))
        clause = return_clause(query)
        if not rel_vars or not clause:
            return query
        distinct = ""
        items_text = clause
        if re.match(r"DISTINCT\b", clause, re.IGNORECASE):
            distinct = clause[: len("DISTINCT")] + " "
            items_text = clause[len("DISTINCT") :].strip()
        items = split_top_level(items_text)
        kept = [item for item in items if re.split(r"\s+AS\s+", item, flags=re.IGNORECASE)[0].strip() not in rel_vars]
        if len(kept) == len(items) or not kept:
            return query
        start = list(_RETURN_KEYWORD.finditer(query))[-1].end()
        pos = query.index(clause, start)
        return query[:pos] + distinct + ", ".join(kept) + query[pos + len(clause) :]


class ForceUndirectedForLabel(RewriteRule):
    """Relationship types whose direction carries no meaning are always matched undirected."""

    name = "force_undirected_for_label"

    def __init__(self, labels: Iterable[str]) -> None:
        self.labels = [label for label in labels if label]

    def apply(self, query: str) -> str:
        if not self.labels or not any(label in query for label in self.labels):
            return query

        def _undirect(match: re.Match) -> str:
            body = match.group(2)
            if any(label in _relationship_types(body) for label in self.labels):
                return f"-[{body}]-"
            return match.group(0)

        return _REL_PATTERN.sub(_undirect, query)


@dataclass
class RewriteOutcome:
    rule: str
    before: str
    after: str

    @property
    def changed(self) -> bool:
        return self.before != self.after


class QueryRewriter:
    def __init__(self, ambiguous_labels: Sequence[str] = (), rules: Optional[Iterable[RewriteRule]] = None) -> None:
        defaults: List[RewriteRule] = [
            ReverseDirection(),
            StripDirection(),
            StripRelationshipColumn(),
            ForceUndirectedForLabel(ambiguous_labels),
        ]
        self._rules: "OrderedDict[str, RewriteRule]" = OrderedDict()
        for rule in list(rules) if rules is not None else defaults:
            self.register(rule)

    def register(self, rule: RewriteRule) -> None:
        self._rules[rule.name] = rule

    def names(self) -> List[str]:
        return list(self._rules)

    def rule(self, name: str) -> RewriteRule:
        try:
            return self._rules[name]
        except KeyError:
            raise KeyError(f"unknown rewrite rule {name!r}") from None

    def apply(self, name: str, query: str) -> RewriteOutcome:
        return RewriteOutcome(rule=name, before=query, after=self.rule(name).apply(query))


__all__ = [
    "return_clause",
    "relationship_variables",
    "has_directed_pattern",
    "RewriteRule",
    "ReverseDirection",
    "StripDirection",
    "StripRelationshipColumn",
    "ForceUndirectedForLabel",
    "RewriteOutcome",
    "QueryRewriter",
]
