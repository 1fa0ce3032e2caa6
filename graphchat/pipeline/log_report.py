from __future__ import annotations

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

from .config import DEFAULT_LOG_DIR


def summarize(base_dir: str) -> Dict[str, object]:
    base = Path(base_dir)
    summaries = sorted(base.glob("**/summary.json"))
    status_counts: Counter = Counter()
    diagnostics: Counter = Counter()
    rules: Counter = Counter()

    for summary_file in summaries:
        try:
            data = json.loads(summary_file.read_text(encoding="utf-8"))
        except Exception:
            continue
        status_counts[data.get("status", "unknown")] += 1
        for diag in data.get("diagnostics", []) or []:
            if isinstance(diag, dict) and diag.get("severity") != "info":
                diagnostics[f"[{diag.get('stage')}] {diag.get('message', '')}"[:120]] += 1
        for rule in data.get("rules", []) or []:
            rules[rule] += 1

    return {
        "total_runs": len(summaries),
        "status_counts": dict(status_counts),
        "top_diagnostics": diagnostics.most_common(10),
        "top_rules": rules.most_common(10),
    }


def print_report(report: Dict[str, object]) -> None:
    print(f"Total runs: {report['total_runs']}")
    for status, count in report["status_counts"].items():  # type: ignore[union-attr]
        print(f"  {status}: {count}")
    if report["top_diagnostics"]:
        print("\nTop diagnostics:")
        for msg, count in report["top_diagnostics"]:  # type: ignore[union-attr]
            print(f"  ({count}) {msg}")
    if report["top_rules"]:
        print("\nRepair rules applied:")
        for rule, count in report["top_rules"]:  # type: ignore[union-attr]
            print(f"  ({count}) {rule}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize graphchat run logs.")
    parser.add_argument("--logs", default=DEFAULT_LOG_DIR or "graphchat-logs", help="Root directory containing run logs")
    args = parser.parse_args(argv)
    print_report(summarize(args.logs))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
