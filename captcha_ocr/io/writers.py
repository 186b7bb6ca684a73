"""Result writers for the CLI (JSON for one solve, JSONL for evaluation runs)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..pipeline.schemas import SolveResult


def write_json(path: Path, data: Any, *, indent: int = 2) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=indent), encoding="utf-8")


def write_jsonl(path: Path, rows: Iterable[Dict[str, Any]]) -> int:
    """Write one JSON object per line and return the number of rows written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")
            count += 1
    return count


def eval_row(
    file_name: str, expected: str, result: Optional[SolveResult] = None, *, error: Optional[str] = None
) -> Dict[str, Any]:
    """Flatten one evaluated image into a report row."""
    if result is None:
        return {"file": file_name, "expected": expected, "error": error, "correct": False}
    return {
        "file": file_name,
        "expected": expected,
        "solution": result.solution,
        "outcome": result.outcome,
        "strategy": result.strategy,
        "attempts": len(result.attempts),
        "correct": result.solution == expected,
    }
