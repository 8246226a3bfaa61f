"""Conversion between typed chapter ranges ("1-3, 5") and 0-based index lists."""

from __future__ import annotations

from typing import Iterable, List, Optional


def _to_index(token: str) -> Optional[int]:
    try:
        return int(token.strip()) - 1
    except ValueError:
        return None


def parse_chapter_range(range_value: str, total_chapters: int) -> List[int]:
    """
    Parse a comma-separated range string into sorted, unique 0-based indices.

    Tokens are either a single 1-based number or a "start-end" pair in any
    order ("8-5" is the same as "5-8"). Malformed or out-of-bounds values are
    dropped silently.
    """
    selected: set[int] = set()

    for part in range_value.split(","):
        bounds = part.strip().split("-")
        if len(bounds) == 1 and bounds[0]:
            idx = _to_index(bounds[0])
            if idx is not None and 0 <= idx < total_chapters:
                selected.add(idx)
        elif len(bounds) == 2:
            start, end = _to_index(bounds[0]), _to_index(bounds[1])
            if start is None or end is None:
                continue
            for i in range(min(start, end), max(start, end) + 1):
                if 0 <= i < total_chapters:
                    selected.add(i)

    return sorted(selected)


def _format_run(start: int, end: int) -> str:
    if start == end:
        return str(start + 1)
    return f"{start + 1}-{end + 1}"


def format_chapter_range(indices: Iterable[int]) -> str:
    """Collapse 0-based indices into a compact 1-based range string, e.g. "1-3,5"."""
    ordered = sorted(set(indices))
    if not ordered:
        return ""

    runs: List[str] = []
    run_start = run_end = ordered[0]
    for idx in ordered[1:]:
        if idx == run_end + 1:
            run_end = idx
            continue
        runs.append(_format_run(run_start, run_end))
        run_start = run_end = idx
    runs.append(_format_run(run_start, run_end))

    return ",".join(runs)
