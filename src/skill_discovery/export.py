# ABOUTME: Handles writing sampled skill assignments and run summaries to disk.
# ABOUTME: Uses one assignment vector per line with space-separated skill indices.

import json
from dataclasses import asdict
from pathlib import Path
from typing import List, Sequence

from src.common.schemas import SkillRunSummary


def write_skill_assignments(assignments: Sequence[Sequence[int]], path: Path) -> None:
    """Write each assignment vector on its own line, skill indices separated by spaces."""

    if len(assignments) == 0:
        raise ValueError("No skill assignments to write.")
    width = len(assignments[0])
    lines = []
    for vector in assignments:
        if len(vector) != width:
            raise ValueError(f"Assignment vectors differ in length ({len(vector)} vs {width}).")
        lines.append(" ".join(str(int(skill)) for skill in vector))

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def read_skill_assignments(path: Path) -> List[List[int]]:
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [[int(token) for token in line.split()] for line in lines if line.strip()]


def write_run_summary(summary: SkillRunSummary, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(summary), indent=2), encoding="utf-8")
