"""Presentation-free view model for the month grid and the day panel.

A grid cell shows at most ``limit`` tasks (CELL_TASK_LIMIT, 15) and flags
when that many exist; the day panel always lists every task. The limit is
purely a display truncation, the snapshot is never trimmed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Mapping, Optional, Sequence

from daygrid.calendar_grid import build_weeks, in_month, same_date
from daygrid.config import CELL_TASK_LIMIT
from daygrid.utils import day_key

from .backends import Task


@dataclass
class DayCell:
    date: date
    key: str
    in_month: bool
    is_today: bool
    tasks: List[Task] = field(default_factory=list)
    total: int = 0
    limit: int = CELL_TASK_LIMIT

    @property
    def limit_reached(self) -> bool:
        return self.total >= self.limit

    @property
    def limit_label(self) -> str:
        return f"{min(self.total, self.limit)}/{self.limit}"


@dataclass
class DayPanel:
    key: str
    tasks: List[Task]

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def completed(self) -> int:
        return sum(1 for t in self.tasks if t.done)


def month_cells(anchor: date, snapshot: Mapping[str, Sequence[Task]],
                today: Optional[date] = None, limit: int = CELL_TASK_LIMIT) -> List[List[DayCell]]:
    today = today or date.today()
    rows: List[List[DayCell]] = []
    for week in build_weeks(anchor):
        row = []
        for d in week:
            key = day_key(d)
            tasks = list(snapshot.get(key, []))
            row.append(DayCell(
                date=d,
                key=key,
                in_month=in_month(d, anchor),
                is_today=same_date(d, today),
                tasks=tasks[:limit],
                total=len(tasks),
                limit=limit,
            ))
        rows.append(row)
    return rows


def day_panel(snapshot: Mapping[str, Sequence[Task]], key: str) -> DayPanel:
    return DayPanel(key=key, tasks=list(snapshot.get(key, [])))
