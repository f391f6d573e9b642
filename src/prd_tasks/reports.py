"""
Progress reports over a set of tasks.

    progress_summary(tasks)        → ProgressSummary
    render_report(tasks, "markdown" | "csv" | "json")  → str

Completion is counted per task line, subtasks included. Only the first
assignee of a task is credited in the per-assignee breakdown.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models.task import Task

REPORT_FORMATS = ("markdown", "csv", "json")


def _percent(done: int, total: int) -> int:
    return round(done * 100 / total) if total else 0


@dataclass
class AssigneeProgress:
    assignee: str
    total: int = 0
    completed: int = 0

    @property
    def percent(self) -> int:
        return _percent(self.completed, self.total)


@dataclass
class ProgressSummary:
    total: int = 0
    completed: int = 0
    by_assignee: Dict[str, AssigneeProgress] = field(default_factory=dict)

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def percent(self) -> int:
        return _percent(self.completed, self.total)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "remaining": self.remaining,
            "completion_percent": self.percent,
            "by_assignee": [
                {
                    "assignee": a.assignee,
                    "total": a.total,
                    "completed": a.completed,
                    "completion_percent": a.percent,
                }
                for a in self.by_assignee.values()
            ],
        }


def progress_summary(tasks: Iterable[Task]) -> ProgressSummary:
    summary = ProgressSummary()
    for task in tasks:
        summary.total += 1
        if task.completed:
            summary.completed += 1
        if task.assignee:
            stats = summary.by_assignee.setdefault(task.assignee, AssigneeProgress(task.assignee))
            stats.total += 1
            if task.completed:
                stats.completed += 1
    return summary


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

def render_markdown_report(tasks: Iterable[Task], generated: Optional[datetime] = None) -> str:
    summary = progress_summary(tasks)
    generated = generated or datetime.now()
    lines: List[str] = [
        "# PRD Progress Report",
        "",
        f"**Generated:** {generated.strftime('%Y-%m-%d %H:%M')}",
        "",
        "## Overall Progress",
        "",
        f"- Total Tasks: {summary.total}",
        f"- Completed: {summary.completed}",
        f"- Remaining: {summary.remaining}",
        f"- Completion: {summary.percent}%",
    ]
    if summary.by_assignee:
        lines += [
            "",
            "## Progress by Assignee",
            "",
            "| Assignee | Total | Completed | Progress |",
            "|----------|-------|-----------|----------|",
        ]
        for stats in summary.by_assignee.values():
            lines.append(f"| @{stats.assignee} | {stats.total} | {stats.completed} | {stats.percent}% |")
    return "\n".join(lines) + "\n"


def render_csv_report(tasks: Iterable[Task]) -> str:
    """One row per task, for spreadsheets."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["id", "text", "completed", "assignee", "section", "document", "line"])
    for task in tasks:
        writer.writerow([
            task.id or "",
            task.text,
            "yes" if task.completed else "no",
            task.assignee or "",
            task.section or "",
            task.document.as_posix() if task.document else "",
            task.line + 1,
        ])
    return buf.getvalue()


def render_json_report(tasks: Iterable[Task], generated: Optional[datetime] = None) -> str:
    tasks = list(tasks)
    payload = {
        "generated": (generated or datetime.now()).isoformat(timespec="seconds"),
        "summary": progress_summary(tasks).to_dict(),
        "tasks": [
            {
                "id": t.id,
                "text": t.text,
                "completed": t.completed,
                "assignee": t.assignee,
                "section": t.section,
                "document": t.document.as_posix() if t.document else None,
                "line": t.line,
            }
            for t in tasks
        ],
    }
    return json.dumps(payload, indent=2)


def render_report(tasks: Iterable[Task], fmt: str = "markdown") -> str:
    if fmt == "markdown":
        return render_markdown_report(tasks)
    if fmt == "csv":
        return render_csv_report(tasks)
    if fmt == "json":
        return render_json_report(tasks)
    raise ValueError(f"Unknown report format '{fmt}', expected one of {', '.join(REPORT_FORMATS)}")
