"""
Dashboard and project analytics: counts and chart-ready distributions over
projects and tasks already loaded from the stores.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from taskflow.utils import parse_iso, round_half_up, utc_today

STATUS_COLORS = {"todo": "#94a3b8", "in-progress": "#3b82f6", "done": "#22c55e"}
PRIORITY_COLORS = {"high": "#ef4444", "medium": "#f59e0b", "low": "#22c55e"}


def completion_rate(completed: int, total: int) -> int:
    """Whole-number percentage; 0 for an empty project."""
    if total <= 0:
        return 0
    return round_half_up(completed / total * 100)


def _count(tasks: List[Dict[str, Any]], key: str, value: Any) -> int:
    return sum(1 for t in tasks if t.get(key) == value)


def _status_distribution(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"name": "To Do", "value": _count(tasks, "status", "todo"), "color": STATUS_COLORS["todo"]},
        {"name": "In Progress", "value": _count(tasks, "status", "in-progress"), "color": STATUS_COLORS["in-progress"]},
        {"name": "Done", "value": _count(tasks, "status", "done"), "color": STATUS_COLORS["done"]},
    ]


def _priority_distribution(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"name": "High", "value": _count(tasks, "priority", "high"), "color": PRIORITY_COLORS["high"]},
        {"name": "Medium", "value": _count(tasks, "priority", "medium"), "color": PRIORITY_COLORS["medium"]},
        {"name": "Low", "value": _count(tasks, "priority", "low"), "color": PRIORITY_COLORS["low"]},
    ]


def calculate_user_analytics(
    projects: Iterable[Dict[str, Any]],
    tasks: Iterable[Dict[str, Any]],
) -> Dict[str, Any]:
    projects = list(projects)
    tasks = list(tasks)
    total = len(tasks)
    done = _count(tasks, "status", "done")
    assigned = sum(1 for t in tasks if t.get("assignee_id"))

    return {
        "total_projects": len(projects),
        "total_tasks": total,
        "completed_tasks": done,
        "in_progress_tasks": _count(tasks, "status", "in-progress"),
        "todo_tasks": _count(tasks, "status", "todo"),
        "completion_rate": completion_rate(done, total),
        "task_distribution": _status_distribution(tasks),
        "project_status_distribution": [
            {"name": "Active", "value": _count(projects, "status", "active"), "color": "#22c55e"},
            {"name": "Archived", "value": _count(projects, "status", "archived"), "color": "#94a3b8"},
        ],
        "priority_distribution": _priority_distribution(tasks),
        "assignment_distribution": [
            {"name": "Assigned", "value": assigned, "color": "#3b82f6"},
            {"name": "Unassigned", "value": total - assigned, "color": "#94a3b8"},
        ],
    }


def _assignee_distribution(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    counts: Dict[int, int] = {}
    names: Dict[int, str] = {}
    for t in tasks:
        assignee_id = t.get("assignee_id")
        if not assignee_id:
            continue
        counts[assignee_id] = counts.get(assignee_id, 0) + 1
        assignee = t.get("assignee") or {}
        names.setdefault(assignee_id, assignee.get("name") or "Unknown")

    out = [{"name": names[a_id], "value": n, "id": a_id} for a_id, n in counts.items()]
    unassigned = sum(1 for t in tasks if not t.get("assignee_id"))
    if unassigned:
        out.append({"name": "Unassigned", "value": unassigned, "id": "unassigned"})
    return out


def _completion_over_time(tasks: List[Dict[str, Any]], today: date, days: int = 7) -> List[Dict[str, Any]]:
    window = [today - timedelta(days=days - 1 - i) for i in range(days)]
    per_day: Dict[date, int] = {d: 0 for d in window}
    for t in tasks:
        if t.get("status") != "done":
            continue
        completed = parse_iso(t.get("completed_at"))
        if completed is not None and completed.date() in per_day:
            per_day[completed.date()] += 1
    return [{"date": d.isoformat(), "completed": per_day[d]} for d in window]


def calculate_project_analytics(
    project: Dict[str, Any],
    tasks: Iterable[Dict[str, Any]],
    today: Optional[date] = None,
) -> Dict[str, Any]:
    tasks = list(tasks)
    total = len(tasks)
    done = _count(tasks, "status", "done")
    return {
        "project_id": project.get("id"),
        "project_name": project.get("name"),
        "total_tasks": total,
        "completed_tasks": done,
        "in_progress_tasks": _count(tasks, "status", "in-progress"),
        "todo_tasks": _count(tasks, "status", "todo"),
        "completion_rate": completion_rate(done, total),
        "task_distribution": _status_distribution(tasks),
        "priority_distribution": _priority_distribution(tasks),
        "assignee_distribution": _assignee_distribution(tasks),
        "completion_over_time": _completion_over_time(tasks, today or utc_today()),
    }


def format_date(value: str) -> str:
    """Short chart label, e.g. 'Mar 5'."""
    parsed = parse_iso(value)
    if parsed is None:
        return value
    return f"{parsed.strftime('%b')} {parsed.day}"
