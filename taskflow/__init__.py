"""
TaskFlow: projects, Kanban tasks, developer billing and notifications over SQLite.
Run the web app from project root: python app.py
"""

from pathlib import Path

from taskflow import auth_store, billing_store, notification_store, project_store
from taskflow.analytics import calculate_project_analytics, calculate_user_analytics
from taskflow.project_store import group_tasks_by_status


def init_all(db_path: str) -> None:
    """Create every table TaskFlow uses in one SQLite file."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    auth_store.init_db(db_path)
    project_store.init_db(db_path)
    billing_store.init_db(db_path)
    notification_store.init_db(db_path)


__all__ = [
    "init_all",
    "calculate_project_analytics",
    "calculate_user_analytics",
    "group_tasks_by_status",
]
