"""SQLite-backed per-user notifications about project and task events."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from taskflow.utils import now_iso

logger = logging.getLogger(__name__)

USER_ADDED = "user_added"
TASK_CREATED = "task_created"
TASK_ASSIGNED = "task_assigned"
TASK_UPDATED = "task_updated"
PROJECT_ARCHIVED = "project_archived"
PROJECT_RESTORED = "project_restored"

NOTIFICATION_TYPES = (
    USER_ADDED,
    TASK_CREATED,
    TASK_ASSIGNED,
    TASK_UPDATED,
    PROJECT_ARCHIVED,
    PROJECT_RESTORED,
)

_COLUMNS = "id, user_id, type, content_json, project_id, task_id, created_at, is_read"


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                content_json TEXT NOT NULL,
                project_id INTEGER NOT NULL,
                task_id INTEGER,
                created_at TEXT NOT NULL,
                is_read INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_notifications_user_id ON notifications(user_id, is_read)"
        )
        conn.commit()


def _row_to_notification(row: sqlite3.Row) -> dict[str, Any]:
    try:
        content = json.loads(row["content_json"] or "{}")
    except json.JSONDecodeError:
        content = {}
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "type": row["type"],
        "content": content,
        "project_id": row["project_id"],
        "task_id": row["task_id"],
        "created_at": row["created_at"],
        "is_read": bool(row["is_read"]),
    }


def create_notification(
    db_path: str,
    *,
    user_id: int,
    type: str,
    content: dict[str, Any],
    project_id: int,
    task_id: int | None = None,
) -> int | None:
    """Store one notification. Returns the new id, or None after logging a failure."""
    try:
        content_json = json.dumps(content, separators=(",", ":"), ensure_ascii=True)
        with sqlite3.connect(db_path) as conn:
            cur = conn.execute(
                """
                INSERT INTO notifications (user_id, type, content_json, project_id, task_id, created_at, is_read)
                VALUES (?, ?, ?, ?, ?, ?, 0)
                """,
                (user_id, type, content_json, project_id, task_id, now_iso()),
            )
            conn.commit()
            return int(cur.lastrowid)
    except (sqlite3.Error, TypeError, ValueError):
        logger.exception("Failed to create %s notification for user %s", type, user_id)
        return None


def create_project_notification(
    db_path: str,
    *,
    project: dict[str, Any],
    type: str,
    content: dict[str, Any],
    exclude_user_id: int | None = None,
    task_id: int | None = None,
) -> int:
    """Notify every project member except the actor. Returns how many were stored."""
    sent = 0
    for member in project.get("members") or []:
        if member["id"] == exclude_user_id:
            continue
        if create_notification(
            db_path,
            user_id=member["id"],
            type=type,
            content=content,
            project_id=project["id"],
            task_id=task_id,
        ) is not None:
            sent += 1
    return sent


def list_notifications(db_path: str, *, user_id: int, limit: int = 10, offset: int = 0) -> list[dict[str, Any]]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM notifications
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, max(1, min(limit, 100)), max(0, offset)),
        ).fetchall()
    return [_row_to_notification(row) for row in rows]


def unread_count(db_path: str, *, user_id: int) -> int:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        ).fetchone()
    return int(row[0])


def mark_read(db_path: str, *, user_id: int, notification_id: int) -> bool:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        conn.commit()
        return cur.rowcount > 0


def mark_all_read(db_path: str, *, user_id: int) -> int:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        conn.commit()
        return cur.rowcount


def delete_notification(db_path: str, *, user_id: int, notification_id: int) -> bool:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            "DELETE FROM notifications WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        conn.commit()
        return cur.rowcount > 0


def purge_project(db_path: str, *, project_id: int) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("DELETE FROM notifications WHERE project_id = ?", (project_id,))
        conn.commit()


def render_message(notification: dict[str, Any]) -> str:
    """One-line text for a notification, as shown in the notification menu."""
    c = notification.get("content") or {}
    kind = notification.get("type")
    if kind == USER_ADDED:
        return f"{c.get('new_member_name')} was added to {c.get('project_name')} by {c.get('adder_name')}"
    if kind == TASK_CREATED:
        return f"{c.get('creator_name')} created a new task: {c.get('task_title')} in {c.get('project_name')}"
    if kind == TASK_ASSIGNED:
        return f"{c.get('assigner_name')} assigned you a task: {c.get('task_title')} in {c.get('project_name')}"
    if kind == TASK_UPDATED:
        status = str(c.get("new_status") or "").replace("-", " ")
        return f"{c.get('updater_name')} moved task {c.get('task_title')} to {status}"
    if kind == PROJECT_ARCHIVED:
        return f"{c.get('actor_name')} archived project {c.get('project_name')}"
    if kind == PROJECT_RESTORED:
        return f"{c.get('actor_name')} restored project {c.get('project_name')}"
    return "You have a new notification"
