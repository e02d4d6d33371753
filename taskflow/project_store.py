"""SQLite-backed projects, project memberships and tasks."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from taskflow.permissions import PROJECT_ROLES, ROLE_ADMIN, ROLE_DEVELOPER
from taskflow.utils import now_iso

logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("active", "archived")
TASK_STATUSES = ("todo", "in-progress", "done")
TASK_PRIORITIES = ("low", "medium", "high")
BILLING_STATUSES = ("unbilled", "billed", "paid")
BILLING_CYCLES = ("weekly", "monthly", "project")
DEFAULT_CURRENCY = "USD"

_PROJECT_COLUMNS = (
    "id, name, description, status, created_at, deadline, task_count, admin_id, "
    "default_task_compensation, currency, billing_cycle"
)
_TASK_COLUMNS = (
    "t.id, t.project_id, t.title, t.description, t.status, t.priority, t.deadline, t.created_at, "
    "t.assignee_id, t.created_by, t.compensation, t.billing_status, t.completed_at, "
    "u.name AS assignee_name, u.email AS assignee_email, u.role AS assignee_role"
)


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL,
                deadline TEXT,
                task_count INTEGER NOT NULL DEFAULT 0,
                admin_id INTEGER NOT NULL,
                default_task_compensation REAL,
                currency TEXT,
                billing_cycle TEXT,
                FOREIGN KEY(admin_id) REFERENCES users(id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS project_members (
                project_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                project_role TEXT NOT NULL DEFAULT 'developer',
                added_at TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (project_id, user_id),
                FOREIGN KEY(project_id) REFERENCES projects(id),
                FOREIGN KEY(user_id) REFERENCES users(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_project_members_user_id ON project_members(user_id)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'todo',
                priority TEXT NOT NULL DEFAULT 'medium',
                deadline TEXT,
                created_at TEXT NOT NULL,
                assignee_id INTEGER,
                created_by INTEGER NOT NULL,
                compensation REAL NOT NULL DEFAULT 0,
                billing_status TEXT NOT NULL DEFAULT 'unbilled',
                completed_at TEXT,
                FOREIGN KEY(project_id) REFERENCES projects(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)")
        conn.commit()


def _list_members(conn: sqlite3.Connection, project_id: int) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT u.id, u.name, u.email, u.role, m.project_role
        FROM project_members m
        JOIN users u ON u.id = m.user_id
        WHERE m.project_id = ?
        ORDER BY m.rowid
        """,
        (project_id,),
    ).fetchall()
    return [
        {
            "id": row["id"],
            "name": row["name"],
            "email": row["email"],
            "global_role": row["role"] or ROLE_DEVELOPER,
            "project_role": row["project_role"],
        }
        for row in rows
    ]


def _row_to_project(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "status": row["status"],
        "created_at": row["created_at"],
        "deadline": row["deadline"],
        "task_count": row["task_count"],
        "admin_id": row["admin_id"],
        "default_task_compensation": row["default_task_compensation"],
        "currency": row["currency"],
        "billing_cycle": row["billing_cycle"],
        "members": _list_members(conn, row["id"]),
    }


def _row_to_task(row: sqlite3.Row) -> dict[str, Any]:
    assignee = None
    if row["assignee_id"] is not None and row["assignee_name"] is not None:
        assignee = {
            "id": row["assignee_id"],
            "name": row["assignee_name"],
            "email": row["assignee_email"],
            "role": row["assignee_role"] or ROLE_DEVELOPER,
        }
    return {
        "id": row["id"],
        "project_id": row["project_id"],
        "title": row["title"],
        "description": row["description"],
        "status": row["status"],
        "priority": row["priority"],
        "deadline": row["deadline"],
        "created_at": row["created_at"],
        "assignee_id": row["assignee_id"],
        "assignee": assignee,
        "created_by": row["created_by"],
        "compensation": row["compensation"],
        "billing_status": row["billing_status"],
        "completed_at": row["completed_at"],
    }


def is_member(project: dict[str, Any], user_id: int) -> bool:
    return any(m["id"] == user_id for m in project.get("members") or [])


# Projects


def create_project(
    db_path: str,
    *,
    creator: dict[str, Any],
    name: str,
    description: str = "",
    deadline: str | None = None,
    member_ids: Iterable[int] = (),
) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            """
            INSERT INTO projects (name, description, status, created_at, deadline, task_count, admin_id)
            VALUES (?, ?, 'active', ?, ?, 0, ?)
            """,
            (name.strip(), description.strip(), now_iso(), deadline, creator["id"]),
        )
        project_id = int(cur.lastrowid)
        conn.execute(
            "INSERT INTO project_members (project_id, user_id, project_role) VALUES (?, ?, ?)",
            (project_id, creator["id"], ROLE_ADMIN),
        )
        for member_id in dict.fromkeys(member_ids):
            if member_id == creator["id"]:
                continue
            exists = conn.execute("SELECT 1 FROM users WHERE id = ?", (member_id,)).fetchone()
            if exists is None:
                logger.warning("Skipping unknown member %s for new project %s", member_id, project_id)
                continue
            conn.execute(
                "INSERT INTO project_members (project_id, user_id, project_role) VALUES (?, ?, ?)",
                (project_id, member_id, ROLE_DEVELOPER),
            )
        conn.commit()

    logger.info("User %s created project %s", creator["id"], project_id)
    return get_project(db_path, project_id)


def get_project(db_path: str, project_id: int) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            return None
        return _row_to_project(conn, row)


def list_projects_for_user(db_path: str, *, user: dict[str, Any]) -> list[dict[str, Any]]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        if user.get("role") == ROLE_ADMIN:
            rows = conn.execute(f"SELECT {_PROJECT_COLUMNS} FROM projects ORDER BY id DESC").fetchall()
        else:
            rows = conn.execute(
                f"""
                SELECT {_PROJECT_COLUMNS}
                FROM projects
                WHERE admin_id = ?
                   OR id IN (SELECT project_id FROM project_members WHERE user_id = ?)
                ORDER BY id DESC
                """,
                (user["id"], user["id"]),
            ).fetchall()
        return [_row_to_project(conn, row) for row in rows]


def set_project_status(db_path: str, *, project_id: int, status: str) -> bool:
    if status not in PROJECT_STATUSES:
        return False
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute("UPDATE projects SET status = ? WHERE id = ?", (status, project_id))
        conn.commit()
        updated = cur.rowcount > 0
    if updated:
        logger.info("Project %s is now %s", project_id, status)
    return updated


def set_project_deadline(db_path: str, *, project_id: int, deadline: str | None) -> bool:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute("UPDATE projects SET deadline = ? WHERE id = ?", (deadline, project_id))
        conn.commit()
        return cur.rowcount > 0


def update_billing_settings(
    db_path: str,
    *,
    project_id: int,
    default_task_compensation: float,
    currency: str,
    billing_cycle: str,
) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            UPDATE projects
            SET default_task_compensation = ?, currency = ?, billing_cycle = ?
            WHERE id = ?
            """,
            (float(default_task_compensation), currency.upper(), billing_cycle, project_id),
        )
        conn.commit()
    return get_project(db_path, project_id)


def delete_project(db_path: str, *, project_id: int) -> tuple[bool, str]:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT status FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            return False, "Project not found"
        if row[0] == "archived":
            return False, "Archived projects cannot be deleted. Restore the project first."
        conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM project_members WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        conn.commit()
    logger.info("Deleted project %s", project_id)
    return True, "Project deleted"


# Members


def add_member(
    db_path: str,
    *,
    project_id: int,
    email: str,
    project_role: str = ROLE_DEVELOPER,
) -> tuple[bool, str, dict[str, Any] | None]:
    if project_role not in PROJECT_ROLES:
        return False, "Invalid project role", None
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        user = conn.execute(
            "SELECT id, name, email, role FROM users WHERE email = ?",
            (email.lower().strip(),),
        ).fetchone()
        if user is None:
            return False, "User not found", None
        existing = conn.execute(
            "SELECT 1 FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user["id"]),
        ).fetchone()
        if existing is not None:
            return False, "User is already a member of this project", None
        conn.execute(
            "INSERT INTO project_members (project_id, user_id, project_role) VALUES (?, ?, ?)",
            (project_id, user["id"], project_role),
        )
        conn.commit()

    logger.info("Added user %s to project %s as %s", user["id"], project_id, project_role)
    member = {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "global_role": user["role"] or ROLE_DEVELOPER,
        "project_role": project_role,
    }
    return True, "Member added", member


def remove_member(db_path: str, *, project_id: int, user_id: int) -> tuple[bool, str]:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT admin_id FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            return False, "Project not found"
        if row[0] == user_id:
            return False, "Cannot remove the project admin"
        cur = conn.execute(
            "DELETE FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id),
        )
        if cur.rowcount == 0:
            return False, "User is not a member of this project"
        conn.execute(
            "UPDATE tasks SET assignee_id = NULL WHERE project_id = ? AND assignee_id = ?",
            (project_id, user_id),
        )
        conn.commit()
    logger.info("Removed user %s from project %s", user_id, project_id)
    return True, "Member removed"


# Tasks


def create_task(
    db_path: str,
    *,
    project: dict[str, Any],
    creator_id: int,
    title: str,
    description: str = "",
    status: str = "todo",
    priority: str = "medium",
    deadline: str | None = None,
    assignee_id: int | None = None,
    compensation: float | None = None,
) -> dict[str, Any] | None:
    if compensation is None:
        compensation = project.get("default_task_compensation") or 0
    created_at = now_iso()
    completed_at = created_at if status == "done" else None
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute(
            """
            INSERT INTO tasks (
                project_id, title, description, status, priority, deadline, created_at,
                assignee_id, created_by, compensation, billing_status, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'unbilled', ?)
            """,
            (
                project["id"],
                title.strip(),
                description.strip(),
                status,
                priority,
                deadline,
                created_at,
                assignee_id,
                creator_id,
                float(compensation),
                completed_at,
            ),
        )
        task_id = int(cur.lastrowid)
        conn.execute("UPDATE projects SET task_count = task_count + 1 WHERE id = ?", (project["id"],))
        conn.commit()

    logger.info("User %s created task %s in project %s", creator_id, task_id, project["id"])
    return get_task(db_path, task_id)


def get_task(db_path: str, task_id: int) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks t LEFT JOIN users u ON u.id = t.assignee_id WHERE t.id = ?",
            (task_id,),
        ).fetchone()
    if row is None:
        return None
    return _row_to_task(row)


def list_tasks(db_path: str, *, project_id: int) -> list[dict[str, Any]]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"""
            SELECT {_TASK_COLUMNS}
            FROM tasks t
            LEFT JOIN users u ON u.id = t.assignee_id
            WHERE t.project_id = ?
            ORDER BY t.id DESC
            """,
            (project_id,),
        ).fetchall()
    return [_row_to_task(row) for row in rows]


def update_task_status(db_path: str, *, task_id: int, status: str) -> dict[str, Any] | None:
    """Move a task between board columns. Billing status is left alone."""
    task = get_task(db_path, task_id)
    if task is None:
        return None
    completed_at = task["completed_at"]
    if status == "done" and task["status"] != "done":
        completed_at = now_iso()
    elif status != "done" and task["status"] == "done":
        completed_at = None
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "UPDATE tasks SET status = ?, completed_at = ? WHERE id = ?",
            (status, completed_at, task_id),
        )
        conn.commit()
    logger.info("Task %s moved from %s to %s", task_id, task["status"], status)
    return get_task(db_path, task_id)


def update_task_assignee(db_path: str, *, task_id: int, assignee_id: int | None) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute("UPDATE tasks SET assignee_id = ? WHERE id = ?", (assignee_id, task_id))
        conn.commit()
        if cur.rowcount == 0:
            return None
    return get_task(db_path, task_id)


def update_task_deadline(db_path: str, *, task_id: int, deadline: str | None) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute("UPDATE tasks SET deadline = ? WHERE id = ?", (deadline, task_id))
        conn.commit()
        if cur.rowcount == 0:
            return None
    return get_task(db_path, task_id)


def delete_task(db_path: str, *, task_id: int) -> bool:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT project_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return False
        conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.execute(
            "UPDATE projects SET task_count = MAX(task_count - 1, 0) WHERE id = ?",
            (row[0],),
        )
        conn.commit()
    logger.info("Deleted task %s", task_id)
    return True


def group_tasks_by_status(tasks: Iterable[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Kanban columns, one per task status, in board order."""
    board: dict[str, list[dict[str, Any]]] = {status: [] for status in TASK_STATUSES}
    for task in tasks:
        board.setdefault(task.get("status") or "todo", []).append(task)
    return board
