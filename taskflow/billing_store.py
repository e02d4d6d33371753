"""SQLite-backed developer bills and compensation reports.

Bill lifecycle is draft -> sent -> paid and only moves forward. Generating a
bill marks its tasks billed; paying it marks them paid; deleting a draft puts
them back to unbilled.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from taskflow import project_store
from taskflow.project_store import DEFAULT_CURRENCY
from taskflow.utils import now_iso, parse_iso, round_half_up

logger = logging.getLogger(__name__)

BILL_STATUSES = ("draft", "sent", "paid")

_BILL_COLUMNS = (
    "id, project_id, developer_id, developer_name, amount, currency, status, "
    "generated_at, paid_at, due_date, notes"
)


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bills (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                developer_id INTEGER NOT NULL,
                developer_name TEXT NOT NULL,
                amount INTEGER NOT NULL,
                currency TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                generated_at TEXT NOT NULL,
                paid_at TEXT,
                due_date TEXT,
                notes TEXT NOT NULL DEFAULT ''
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bill_tasks (
                bill_id INTEGER NOT NULL,
                task_id INTEGER NOT NULL,
                PRIMARY KEY (bill_id, task_id),
                FOREIGN KEY(bill_id) REFERENCES bills(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_bills_project_id ON bills(project_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_bills_developer_id ON bills(developer_id)")
        conn.commit()


def _bill_task_ids(conn: sqlite3.Connection, bill_id: int) -> list[int]:
    rows = conn.execute("SELECT task_id FROM bill_tasks WHERE bill_id = ? ORDER BY rowid", (bill_id,)).fetchall()
    return [row[0] for row in rows]


def _row_to_bill(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "project_id": row["project_id"],
        "developer_id": row["developer_id"],
        "developer_name": row["developer_name"],
        "amount": row["amount"],
        "currency": row["currency"],
        "status": row["status"],
        "generated_at": row["generated_at"],
        "paid_at": row["paid_at"],
        "due_date": row["due_date"],
        "notes": row["notes"] or "",
        "task_ids": _bill_task_ids(conn, row["id"]),
    }


def _completed_tasks_for(db_path: str, project_id: int, developer_id: int) -> list[dict[str, Any]]:
    tasks = project_store.list_tasks(db_path, project_id=project_id)
    return [t for t in tasks if t["assignee_id"] == developer_id and t["status"] == "done"]


def calculate_developer_compensation(
    db_path: str,
    *,
    project: dict[str, Any],
    developer_id: int,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    """Sum compensation over a developer's done tasks, optionally by completion window."""
    start = parse_iso(start_date)
    end = parse_iso(end_date)
    tasks = []
    for task in _completed_tasks_for(db_path, project["id"], developer_id):
        completed = parse_iso(task["completed_at"])
        if start and (completed is None or completed < start):
            continue
        if end and (completed is None or completed > end):
            continue
        tasks.append(task)
    return {
        "total_compensation": sum(t["compensation"] or 0 for t in tasks),
        "tasks": tasks,
        "currency": project.get("currency") or DEFAULT_CURRENCY,
    }


def list_unbilled_tasks(db_path: str, *, project_id: int, developer_id: int) -> list[dict[str, Any]]:
    return [
        t for t in _completed_tasks_for(db_path, project_id, developer_id)
        if t["billing_status"] == "unbilled"
    ]


def _placeholders(ids: list[int]) -> str:
    return ",".join("?" for _ in ids)


def _set_task_billing(conn: sqlite3.Connection, ids: list[int], *, old: str, new: str) -> int:
    if not ids:
        return 0
    cur = conn.execute(
        f"UPDATE tasks SET billing_status = ? WHERE id IN ({_placeholders(ids)}) AND billing_status = ?",
        (new, *ids, old),
    )
    return cur.rowcount


def generate_bill(
    db_path: str,
    *,
    project: dict[str, Any],
    developer: dict[str, Any],
    task_ids: Iterable[int],
    amount: float | None = None,
    notes: str | None = None,
    due_date: str | None = None,
) -> tuple[bool, str, dict[str, Any] | None]:
    """Create a draft bill and mark its tasks billed in one write transaction."""
    ids = list(dict.fromkeys(task_ids))
    if not ids:
        return False, "Select at least one task", None

    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        # Take the write lock before reading so two requests cannot bill the same task.
        conn.execute("BEGIN IMMEDIATE")
        rows = conn.execute(
            f"""
            SELECT id, compensation FROM tasks
            WHERE id IN ({_placeholders(ids)})
              AND project_id = ? AND assignee_id = ?
              AND status = 'done' AND billing_status = 'unbilled'
            """,
            (*ids, project["id"], developer["id"]),
        ).fetchall()
        eligible = {row["id"]: row["compensation"] or 0 for row in rows}
        missing = [task_id for task_id in ids if task_id not in eligible]
        if missing:
            conn.rollback()
            return False, f"Tasks are not unbilled completed work for this developer: {missing}", None

        if amount is None:
            amount = sum(eligible[task_id] for task_id in ids)
        amount_int = round_half_up(amount)
        if amount_int < 0:
            conn.rollback()
            return False, "Amount must not be negative", None

        cur = conn.execute(
            """
            INSERT INTO bills (
                project_id, developer_id, developer_name, amount, currency, status,
                generated_at, due_date, notes
            )
            VALUES (?, ?, ?, ?, ?, 'draft', ?, ?, ?)
            """,
            (
                project["id"],
                developer["id"],
                developer.get("name") or "",
                amount_int,
                project.get("currency") or DEFAULT_CURRENCY,
                now_iso(),
                due_date,
                notes or "",
            ),
        )
        bill_id = int(cur.lastrowid)
        conn.executemany(
            "INSERT INTO bill_tasks (bill_id, task_id) VALUES (?, ?)",
            [(bill_id, task_id) for task_id in ids],
        )
        _set_task_billing(conn, ids, old="unbilled", new="billed")
        conn.commit()

    logger.info("Generated bill %s for developer %s in project %s (%s)", bill_id, developer["id"], project["id"], amount_int)
    return True, "Bill generated", get_bill(db_path, bill_id)


def get_bill(db_path: str, bill_id: int) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(f"SELECT {_BILL_COLUMNS} FROM bills WHERE id = ?", (bill_id,)).fetchone()
        if row is None:
            return None
        return _row_to_bill(conn, row)


def list_bills_for_project(db_path: str, *, project_id: int) -> list[dict[str, Any]]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"SELECT {_BILL_COLUMNS} FROM bills WHERE project_id = ? ORDER BY id DESC",
            (project_id,),
        ).fetchall()
        return [_row_to_bill(conn, row) for row in rows]


def list_bills_for_developer(db_path: str, *, developer_id: int) -> list[dict[str, Any]]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"SELECT {_BILL_COLUMNS} FROM bills WHERE developer_id = ? ORDER BY id DESC",
            (developer_id,),
        ).fetchall()
        return [_row_to_bill(conn, row) for row in rows]


def update_bill_status(
    db_path: str,
    *,
    bill: dict[str, Any],
    status: str,
    paid_at: str | None = None,
) -> tuple[bool, str, dict[str, Any] | None]:
    if status not in BILL_STATUSES:
        return False, "Status must be draft, sent, or paid", None

    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute("SELECT status, paid_at FROM bills WHERE id = ?", (bill["id"],)).fetchone()
        if row is None:
            conn.rollback()
            return False, "Bill not found", None
        current = BILL_STATUSES.index(row["status"])
        target = BILL_STATUSES.index(status)
        if target < current:
            conn.rollback()
            return False, f"Bill cannot move from {row['status']} back to {status}", None
        if target == current:
            conn.rollback()
            return True, "Bill unchanged", get_bill(db_path, bill["id"])

        new_paid_at = row["paid_at"]
        if status == "paid" and not new_paid_at:
            new_paid_at = paid_at or now_iso()
        conn.execute(
            "UPDATE bills SET status = ?, paid_at = ? WHERE id = ?",
            (status, new_paid_at, bill["id"]),
        )
        if status == "paid":
            _set_task_billing(conn, _bill_task_ids(conn, bill["id"]), old="billed", new="paid")
        conn.commit()

    logger.info("Bill %s moved from %s to %s", bill["id"], row["status"], status)
    return True, "Bill updated", get_bill(db_path, bill["id"])


def delete_bill(db_path: str, *, bill: dict[str, Any]) -> tuple[bool, str]:
    with sqlite3.connect(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute("SELECT status FROM bills WHERE id = ?", (bill["id"],)).fetchone()
        if row is None:
            conn.rollback()
            return False, "Bill not found"
        if row[0] != "draft":
            conn.rollback()
            return False, "Only draft bills can be deleted"
        _set_task_billing(conn, _bill_task_ids(conn, bill["id"]), old="billed", new="unbilled")
        conn.execute("DELETE FROM bill_tasks WHERE bill_id = ?", (bill["id"],))
        conn.execute("DELETE FROM bills WHERE id = ?", (bill["id"],))
        conn.commit()
    logger.info("Deleted draft bill %s", bill["id"])
    return True, "Bill deleted"


def purge_project(db_path: str, *, project_id: int) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "DELETE FROM bill_tasks WHERE bill_id IN (SELECT id FROM bills WHERE project_id = ?)",
            (project_id,),
        )
        conn.execute("DELETE FROM bills WHERE project_id = ?", (project_id,))
        conn.commit()
