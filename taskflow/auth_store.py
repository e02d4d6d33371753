"""SQLite-backed user accounts with a global role."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

from taskflow.permissions import GLOBAL_ROLES, ROLE_DEVELOPER

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, email, name, role, created_at"


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'developer',
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        conn.commit()


def _row_to_user(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "name": row["name"],
        "role": row["role"] or ROLE_DEVELOPER,
        "created_at": row["created_at"],
    }


def create_user(
    db_path: str,
    *,
    email: str,
    password: str,
    name: str,
    role: str = ROLE_DEVELOPER,
) -> dict[str, Any] | None:
    if role not in GLOBAL_ROLES:
        role = ROLE_DEVELOPER
    password_hash = generate_password_hash(password)
    try:
        with sqlite3.connect(db_path) as conn:
            cur = conn.execute(
                "INSERT INTO users (email, password_hash, name, role) VALUES (?, ?, ?, ?)",
                (email.lower().strip(), password_hash, name.strip(), role),
            )
            conn.commit()
            user_id = int(cur.lastrowid)
    except sqlite3.IntegrityError:
        return None

    logger.info("Created user %s with role %s", user_id, role)
    return get_user_by_id(db_path, user_id)


def authenticate_user(db_path: str, *, email: str, password: str) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            f"SELECT {_USER_COLUMNS}, password_hash FROM users WHERE email = ?",
            (email.lower().strip(),),
        ).fetchone()

    if row is None:
        return None
    try:
        ok = check_password_hash(row["password_hash"], password)
    except ValueError:
        return None
    if not ok:
        return None
    return _row_to_user(row)


def get_user_by_id(db_path: str, user_id: int) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return _row_to_user(row)


def find_user_by_email(db_path: str, *, email: str) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?",
            (email.lower().strip(),),
        ).fetchone()
    if row is None:
        return None
    return _row_to_user(row)


def search_users_by_email(db_path: str, *, query: str, limit: int = 10) -> list[dict[str, Any]]:
    """Prefix match on email, used by the member picker."""
    cleaned = query.lower().strip()
    if not cleaned:
        return []
    # Match what was typed literally; % and _ are LIKE wildcards.
    pattern = cleaned.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email LIKE ? ESCAPE '\\' ORDER BY email LIMIT ?",
            (pattern, max(1, min(limit, 50))),
        ).fetchall()
    return [_row_to_user(row) for row in rows]


def update_user_role(db_path: str, *, user_id: int, role: str) -> bool:
    if role not in GLOBAL_ROLES:
        return False
    with sqlite3.connect(db_path) as conn:
        cur = conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        conn.commit()
        updated = cur.rowcount > 0
    if updated:
        logger.info("User %s role set to %s", user_id, role)
    return updated


def update_profile(db_path: str, *, user_id: int, name: str) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE users SET name = ? WHERE id = ?", (name.strip(), user_id))
        conn.commit()
    return get_user_by_id(db_path, user_id)
