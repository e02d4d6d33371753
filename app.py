"""TaskFlow Flask app: projects, Kanban tasks, billing and notifications.

Run from project root:
    python app.py
"""

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request, session as flask_session

from taskflow import analytics, auth_store, billing_store, init_all, notification_store, permissions, project_store
from taskflow.logging_setup import setup_logging
from taskflow.notification_store import (
    PROJECT_ARCHIVED,
    PROJECT_RESTORED,
    TASK_ASSIGNED,
    TASK_CREATED,
    TASK_UPDATED,
    USER_ADDED,
)
from taskflow.utils import normalize_iso

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("APP_SECRET_KEY", "dev-only-change-me")
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SECURE"] = os.environ.get("SESSION_COOKIE_SECURE", "0") == "1"
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)

AUTH_USER_KEY = "auth_user_id"
MIN_PASSWORD_LEN = 8
MAX_NAME_LEN = 100
MAX_DESCRIPTION_LEN = 1000
MAX_NOTES_LEN = 1000
SELF_SERVICE_ROLES = {permissions.ROLE_DEVELOPER, permissions.ROLE_PROJECT_MANAGER}

DEFAULT_DB_PATH = str(Path("instance") / "taskflow.db")


def _db_path() -> str:
    return os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH)


def _ensure_db() -> None:
    init_all(_db_path())


def _require_user_id() -> int | None:
    user_id = flask_session.get(AUTH_USER_KEY)
    return user_id if isinstance(user_id, int) else None


def _get_current_user() -> dict[str, Any] | None:
    user_id = _require_user_id()
    if user_id is None:
        return None
    _ensure_db()
    return auth_store.get_user_by_id(_db_path(), user_id)


def _auth_required_error():
    return jsonify({"error": "Authentication required"}), 401


def _error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _archived_error():
    return _error("Project is archived. Restore it to change tasks.", 409)


def _parse_date_field(data: dict[str, Any], key: str) -> tuple[bool, str | None]:
    """(ok, iso_or_none). Missing or empty means None."""
    raw = data.get(key)
    if raw is None or raw == "":
        return True, None
    normalized = normalize_iso(str(raw))
    if normalized is None:
        return False, None
    return True, normalized


def _parse_money(value: Any) -> float | None:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed < 0 or parsed != parsed:
        return None
    return parsed


def _load_project(user: dict[str, Any], project_id: int):
    """Return (project, None) or (None, error_response)."""
    project = project_store.get_project(_db_path(), project_id)
    if project is None:
        return None, _error("Project not found", 404)
    if not permissions.can_view_project(user, project):
        return None, _error("Access denied", 403)
    return project, None


def _load_task(user: dict[str, Any], task_id: int):
    """Return (task, project, None) or (None, None, error_response)."""
    task = project_store.get_task(_db_path(), task_id)
    if task is None:
        return None, None, _error("Task not found", 404)
    project, err = _load_project(user, task["project_id"])
    if err is not None:
        return None, None, err
    return task, project, None


def _load_bill(user: dict[str, Any], bill_id: int):
    bill = billing_store.get_bill(_db_path(), bill_id)
    if bill is None:
        return None, None, _error("Bill not found", 404)
    project = project_store.get_project(_db_path(), bill["project_id"])
    if project is None:
        return None, None, _error("Project not found", 404)
    if not permissions.can_view_project(user, project):
        return None, None, _error("Access denied", 403)
    if not permissions.can_manage_billing(user, project):
        return None, None, _error("Permission denied", 403)
    return bill, project, None


@app.route("/healthz")
def healthz():
    return jsonify({"ok": True})


# Auth


@app.route("/api/auth/me")
def api_auth_me():
    user = _get_current_user()
    if user is None:
        return jsonify({"authenticated": False, "user": None})
    return jsonify({"authenticated": True, "user": user})


@app.route("/api/auth/register", methods=["POST"])
def api_auth_register():
    _ensure_db()
    data = request.get_json() or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", "")).strip()
    name = str(data.get("name", "")).strip() or email.split("@")[0]
    role = str(data.get("role") or permissions.ROLE_DEVELOPER).strip().lower()

    if "@" not in email or len(email) < 5:
        return _error("Valid email is required")
    if len(password) < MIN_PASSWORD_LEN:
        return _error(f"Password must be at least {MIN_PASSWORD_LEN} characters")
    if len(name) > MAX_NAME_LEN:
        return _error(f"Name must be {MAX_NAME_LEN} characters or fewer")
    if role not in SELF_SERVICE_ROLES:
        return _error("Role must be developer or project-manager")

    user = auth_store.create_user(_db_path(), email=email, password=password, name=name, role=role)
    if user is None:
        return _error("Email already registered", 409)

    flask_session.permanent = True
    flask_session[AUTH_USER_KEY] = user["id"]
    return jsonify({"ok": True, "user": user})


@app.route("/api/auth/login", methods=["POST"])
def api_auth_login():
    _ensure_db()
    data = request.get_json() or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", "")).strip()

    user = auth_store.authenticate_user(_db_path(), email=email, password=password)
    if user is None:
        logger.warning("Failed login for %s", email)
        return _error("Invalid credentials", 401)

    flask_session.permanent = True
    flask_session[AUTH_USER_KEY] = user["id"]
    return jsonify({"ok": True, "user": user})


@app.route("/api/auth/logout", methods=["POST"])
def api_auth_logout():
    flask_session.pop(AUTH_USER_KEY, None)
    return jsonify({"ok": True})


@app.route("/api/profile", methods=["POST"])
def api_profile_update():
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    data = request.get_json() or {}
    name = str(data.get("name", "")).strip()
    if not name or len(name) > MAX_NAME_LEN:
        return _error(f"Name must be 1-{MAX_NAME_LEN} characters")
    updated = auth_store.update_profile(_db_path(), user_id=user["id"], name=name)
    return jsonify({"ok": True, "user": updated})


# Users


@app.route("/api/users/search")
def api_users_search():
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    query = request.args.get("email", "", type=str).strip()
    if len(query) < 2:
        return jsonify({"items": []})
    return jsonify({"items": auth_store.search_users_by_email(_db_path(), query=query)})


@app.route("/api/users/<int:user_id>/role", methods=["POST"])
def api_user_role(user_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    if not permissions.can_update_user_role(user):
        return _error("Only admins can update user roles", 403)
    data = request.get_json() or {}
    role = str(data.get("role", "")).strip().lower()
    if role not in permissions.GLOBAL_ROLES:
        return _error("Role must be admin, project-manager, or developer")
    if not auth_store.update_user_role(_db_path(), user_id=user_id, role=role):
        return _error("User not found", 404)
    return jsonify({"ok": True, "user": auth_store.get_user_by_id(_db_path(), user_id)})


# Projects


@app.route("/api/projects")
def api_projects_list():
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    return jsonify({"items": project_store.list_projects_for_user(_db_path(), user=user)})


@app.route("/api/projects", methods=["POST"])
def api_projects_create():
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    if not permissions.can_create_project(user):
        return _error("Only admins and project managers can create projects", 403)

    data = request.get_json() or {}
    name = str(data.get("name", "")).strip()
    description = str(data.get("description", "") or "").strip()
    if not name or len(name) > MAX_NAME_LEN:
        return _error(f"Project name must be 1-{MAX_NAME_LEN} characters")
    if len(description) > MAX_DESCRIPTION_LEN:
        return _error(f"Description must be {MAX_DESCRIPTION_LEN} characters or fewer")
    ok, deadline = _parse_date_field(data, "deadline")
    if not ok:
        return _error("deadline must be an ISO date")
    raw_members = data.get("member_ids") or []
    if not isinstance(raw_members, list):
        return _error("member_ids must be a list")
    try:
        member_ids = [int(m) for m in raw_members]
    except (TypeError, ValueError):
        return _error("member_ids must be user ids")

    project = project_store.create_project(
        _db_path(),
        creator=user,
        name=name,
        description=description,
        deadline=deadline,
        member_ids=member_ids,
    )
    return jsonify({"ok": True, "project": project})


@app.route("/api/projects/<int:project_id>")
def api_project_detail(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    return jsonify(project)


@app.route("/api/projects/<int:project_id>", methods=["DELETE"])
def api_project_delete(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    ok, msg = project_store.delete_project(_db_path(), project_id=project_id)
    if not ok:
        return _error(msg, 409)
    billing_store.purge_project(_db_path(), project_id=project_id)
    notification_store.purge_project(_db_path(), project_id=project_id)
    return jsonify({"ok": True})


@app.route("/api/projects/<int:project_id>/status", methods=["POST"])
def api_project_status(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    data = request.get_json() or {}
    status = str(data.get("status", "")).strip().lower()
    if status not in project_store.PROJECT_STATUSES:
        return _error("Status must be active or archived")

    project_store.set_project_status(_db_path(), project_id=project_id, status=status)
    archived = status == "archived"
    notification_store.create_project_notification(
        _db_path(),
        project=project,
        type=PROJECT_ARCHIVED if archived else PROJECT_RESTORED,
        content={
            "project_name": project["name"],
            "action": "archived" if archived else "restored",
            "actor_name": user["name"],
        },
        exclude_user_id=user["id"],
    )
    return jsonify({"ok": True, "project": project_store.get_project(_db_path(), project_id)})


@app.route("/api/projects/<int:project_id>/deadline", methods=["POST"])
def api_project_deadline(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    ok, deadline = _parse_date_field(request.get_json() or {}, "deadline")
    if not ok:
        return _error("deadline must be an ISO date")
    project_store.set_project_deadline(_db_path(), project_id=project_id, deadline=deadline)
    return jsonify({"ok": True, "deadline": deadline})


@app.route("/api/projects/<int:project_id>/billing-settings", methods=["POST"])
def api_project_billing_settings(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    data = request.get_json() or {}
    compensation = _parse_money(data.get("default_task_compensation", 0))
    if compensation is None:
        return _error("default_task_compensation must be a non-negative number")
    currency = str(data.get("currency", project_store.DEFAULT_CURRENCY)).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        return _error("currency must be a 3-letter code")
    billing_cycle = str(data.get("billing_cycle", "monthly")).strip().lower()
    if billing_cycle not in project_store.BILLING_CYCLES:
        return _error("billing_cycle must be weekly, monthly, or project")

    updated = project_store.update_billing_settings(
        _db_path(),
        project_id=project_id,
        default_task_compensation=compensation,
        currency=currency,
        billing_cycle=billing_cycle,
    )
    return jsonify({"ok": True, "project": updated})


@app.route("/api/projects/<int:project_id>/members", methods=["POST"])
def api_project_member_add(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    data = request.get_json() or {}
    email = str(data.get("email", "")).strip().lower()
    if "@" not in email:
        return _error("Valid email is required")
    project_role = str(data.get("project_role", permissions.ROLE_DEVELOPER)).strip().lower()

    ok, msg, member = project_store.add_member(
        _db_path(), project_id=project_id, email=email, project_role=project_role
    )
    if not ok:
        return _error(msg)

    notification_store.create_project_notification(
        _db_path(),
        project=project_store.get_project(_db_path(), project_id),
        type=USER_ADDED,
        content={
            "new_member_name": member["name"],
            "project_name": project["name"],
            "adder_name": user["name"],
        },
        exclude_user_id=user["id"],
    )
    return jsonify({"ok": True, "member": member})


@app.route("/api/projects/<int:project_id>/members/<int:member_id>", methods=["DELETE"])
def api_project_member_remove(project_id: int, member_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_project(user, project):
        return _error("Permission denied", 403)
    ok, msg = project_store.remove_member(_db_path(), project_id=project_id, user_id=member_id)
    if not ok:
        return _error(msg)
    return jsonify({"ok": True})


# Tasks


@app.route("/api/projects/<int:project_id>/tasks")
def api_tasks_list(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    _, err = _load_project(user, project_id)
    if err is not None:
        return err
    return jsonify({"items": project_store.list_tasks(_db_path(), project_id=project_id)})


@app.route("/api/projects/<int:project_id>/board")
def api_tasks_board(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    tasks = project_store.list_tasks(_db_path(), project_id=project_id)
    return jsonify({
        "project_status": project["status"],
        "columns": project_store.group_tasks_by_status(tasks),
    })


@app.route("/api/projects/<int:project_id>/tasks", methods=["POST"])
def api_tasks_create(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_create_task(user, project):
        return _error("Only project admins and project managers can create tasks", 403)
    if project["status"] == "archived":
        return _archived_error()

    data = request.get_json() or {}
    title = str(data.get("title", "")).strip()
    description = str(data.get("description", "") or "").strip()
    status = str(data.get("status", "todo")).strip().lower()
    priority = str(data.get("priority", "medium")).strip().lower()
    if not title or len(title) > MAX_NAME_LEN:
        return _error(f"Task title must be 1-{MAX_NAME_LEN} characters")
    if len(description) > MAX_DESCRIPTION_LEN:
        return _error(f"Description must be {MAX_DESCRIPTION_LEN} characters or fewer")
    if status not in project_store.TASK_STATUSES:
        return _error("Status must be todo, in-progress, or done")
    if priority not in project_store.TASK_PRIORITIES:
        return _error("Priority must be low, medium, or high")
    ok, deadline = _parse_date_field(data, "deadline")
    if not ok:
        return _error("deadline must be an ISO date")

    assignee_id = None
    if data.get("assignee_id") not in (None, ""):
        try:
            assignee_id = int(data.get("assignee_id"))
        except (TypeError, ValueError):
            return _error("Valid assignee_id is required")
        if not project_store.is_member(project, assignee_id):
            return _error("Assignee must be a project member")

    compensation = None
    if data.get("compensation") not in (None, ""):
        compensation = _parse_money(data.get("compensation"))
        if compensation is None:
            return _error("compensation must be a non-negative number")

    task = project_store.create_task(
        _db_path(),
        project=project,
        creator_id=user["id"],
        title=title,
        description=description,
        status=status,
        priority=priority,
        deadline=deadline,
        assignee_id=assignee_id,
        compensation=compensation,
    )

    notification_store.create_project_notification(
        _db_path(),
        project=project,
        type=TASK_CREATED,
        content={
            "task_title": title,
            "task_description": description,
            "task_deadline": deadline,
            "project_name": project["name"],
            "creator_name": user["name"],
        },
        exclude_user_id=user["id"],
        task_id=task["id"],
    )
    if assignee_id is not None:
        notification_store.create_notification(
            _db_path(),
            user_id=assignee_id,
            type=TASK_ASSIGNED,
            content={
                "task_title": title,
                "task_description": description,
                "task_deadline": deadline,
                "project_name": project["name"],
                "assigner_name": user["name"],
            },
            project_id=project_id,
            task_id=task["id"],
        )
    return jsonify({"ok": True, "task": task})


@app.route("/api/tasks/<int:task_id>/status", methods=["POST"])
def api_task_status(task_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    task, project, err = _load_task(user, task_id)
    if err is not None:
        return err
    if not permissions.can_update_task(user, project, task):
        return _error("Permission denied", 403)
    if project["status"] == "archived":
        return _archived_error()
    data = request.get_json() or {}
    status = str(data.get("status", "")).strip().lower()
    if status not in project_store.TASK_STATUSES:
        return _error("Status must be todo, in-progress, or done")

    updated = project_store.update_task_status(_db_path(), task_id=task_id, status=status)
    if task["assignee_id"] and task["assignee_id"] != user["id"]:
        notification_store.create_notification(
            _db_path(),
            user_id=task["assignee_id"],
            type=TASK_UPDATED,
            content={
                "task_title": task["title"],
                "new_status": status,
                "project_name": project["name"],
                "updater_name": user["name"],
            },
            project_id=project["id"],
            task_id=task_id,
        )
    return jsonify({"ok": True, "task": updated})


@app.route("/api/tasks/<int:task_id>/assignee", methods=["POST"])
def api_task_assignee(task_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    task, project, err = _load_task(user, task_id)
    if err is not None:
        return err
    if not permissions.can_update_task(user, project, task):
        return _error("Permission denied", 403)
    if project["status"] == "archived":
        return _archived_error()
    data = request.get_json() or {}
    assignee_id = None
    if data.get("assignee_id") not in (None, ""):
        try:
            assignee_id = int(data.get("assignee_id"))
        except (TypeError, ValueError):
            return _error("Valid assignee_id is required")
        if not project_store.is_member(project, assignee_id):
            return _error("Assignee must be a project member")

    updated = project_store.update_task_assignee(_db_path(), task_id=task_id, assignee_id=assignee_id)
    if assignee_id is not None:
        notification_store.create_notification(
            _db_path(),
            user_id=assignee_id,
            type=TASK_ASSIGNED,
            content={
                "task_title": task["title"],
                "task_description": task["description"],
                "task_deadline": task["deadline"],
                "project_name": project["name"],
                "assigner_name": user["name"],
            },
            project_id=project["id"],
            task_id=task_id,
        )
    return jsonify({"ok": True, "task": updated})


@app.route("/api/tasks/<int:task_id>/deadline", methods=["POST"])
def api_task_deadline(task_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    task, project, err = _load_task(user, task_id)
    if err is not None:
        return err
    if not permissions.can_edit_task_details(user, project, task):
        return _error("Permission denied", 403)
    if project["status"] == "archived":
        return _archived_error()
    ok, deadline = _parse_date_field(request.get_json() or {}, "deadline")
    if not ok:
        return _error("deadline must be an ISO date")
    updated = project_store.update_task_deadline(_db_path(), task_id=task_id, deadline=deadline)
    return jsonify({"ok": True, "task": updated})


@app.route("/api/tasks/<int:task_id>", methods=["DELETE"])
def api_task_delete(task_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    task, project, err = _load_task(user, task_id)
    if err is not None:
        return err
    if not permissions.can_delete_task(user, project, task):
        return _error("Permission denied", 403)
    if project["status"] == "archived":
        return _archived_error()
    project_store.delete_task(_db_path(), task_id=task_id)
    return jsonify({"ok": True})


# Billing


def _developer_arg() -> int | None:
    return request.args.get("developer_id", type=int)


@app.route("/api/projects/<int:project_id>/compensation")
def api_project_compensation(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_billing(user, project):
        return _error("Permission denied", 403)
    developer_id = _developer_arg()
    if developer_id is None:
        return _error("developer_id is required")
    start = request.args.get("start", type=str)
    end = request.args.get("end", type=str)
    for value in (start, end):
        if value and normalize_iso(value) is None:
            return _error("start and end must be ISO dates")
    report = billing_store.calculate_developer_compensation(
        _db_path(), project=project, developer_id=developer_id, start_date=start, end_date=end
    )
    return jsonify(report)


@app.route("/api/projects/<int:project_id>/unbilled")
def api_project_unbilled(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_billing(user, project):
        return _error("Permission denied", 403)
    developer_id = _developer_arg()
    if developer_id is None:
        return _error("developer_id is required")
    items = billing_store.list_unbilled_tasks(_db_path(), project_id=project_id, developer_id=developer_id)
    return jsonify({"items": items, "total": sum(t["compensation"] or 0 for t in items)})


@app.route("/api/projects/<int:project_id>/bills")
def api_project_bills(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_billing(user, project):
        return _error("Permission denied", 403)
    return jsonify({"items": billing_store.list_bills_for_project(_db_path(), project_id=project_id)})


@app.route("/api/projects/<int:project_id>/bills", methods=["POST"])
def api_project_bill_generate(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    if not permissions.can_manage_billing(user, project):
        return _error("Permission denied", 403)

    data = request.get_json() or {}
    try:
        developer_id = int(data.get("developer_id"))
    except (TypeError, ValueError):
        return _error("Valid developer_id is required")
    developer = auth_store.get_user_by_id(_db_path(), developer_id)
    if developer is None:
        return _error("Developer not found", 404)
    raw_task_ids = data.get("task_ids") or []
    if not isinstance(raw_task_ids, list):
        return _error("task_ids must be a list")
    try:
        task_ids = [int(t) for t in raw_task_ids]
    except (TypeError, ValueError):
        return _error("task_ids must be task ids")
    amount = None
    if data.get("amount") not in (None, ""):
        amount = _parse_money(data.get("amount"))
        if amount is None:
            return _error("amount must be a non-negative number")
    notes = str(data.get("notes", "") or "").strip()
    if len(notes) > MAX_NOTES_LEN:
        return _error(f"Notes must be {MAX_NOTES_LEN} characters or fewer")
    ok, due_date = _parse_date_field(data, "due_date")
    if not ok:
        return _error("due_date must be an ISO date")

    ok, msg, bill = billing_store.generate_bill(
        _db_path(),
        project=project,
        developer=developer,
        task_ids=task_ids,
        amount=amount,
        notes=notes,
        due_date=due_date,
    )
    if not ok:
        return _error(msg)
    return jsonify({"ok": True, "bill": bill})


@app.route("/api/developers/<int:developer_id>/bills")
def api_developer_bills(developer_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    if not permissions.can_view_developer_bills(user, developer_id):
        return _error("Developers can only view their own bills", 403)
    return jsonify({"items": billing_store.list_bills_for_developer(_db_path(), developer_id=developer_id)})


@app.route("/api/bills/<int:bill_id>/status", methods=["POST"])
def api_bill_status(bill_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    bill, _, err = _load_bill(user, bill_id)
    if err is not None:
        return err
    data = request.get_json() or {}
    status = str(data.get("status", "")).strip().lower()
    ok, paid_at = _parse_date_field(data, "paid_at")
    if not ok:
        return _error("paid_at must be an ISO date")
    ok, msg, updated = billing_store.update_bill_status(_db_path(), bill=bill, status=status, paid_at=paid_at)
    if not ok:
        return _error(msg)
    return jsonify({"ok": True, "bill": updated})


@app.route("/api/bills/<int:bill_id>", methods=["DELETE"])
def api_bill_delete(bill_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    bill, _, err = _load_bill(user, bill_id)
    if err is not None:
        return err
    ok, msg = billing_store.delete_bill(_db_path(), bill=bill)
    if not ok:
        return _error(msg)
    return jsonify({"ok": True})


# Notifications


@app.route("/api/notifications")
def api_notifications():
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    _ensure_db()
    limit = request.args.get("limit", type=int) or 10
    offset = request.args.get("offset", type=int) or 0
    items = notification_store.list_notifications(_db_path(), user_id=user_id, limit=limit, offset=offset)
    for item in items:
        item["message"] = notification_store.render_message(item)
    return jsonify({"items": items})


@app.route("/api/notifications/unread-count")
def api_notifications_unread_count():
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    _ensure_db()
    return jsonify({"count": notification_store.unread_count(_db_path(), user_id=user_id)})


@app.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
def api_notification_read(notification_id: int):
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    _ensure_db()
    if not notification_store.mark_read(_db_path(), user_id=user_id, notification_id=notification_id):
        return _error("Notification not found", 404)
    return jsonify({"ok": True})


@app.route("/api/notifications/read-all", methods=["POST"])
def api_notifications_read_all():
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    _ensure_db()
    updated = notification_store.mark_all_read(_db_path(), user_id=user_id)
    return jsonify({"ok": True, "updated": updated})


@app.route("/api/notifications/<int:notification_id>", methods=["DELETE"])
def api_notification_delete(notification_id: int):
    user_id = _require_user_id()
    if user_id is None:
        return _auth_required_error()
    _ensure_db()
    if not notification_store.delete_notification(_db_path(), user_id=user_id, notification_id=notification_id):
        return _error("Notification not found", 404)
    return jsonify({"ok": True})


# Analytics


@app.route("/api/analytics/me")
def api_analytics_me():
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    projects = project_store.list_projects_for_user(_db_path(), user=user)
    tasks = []
    for project in projects:
        tasks.extend(project_store.list_tasks(_db_path(), project_id=project["id"]))
    return jsonify(analytics.calculate_user_analytics(projects, tasks))


@app.route("/api/projects/<int:project_id>/analytics")
def api_project_analytics(project_id: int):
    user = _get_current_user()
    if user is None:
        return _auth_required_error()
    project, err = _load_project(user, project_id)
    if err is not None:
        return err
    tasks = project_store.list_tasks(_db_path(), project_id=project_id)
    return jsonify(analytics.calculate_project_analytics(project, tasks))


if __name__ == "__main__":
    setup_logging(level=os.environ.get("LOG_LEVEL", "INFO"), log_dir=os.environ.get("LOG_DIR") or None)
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "0") == "1")
