"""Role checks for projects, tasks and bills.

Users carry a global role; project memberships carry a project role.
All checks take plain dicts as returned by the stores.
"""

from __future__ import annotations

from typing import Any

ROLE_ADMIN = "admin"
ROLE_PROJECT_MANAGER = "project-manager"
ROLE_DEVELOPER = "developer"

GLOBAL_ROLES = (ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_DEVELOPER)
PROJECT_ROLES = (ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_DEVELOPER)


def _membership(user: dict[str, Any], project: dict[str, Any]) -> dict[str, Any] | None:
    for member in project.get("members") or []:
        if member.get("id") == user.get("id"):
            return member
    return None


def project_role(user: dict[str, Any], project: dict[str, Any]) -> str | None:
    member = _membership(user, project)
    return member.get("project_role") if member else None


def is_admin(user: dict[str, Any]) -> bool:
    return user.get("role") == ROLE_ADMIN


def is_project_manager(user: dict[str, Any], project: dict[str, Any] | None = None) -> bool:
    if user.get("role") == ROLE_PROJECT_MANAGER:
        return True
    return project is not None and project_role(user, project) == ROLE_PROJECT_MANAGER


def is_project_admin(user: dict[str, Any], project: dict[str, Any]) -> bool:
    """The adminId holder, or a member given the project-scoped admin role."""
    if project.get("admin_id") == user.get("id"):
        return True
    return project_role(user, project) == ROLE_ADMIN


def can_view_project(user: dict[str, Any], project: dict[str, Any]) -> bool:
    return (
        is_admin(user)
        or project.get("admin_id") == user.get("id")
        or _membership(user, project) is not None
    )


def can_create_project(user: dict[str, Any]) -> bool:
    return is_admin(user) or is_project_manager(user)


def can_manage_project(user: dict[str, Any], project: dict[str, Any]) -> bool:
    """Archive/restore, delete, deadline, billing settings and membership."""
    return is_admin(user) or is_project_admin(user, project) or is_project_manager(user, project)


def can_create_task(user: dict[str, Any], project: dict[str, Any]) -> bool:
    return is_project_admin(user, project) or is_admin(user) or is_project_manager(user, project)


def can_update_task(user: dict[str, Any], project: dict[str, Any], task: dict[str, Any]) -> bool:
    """Status and assignee changes. The assignee may move their own task."""
    uid = user.get("id")
    return (
        is_admin(user)
        or is_project_manager(user, project)
        or task.get("created_by") == uid
        or (task.get("assignee_id") is not None and task.get("assignee_id") == uid)
        or project.get("admin_id") == uid
    )


def can_edit_task_details(user: dict[str, Any], project: dict[str, Any], task: dict[str, Any]) -> bool:
    uid = user.get("id")
    return (
        is_admin(user)
        or is_project_manager(user, project)
        or task.get("created_by") == uid
        or project.get("admin_id") == uid
    )


def can_delete_task(user: dict[str, Any], project: dict[str, Any], task: dict[str, Any]) -> bool:
    # Project-scoped admins count as admin inside their own project.
    return (
        is_admin(user)
        or project_role(user, project) == ROLE_ADMIN
        or is_project_manager(user, project)
        or task.get("created_by") == user.get("id")
    )


def can_manage_billing(user: dict[str, Any], project: dict[str, Any]) -> bool:
    return is_admin(user) or project.get("admin_id") == user.get("id") or is_project_manager(user, project)


def can_view_developer_bills(user: dict[str, Any], developer_id: int) -> bool:
    if user.get("role") == ROLE_DEVELOPER:
        return user.get("id") == developer_id
    return True


def can_update_user_role(user: dict[str, Any]) -> bool:
    return is_admin(user)
