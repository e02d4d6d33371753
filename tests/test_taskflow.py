"""Tests for the taskflow stores, permissions and analytics. Run from project root: pytest tests/ -v"""
from datetime import date, datetime, timezone

import pytest

from taskflow import auth_store, billing_store, init_all, notification_store, permissions, project_store
from taskflow.analytics import calculate_project_analytics, calculate_user_analytics, completion_rate, format_date
from taskflow.utils import normalize_iso, parse_iso, round_half_up, utc_today


@pytest.fixture
def db(tmp_path):
    path = str(tmp_path / "nested" / "taskflow.db")
    init_all(path)
    return path


def _user(db, email, role="developer", name=None):
    user = auth_store.create_user(db, email=email, password="password123", name=name or email.split("@")[0], role=role)
    assert user is not None
    return user


def _project(db, creator, *members):
    return project_store.create_project(
        db, creator=creator, name="Apollo", member_ids=[m["id"] for m in members]
    )


def test_init_all_is_idempotent(db):
    init_all(db)
    assert auth_store.find_user_by_email(db, email="nobody@example.com") is None


def test_auth_store_users(db):
    user = _user(db, "Dev@Example.com", name="Dana")
    assert user["email"] == "dev@example.com"
    assert auth_store.create_user(db, email="dev@example.com", password="password123", name="Again") is None
    assert auth_store.authenticate_user(db, email="dev@example.com", password="password123")["id"] == user["id"]
    assert auth_store.authenticate_user(db, email="dev@example.com", password="nope") is None
    assert auth_store.update_user_role(db, user_id=user["id"], role="project-manager")
    assert not auth_store.update_user_role(db, user_id=user["id"], role="owner")
    assert auth_store.get_user_by_id(db, user["id"])["role"] == "project-manager"
    assert "password_hash" not in auth_store.get_user_by_id(db, user["id"])


def test_search_users_by_email_is_prefix_match(db):
    _user(db, "alice@example.com")
    _user(db, "alan@example.com")
    _user(db, "bob@alpha.com")
    found = auth_store.search_users_by_email(db, query="al")
    assert [u["email"] for u in found] == ["alan@example.com", "alice@example.com"]
    assert auth_store.search_users_by_email(db, query="%") == []


def test_search_users_by_email_matches_underscore_literally(db):
    _user(db, "john_doe@example.com")
    _user(db, "johnd@example.com")
    _user(db, "johnxdoe@example.com")
    assert [u["email"] for u in auth_store.search_users_by_email(db, query="john_")] == ["john_doe@example.com"]
    assert [u["email"] for u in auth_store.search_users_by_email(db, query="john_d")] == ["john_doe@example.com"]
    assert len(auth_store.search_users_by_email(db, query="john")) == 3


def test_permissions_by_role():
    admin = {"id": 1, "role": "admin"}
    pm = {"id": 2, "role": "project-manager"}
    dev = {"id": 3, "role": "developer"}
    scoped_pm = {"id": 4, "role": "developer"}
    outsider = {"id": 5, "role": "developer"}
    project = {
        "id": 10,
        "admin_id": 2,
        "members": [
            {"id": 2, "project_role": "admin"},
            {"id": 3, "project_role": "developer"},
            {"id": 4, "project_role": "project-manager"},
        ],
    }
    task = {"id": 7, "created_by": 2, "assignee_id": 3}

    assert permissions.can_view_project(admin, project)
    assert permissions.can_view_project(dev, project)
    assert not permissions.can_view_project(outsider, project)

    assert permissions.can_create_project(pm)
    assert not permissions.can_create_project(dev)

    assert permissions.can_create_task(scoped_pm, project)
    assert not permissions.can_create_task(dev, project)

    assert permissions.can_update_task(dev, project, task)
    assert not permissions.can_edit_task_details(dev, project, task)
    assert not permissions.can_delete_task(dev, project, task)
    assert permissions.can_delete_task(scoped_pm, project, task)
    assert not permissions.can_update_task(outsider, project, task)

    assert permissions.can_manage_billing(pm, project)
    assert not permissions.can_manage_billing(dev, project)
    assert permissions.can_view_developer_bills(dev, 3)
    assert not permissions.can_view_developer_bills(dev, 4)
    assert permissions.can_view_developer_bills(pm, 3)
    assert permissions.can_update_user_role(admin)
    assert not permissions.can_update_user_role(pm)


def test_project_roles_and_membership(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    dev = _user(db, "dev@example.com")
    project = project_store.create_project(db, creator=pm, name=" Apollo ", member_ids=[dev["id"], pm["id"], 999])
    assert project["name"] == "Apollo"
    assert [(m["id"], m["project_role"]) for m in project["members"]] == [(pm["id"], "admin"), (dev["id"], "developer")]
    assert project_store.is_member(project, dev["id"])

    ok, msg, _ = project_store.add_member(db, project_id=project["id"], email="dev@example.com")
    assert not ok and "already" in msg
    ok, _, member = project_store.add_member(db, project_id=project["id"], email="ghost@example.com")
    assert not ok and member is None
    ok, msg, _ = project_store.add_member(db, project_id=project["id"], email="pm@example.com", project_role="owner")
    assert not ok


def test_list_projects_for_user(db):
    admin = _user(db, "admin@example.com", role="admin")
    pm = _user(db, "pm@example.com", role="project-manager")
    dev = _user(db, "dev@example.com")
    first = _project(db, pm, dev)
    second = _project(db, pm)
    assert [p["id"] for p in project_store.list_projects_for_user(db, user=pm)] == [second["id"], first["id"]]
    assert [p["id"] for p in project_store.list_projects_for_user(db, user=dev)] == [first["id"]]
    assert len(project_store.list_projects_for_user(db, user=admin)) == 2


def test_task_count_and_completed_at(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    project = _project(db, pm)
    task = project_store.create_task(db, project=project, creator_id=pm["id"], title="Build")
    assert task["status"] == "todo"
    assert task["compensation"] == 0
    assert project_store.get_project(db, project["id"])["task_count"] == 1

    done = project_store.update_task_status(db, task_id=task["id"], status="done")
    assert parse_iso(done["completed_at"]) is not None
    again = project_store.update_task_status(db, task_id=task["id"], status="done")
    assert again["completed_at"] == done["completed_at"]
    reopened = project_store.update_task_status(db, task_id=task["id"], status="todo")
    assert reopened["completed_at"] is None

    assert project_store.delete_task(db, task_id=task["id"])
    assert not project_store.delete_task(db, task_id=task["id"])
    assert project_store.get_project(db, project["id"])["task_count"] == 0


def test_archived_project_cannot_be_deleted(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    project = _project(db, pm)
    project_store.set_project_status(db, project_id=project["id"], status="archived")
    ok, msg = project_store.delete_project(db, project_id=project["id"])
    assert not ok
    assert msg.startswith("Archived projects cannot be deleted")
    assert not project_store.set_project_status(db, project_id=project["id"], status="closed")


def test_group_tasks_by_status():
    tasks = [{"id": 1, "status": "done"}, {"id": 2, "status": "todo"}, {"id": 3, "status": "todo"}]
    board = project_store.group_tasks_by_status(tasks)
    assert list(board) == ["todo", "in-progress", "done"]
    assert [t["id"] for t in board["todo"]] == [2, 3]
    assert board["in-progress"] == []


def _billing_setup(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    dev = _user(db, "dev@example.com", name="Dana")
    project = _project(db, pm, dev)
    project = project_store.update_billing_settings(
        db, project_id=project["id"], default_task_compensation=25, currency="gbp", billing_cycle="monthly"
    )
    tasks = [
        project_store.create_task(
            db, project=project, creator_id=pm["id"], title=f"T{i}", status="done", assignee_id=dev["id"]
        )
        for i in range(3)
    ]
    return project, dev, tasks


def test_generate_bill_and_pay(db):
    project, dev, tasks = _billing_setup(db)
    assert [t["compensation"] for t in tasks] == [25, 25, 25]

    ok, _, bill = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[tasks[0]["id"], tasks[1]["id"]])
    assert ok
    assert bill["amount"] == 50
    assert bill["currency"] == "GBP"
    assert [t["id"] for t in billing_store.list_unbilled_tasks(db, project_id=project["id"], developer_id=dev["id"])] == [tasks[2]["id"]]

    ok, msg, unchanged = billing_store.update_bill_status(db, bill=bill, status="draft")
    assert ok and msg == "Bill unchanged" and unchanged["status"] == "draft"

    ok, _, paid = billing_store.update_bill_status(db, bill=bill, status="paid", paid_at="2030-01-01T00:00:00+00:00")
    assert ok
    assert paid["paid_at"] == "2030-01-01T00:00:00+00:00"
    assert project_store.get_task(db, tasks[0]["id"])["billing_status"] == "paid"
    ok, _, _ = billing_store.update_bill_status(db, bill=paid, status="draft")
    assert not ok
    assert [b["id"] for b in billing_store.list_bills_for_developer(db, developer_id=dev["id"])] == [bill["id"]]


def test_generate_bill_rejects_foreign_tasks(db):
    project, dev, tasks = _billing_setup(db)
    other = _user(db, "other@example.com")
    ok, msg, bill = billing_store.generate_bill(db, project=project, developer=other, task_ids=[tasks[0]["id"]])
    assert not ok and bill is None
    ok, msg, _ = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[])
    assert not ok and msg == "Select at least one task"


def test_delete_bill_only_for_drafts(db):
    project, dev, tasks = _billing_setup(db)
    _, _, bill = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[tasks[0]["id"]], amount=99.5)
    assert bill["amount"] == 100
    _, _, sent = billing_store.update_bill_status(db, bill=bill, status="sent")
    ok, _ = billing_store.delete_bill(db, bill=sent)
    assert not ok

    _, _, draft = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[tasks[1]["id"]])
    ok, _ = billing_store.delete_bill(db, bill=draft)
    assert ok
    assert billing_store.get_bill(db, draft["id"]) is None
    assert project_store.get_task(db, tasks[1]["id"])["billing_status"] == "unbilled"


def test_bill_amount_rounds_half_up(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    dev = _user(db, "dev@example.com")
    project = _project(db, pm, dev)
    task = project_store.create_task(
        db, project=project, creator_id=pm["id"], title="Half", status="done", assignee_id=dev["id"], compensation=12.5
    )
    ok, _, bill = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[task["id"]])
    assert ok
    assert bill["amount"] == 13

    other = project_store.create_task(
        db, project=project, creator_id=pm["id"], title="Other", status="done", assignee_id=dev["id"]
    )
    _, _, override = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[other["id"]], amount=2.5)
    assert override["amount"] == 3


def test_failed_bill_leaves_tasks_untouched(db):
    project, dev, tasks = _billing_setup(db)
    ok, _, _ = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[tasks[0]["id"]])
    assert ok

    # The second request includes a task that is already on a bill.
    ok, _, bill = billing_store.generate_bill(
        db, project=project, developer=dev, task_ids=[tasks[1]["id"], tasks[0]["id"]]
    )
    assert not ok and bill is None
    assert len(billing_store.list_bills_for_project(db, project_id=project["id"])) == 1
    assert project_store.get_task(db, tasks[1]["id"])["billing_status"] == "unbilled"
    assert project_store.get_task(db, tasks[0]["id"])["billing_status"] == "billed"


def test_bill_changes_use_stored_status(db):
    project, dev, tasks = _billing_setup(db)
    _, _, draft = billing_store.generate_bill(db, project=project, developer=dev, task_ids=[tasks[0]["id"]])
    billing_store.update_bill_status(db, bill=draft, status="paid")

    # A stale draft snapshot must not delete or rewind a paid bill.
    ok, _ = billing_store.delete_bill(db, bill=draft)
    assert not ok
    ok, _, _ = billing_store.update_bill_status(db, bill=draft, status="sent")
    assert not ok
    assert billing_store.get_bill(db, draft["id"])["status"] == "paid"
    assert project_store.get_task(db, tasks[0]["id"])["billing_status"] == "paid"

    ok, msg = billing_store.delete_bill(db, bill={"id": 999})
    assert not ok and msg == "Bill not found"


def test_compensation_window(db):
    project, dev, _ = _billing_setup(db)
    report = billing_store.calculate_developer_compensation(db, project=project, developer_id=dev["id"])
    assert report["total_compensation"] == 75
    assert report["currency"] == "GBP"
    future = billing_store.calculate_developer_compensation(
        db, project=project, developer_id=dev["id"], start_date="2999-01-01"
    )
    assert future["total_compensation"] == 0
    assert future["tasks"] == []


def test_notifications_fan_out_and_read_state(db):
    pm = _user(db, "pm@example.com", role="project-manager")
    dev = _user(db, "dev@example.com")
    other = _user(db, "other@example.com")
    project = _project(db, pm, dev, other)

    sent = notification_store.create_project_notification(
        db,
        project=project,
        type=notification_store.PROJECT_ARCHIVED,
        content={"project_name": "Apollo", "actor_name": "Pat"},
        exclude_user_id=pm["id"],
    )
    assert sent == 2
    assert notification_store.unread_count(db, user_id=pm["id"]) == 0
    assert notification_store.unread_count(db, user_id=dev["id"]) == 1

    item = notification_store.list_notifications(db, user_id=dev["id"])[0]
    assert item["content"] == {"project_name": "Apollo", "actor_name": "Pat"}
    assert item["is_read"] is False
    assert not notification_store.mark_read(db, user_id=other["id"], notification_id=item["id"])
    assert notification_store.mark_read(db, user_id=dev["id"], notification_id=item["id"])
    assert notification_store.mark_all_read(db, user_id=other["id"]) == 1
    assert notification_store.mark_all_read(db, user_id=other["id"]) == 0

    notification_store.purge_project(db, project_id=project["id"])
    assert notification_store.list_notifications(db, user_id=dev["id"]) == []


def test_create_notification_logs_and_swallows_bad_content(db, caplog):
    result = notification_store.create_notification(
        db, user_id=1, type=notification_store.TASK_CREATED, content={"bad": object()}, project_id=1
    )
    assert result is None
    assert "Failed to create task_created notification" in caplog.text


@pytest.mark.parametrize(
    "kind,content,expected",
    [
        ("user_added", {"new_member_name": "Olli", "project_name": "Apollo", "adder_name": "Pat"}, "Olli was added to Apollo by Pat"),
        ("task_created", {"creator_name": "Pat", "task_title": "Docs", "project_name": "Apollo"}, "Pat created a new task: Docs in Apollo"),
        ("task_updated", {"updater_name": "Pat", "task_title": "Docs", "new_status": "in-progress"}, "Pat moved task Docs to in progress"),
        ("project_restored", {"actor_name": "Pat", "project_name": "Apollo"}, "Pat restored project Apollo"),
        ("mystery", {}, "You have a new notification"),
    ],
)
def test_render_message(kind, content, expected):
    assert notification_store.render_message({"type": kind, "content": content}) == expected


def test_completion_rate():
    assert completion_rate(0, 0) == 0
    assert completion_rate(1, 3) == 33
    assert completion_rate(2, 3) == 67
    assert completion_rate(4, 4) == 100
    assert completion_rate(1, 8) == 13
    assert completion_rate(3, 8) == 38


def test_user_analytics_counts():
    projects = [{"status": "active"}, {"status": "archived"}]
    tasks = [
        {"status": "done", "priority": "high", "assignee_id": 1},
        {"status": "todo", "priority": "low", "assignee_id": None},
    ]
    result = calculate_user_analytics(projects, tasks)
    assert result["total_projects"] == 2
    assert result["completion_rate"] == 50
    assert [d["value"] for d in result["project_status_distribution"]] == [1, 1]
    assert [d["value"] for d in result["task_distribution"]] == [1, 0, 1]
    assert result["assignment_distribution"][0]["value"] == 1


def test_user_analytics_empty():
    result = calculate_user_analytics([], [])
    assert result["total_tasks"] == 0
    assert result["completion_rate"] == 0


def test_project_analytics_window_ends_on_utc_today(monkeypatch):
    from taskflow import analytics

    monkeypatch.setattr(analytics, "utc_today", lambda: date(2024, 3, 10))
    tasks = [{"status": "done", "priority": "high", "assignee_id": None, "completed_at": "2024-03-10T23:30:00+00:00"}]
    series = calculate_project_analytics({"id": 1, "name": "Apollo"}, tasks)["completion_over_time"]
    assert series[-1] == {"date": "2024-03-10", "completed": 1}
    assert utc_today() == datetime.now(timezone.utc).date()


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(0.5) == 1
    assert round_half_up(150.4) == 150
    assert round_half_up("99.5") == 100


def test_project_analytics_completion_over_time():
    today = date(2024, 3, 10)
    tasks = [
        {"status": "done", "priority": "high", "assignee_id": 3, "assignee": {"name": "Dana"}, "completed_at": "2024-03-10T09:00:00+00:00"},
        {"status": "done", "priority": "medium", "assignee_id": 3, "assignee": {"name": "Dana"}, "completed_at": "2024-03-04T09:00:00+00:00"},
        {"status": "done", "priority": "medium", "assignee_id": None, "completed_at": "2024-03-01T09:00:00+00:00"},
        {"status": "todo", "priority": "low", "assignee_id": None, "completed_at": None},
    ]
    result = calculate_project_analytics({"id": 1, "name": "Apollo"}, tasks, today=today)
    series = result["completion_over_time"]
    assert [p["date"] for p in series][0] == "2024-03-04"
    assert series[-1] == {"date": "2024-03-10", "completed": 1}
    assert sum(p["completed"] for p in series) == 2
    assert result["assignee_distribution"] == [
        {"name": "Dana", "value": 2, "id": 3},
        {"name": "Unassigned", "value": 2, "id": "unassigned"},
    ]
    assert result["completion_rate"] == 75


def test_date_helpers():
    assert format_date("2024-03-05") == "Mar 5"
    assert format_date("garbage") == "garbage"
    assert normalize_iso("2024-03-05T10:00:00Z") == "2024-03-05T10:00:00+00:00"
    assert normalize_iso("2024-03-05") == "2024-03-05T00:00:00+00:00"
    assert normalize_iso("") is None
    assert normalize_iso("not a date") is None
