"""Tests for the admin CLI and the completion chart."""
import json
import logging

import pytest

from taskflow import auth_store, init_all, project_store
from taskflow.charts import completion_series, save_completion_chart
from taskflow.main import main


@pytest.fixture(autouse=True)
def restore_logging():
    # main() reconfigures the root logger.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture
def db(tmp_path):
    path = str(tmp_path / "cli.db")
    init_all(path)
    return path


def test_init_db_creates_file(tmp_path, capsys):
    path = tmp_path / "fresh" / "taskflow.db"
    assert main(["--db", str(path), "init-db"]) == 0
    assert path.exists()
    assert "Database ready" in capsys.readouterr().out


def test_set_role(db, capsys):
    user = auth_store.create_user(db, email="boss@example.com", password="password123", name="Boss")
    assert main(["--db", db, "set-role", "boss@example.com", "admin"]) == 0
    assert auth_store.get_user_by_id(db, user["id"])["role"] == "admin"
    assert main(["--db", db, "set-role", "ghost@example.com", "admin"]) == 1
    assert "No user" in capsys.readouterr().err


def test_set_role_rejects_unknown_role(db):
    with pytest.raises(SystemExit):
        main(["--db", db, "set-role", "boss@example.com", "owner"])


def test_report_prints_project_analytics(db, capsys):
    pm = auth_store.create_user(db, email="pm@example.com", password="password123", name="Pat", role="project-manager")
    project = project_store.create_project(db, creator=pm, name="Apollo")
    project_store.create_task(db, project=project, creator_id=pm["id"], title="A", status="done")
    project_store.create_task(db, project=project, creator_id=pm["id"], title="B")

    assert main(["--db", db, "report", str(project["id"])]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["project_name"] == "Apollo"
    assert report["total_tasks"] == 2
    assert report["completion_rate"] == 50

    assert main(["--db", db, "report", "999"]) == 1


def test_completion_series():
    analytics = {"completion_over_time": [{"date": "2024-03-04", "completed": 0}, {"date": "2024-03-05", "completed": 2}]}
    assert completion_series(analytics) == [("2024-03-04", 0), ("2024-03-05", 2)]
    assert completion_series({}) == []


def test_save_completion_chart(tmp_path):
    pytest.importorskip("matplotlib")
    analytics = {
        "project_name": "Apollo",
        "completion_over_time": [{"date": "2024-03-04", "completed": 1}, {"date": "2024-03-05", "completed": 3}],
    }
    out = tmp_path / "charts" / "completion.png"
    assert save_completion_chart(analytics, output_path=str(out)) == str(out)
    assert out.stat().st_size > 0


def test_quiet_filter_keeps_taskflow_records():
    from taskflow.logging_setup import _QuietThirdPartyFilter

    f = _QuietThirdPartyFilter()
    record = logging.LogRecord("taskflow.project_store", logging.INFO, __file__, 1, "msg", None, None)
    noisy = logging.LogRecord("werkzeug", logging.INFO, __file__, 1, "GET /", None, None)
    loud = logging.LogRecord("werkzeug", logging.ERROR, __file__, 1, "boom", None, None)
    assert f.filter(record)
    assert not f.filter(noisy)
    assert f.filter(loud)
