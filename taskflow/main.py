"""
TaskFlow admin CLI. Run from project root: python -m taskflow.main <command>
Creates the database, bootstraps roles, and prints project reports.
"""

import argparse
import json
import os
import sys
from pathlib import Path

from taskflow import analytics, auth_store, init_all, project_store
from taskflow.charts import save_completion_chart
from taskflow.logging_setup import setup_logging
from taskflow.permissions import GLOBAL_ROLES

DEFAULT_DB_PATH = str(Path("instance") / "taskflow.db")


def _cmd_init_db(args) -> int:
    init_all(args.db)
    print(f"Database ready: {args.db}")
    return 0


def _cmd_set_role(args) -> int:
    init_all(args.db)
    user = auth_store.find_user_by_email(args.db, email=args.email)
    if user is None:
        print(f"No user with email {args.email}", file=sys.stderr)
        return 1
    auth_store.update_user_role(args.db, user_id=user["id"], role=args.role)
    print(f"{user['email']} is now {args.role}")
    return 0


def _cmd_report(args) -> int:
    init_all(args.db)
    project = project_store.get_project(args.db, args.project_id)
    if project is None:
        print(f"Project {args.project_id} not found", file=sys.stderr)
        return 1
    tasks = project_store.list_tasks(args.db, project_id=project["id"])
    report = analytics.calculate_project_analytics(project, tasks)
    print(json.dumps(report, indent=2))

    if args.graph:
        try:
            path = save_completion_chart(report, output_path=args.graph)
        except ImportError:
            print("matplotlib not installed. pip install matplotlib", file=sys.stderr)
            return 1
        print(f"Chart saved: {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TaskFlow administration")
    parser.add_argument(
        "--db",
        default=os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH),
        help="SQLite database path (default: $APP_DB_PATH or instance/taskflow.db)",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "WARNING"))
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="Create all tables")
    p_init.set_defaults(func=_cmd_init_db)

    p_role = sub.add_parser("set-role", help="Set a user's global role")
    p_role.add_argument("email")
    p_role.add_argument("role", choices=GLOBAL_ROLES)
    p_role.set_defaults(func=_cmd_set_role)

    p_report = sub.add_parser("report", help="Print analytics for a project")
    p_report.add_argument("project_id", type=int)
    p_report.add_argument("--graph", type=str, metavar="FILE", help="Save completion chart to FILE (PNG)")
    p_report.set_defaults(func=_cmd_report)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main() or 0)
