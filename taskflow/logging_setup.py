from __future__ import annotations

import logging
import sys
from pathlib import Path


class _QuietThirdPartyFilter(logging.Filter):
    """Keep taskflow logs; let other libraries through only at WARNING+ (werkzeug request lines included)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taskflow") or record.name in {"app", "__main__"}:
            return True
        return record.levelno >= logging.WARNING


def setup_logging(
    *,
    level: int | str = logging.INFO,
    log_dir: str | Path | None = None,
) -> None:
    """
    Console handler on stderr, plus a file handler when log_dir is given.

    Call once at process start. Safe to call again: existing root handlers are replaced.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setFormatter(fmt)
    ch.addFilter(_QuietThirdPartyFilter())
    root.addHandler(ch)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_dir / "taskflow.log"), encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
