"""
Project completion chart. Produces an image file or returns the series for any frontend.
"""

from pathlib import Path
from typing import Any, Dict, List, Tuple

from taskflow.analytics import format_date


def completion_series(analytics: Dict[str, Any]) -> List[Tuple[str, int]]:
    """(iso_date, completed_count) pairs from calculate_project_analytics output."""
    return [(p["date"], p["completed"]) for p in analytics.get("completion_over_time", [])]


def save_completion_chart(
    analytics: Dict[str, Any],
    output_path: str = "completion.png",
    title: str = "",
) -> str:
    """
    Bar chart of tasks completed per day, saved to output_path.
    Returns the path. Requires: pip install matplotlib
    """
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        from matplotlib.ticker import MaxNLocator
    except ImportError:
        raise ImportError("matplotlib is required for save_completion_chart. pip install taskflow[charts]")

    series = completion_series(analytics)
    labels = [format_date(d) for d, _ in series]
    counts = [n for _, n in series]

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.bar(labels, counts, color="#22c55e")
    ax.set_xlabel("Day")
    ax.set_ylabel("Tasks completed")
    ax.set_title(title or f"Completed tasks: {analytics.get('project_name') or 'project'}")
    ax.set_ylim(bottom=0)
    ax.yaxis.set_major_locator(MaxNLocator(integer=True))
    ax.grid(True, axis="y", alpha=0.3)
    fig.tight_layout()
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path
