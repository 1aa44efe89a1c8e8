"""Build metrics for Bunki.

Diagnostics only: nothing here feeds back into the decision of what to
rebuild.

Key items:
- AVERAGE_POST_RENDER_COST: Typical time to render one post.
- estimate_time_saved: Time saved by skipping unchanged posts.
- MetricsCollector: Times the stages of a build.
- BuildMetrics: Final timings and output figures.
- format_bytes: Human-readable byte counts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

AVERAGE_POST_RENDER_COST = timedelta(milliseconds=6)

STAGES = (
    "initialization",
    "change_detection",
    "css_processing",
    "page_generation",
)


def estimate_time_saved(total_posts: int, changed_posts: int) -> timedelta:
    """Estimate the render time saved by skipping unchanged posts.

    Args:
        total_posts: Number of posts in the site.
        changed_posts: Number of posts that were re-rendered.

    Returns:
        ``(total_posts - changed_posts) * AVERAGE_POST_RENDER_COST``, never negative.
    """
    skipped = max(total_posts - changed_posts, 0)
    return skipped * AVERAGE_POST_RENDER_COST


def format_bytes(size: int) -> str:
    """Format a byte count for display.

    Examples:
        >>> format_bytes(0)
        '0 B'

        >>> format_bytes(1536)
        '1.50 KB'
    """
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f} {units[index]}"


def directory_size(path: Path) -> int:
    """Return the total size in bytes of all files under a directory."""
    if not path.exists():
        return 0
    return sum(item.stat().st_size for item in path.rglob("*") if item.is_file())


@dataclass
class BuildMetrics:
    """Timings and output figures for a finished build.

    Attributes:
        total_time: Wall-clock time of the whole build, in seconds.
        stages: Seconds spent in each stage.
        posts: Number of posts in the site.
        rendered: Number of posts re-rendered.
        pages: Number of files written.
        total_size: Size of the output directory in bytes.
        time_saved: Estimated render time saved by the incremental build.
    """

    total_time: float
    stages: dict[str, float] = field(default_factory=dict)
    posts: int = 0
    rendered: int = 0
    pages: int = 0
    total_size: int = 0
    time_saved: timedelta = field(default_factory=timedelta)


class MetricsCollector:
    """Times the stages of a build.

    Starting a stage ends the one currently running.
    """

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self._start = clock()
        self._timings: dict[str, float] = {}
        self._current: tuple[str, float] | None = None

    def start_stage(self, name: str) -> None:
        if self._current is not None:
            self.end_stage()
        self._current = (name, self._clock())

    def end_stage(self) -> None:
        if self._current is None:
            return
        name, started = self._current
        self._timings[name] = self._timings.get(name, 0.0) + (self._clock() - started)
        self._current = None

    def finish(
        self,
        posts: int = 0,
        rendered: int = 0,
        pages: int = 0,
        total_size: int = 0,
    ) -> BuildMetrics:
        """End any running stage and return the collected metrics."""
        self.end_stage()
        return BuildMetrics(
            total_time=self._clock() - self._start,
            stages={name: self._timings.get(name, 0.0) for name in STAGES},
            posts=posts,
            rendered=rendered,
            pages=pages,
            total_size=total_size,
            time_saved=estimate_time_saved(posts, rendered),
        )
