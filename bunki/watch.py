"""Watch mode for Bunki.

Runs an initial build, then watches the project's sources and runs an
incremental build whenever one of them changes. Each rebuild goes through
build_site, so only the posts and pages affected by the change are
re-rendered.

Key classes:
- Watcher: Builds the site and rebuilds it on changes.
- _ChangeHandler: File system event handler for triggering rebuilds.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

import click
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildResult, build_site, full_rebuild_marker_for, lock_path_for
from .config import SiteConfig
from .errors import BuildError, BuildLocked

logger = logging.getLogger(__name__)


class Watcher:
    """Builds a site and rebuilds it whenever its sources change.

    Attributes:
        project_root: Root directory of the project.
        config_path: Explicit config file, if any.
        config: Site configuration, reloaded after every rebuild.
        _observer: File system observer for changes.
    """

    def __init__(
        self,
        project_root: Path,
        config_path: Path | None = None,
        debounce_seconds: float = 0.2,
    ):
        self.project_root = project_root
        self.config_path = config_path
        self.config = SiteConfig.load(project_root, config_path)
        self._observer: Observer | None = None
        self._lock = threading.Lock()
        self._last_rebuild_at = 0.0
        self._debounce_seconds = debounce_seconds

    @property
    def ignored_paths(self) -> list[Path]:
        """Paths whose changes never trigger a rebuild."""
        cache_file = self.config.cache_file
        return [
            self.config.output_dir,
            cache_file,
            lock_path_for(cache_file),
            full_rebuild_marker_for(cache_file),
        ]

    def is_ignored(self, path: Path) -> bool:
        for ignored in self.ignored_paths:
            if path == ignored:
                return True
            try:
                path.relative_to(ignored)
                return True
            except ValueError:
                pass
        # Temporary files written while the cache is saved.
        cache_name = self.config.cache_file.name
        return path.name.startswith(f".{cache_name}.") and path.suffix == ".tmp"

    def start(self) -> None:  # pragma: no cover - integration path
        self.build()
        self._start_observer()
        click.echo("Watching for changes, press Ctrl+C to stop")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def build(self) -> BuildResult:
        result = build_site(self.project_root, config_path=self.config_path)
        self.config = SiteConfig.load(self.project_root, self.config_path)
        _echo_result(result)
        return result

    def rebuild(self) -> BuildResult | None:
        """Run an incremental build unless one ran within the debounce window.

        Build errors are reported and swallowed so watching can continue
        once the offending file is fixed.
        """
        now = time.time()
        if (now - self._last_rebuild_at) < self._debounce_seconds:
            return None
        if not self._lock.acquire(blocking=False):
            return None
        try:
            click.echo("Change detected; rebuilding...")
            return self.build()
        except BuildError as exc:
            click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
            click.echo(click.style(f"  File: {exc.source_path}", fg="yellow"), err=True)
            click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
            return None
        except BuildLocked as exc:
            logger.warning("%s", exc)
            return None
        finally:
            self._lock.release()
            self._last_rebuild_at = time.time()

    def watch_dirs(self) -> list[Path]:
        """Directories scheduled recursively on the observer."""
        dirs = [self.config.content_dir, self.config.templates_dir]
        dirs.extend(path.parent for path in self.config.style_paths)
        existing: list[Path] = []
        for path in dirs:
            if path.exists() and path not in existing:
                existing.append(path)
        return existing

    def _start_observer(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        for path in self.watch_dirs():
            observer.schedule(handler, str(path), recursive=True)
        # Watch root for bunki.yaml
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory:
            return
        path = Path(event.src_path)
        if self.watcher.is_ignored(path):
            return
        logger.debug("%s: %s", event.event_type, path)
        self.watcher.rebuild()


def _echo_result(result: BuildResult) -> None:
    plan = result.plan
    if plan.full:
        click.echo(f"Full rebuild: {len(result.posts)} posts")
    elif plan.is_noop:
        click.echo("No changes detected")
    else:
        click.echo(f"Rebuilt {len(plan.posts)} of {len(result.posts)} posts")
