"""Incremental site building for Bunki.

This module drives a build: it lists the current posts, loads the
fingerprint store, detects what changed, derives the rebuild plan, executes
it through a SiteRenderer and, only once every page has been written,
persists the new fingerprints.

A failed or interrupted build leaves the store exactly as it was, so every
change it did not finish publishing is detected again next time.

Key items:
- build_site: Run one build.
- BuildResult: What a build did.
- BuildLock: Lock file preventing concurrent builds of one project.
- load_store: Load the fingerprint store, degrading to empty when corrupt.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import TemplateSyntaxError

from .changes import ChangeDetector, ChangeSet, DetectOptions
from .config import SiteConfig
from .content import POST_SUFFIX, Post, PostLoader, discover_posts
from .errors import BuildError, BuildLocked, CacheCorrupt
from .fingerprints import Fingerprint, FingerprintStore
from .invalidation import RebuildPlan, plan_rebuild
from .metrics import BuildMetrics, MetricsCollector, directory_size
from .protocols import SiteRenderer
from .templates import JinjaSiteRenderer

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a site build.

    Attributes:
        posts: Every current post, newest first.
        output_dir: Directory the site was written to.
        change_set: What change detection found.
        plan: What was regenerated.
        written: Files written by this build.
        metrics: Timings and output figures.
    """

    posts: list[Post]
    output_dir: Path
    change_set: ChangeSet
    plan: RebuildPlan
    written: list[Path] = field(default_factory=list)
    metrics: BuildMetrics | None = None


class BuildLock:
    """Exclusive lock file held for the duration of a build.

    Attributes:
        path: Location of the lock file.
    """

    def __init__(self, path: Path):
        self.path = path

    def __enter__(self) -> BuildLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = self._create()
        except FileExistsError as exc:
            if not self.is_stale():
                raise BuildLocked(self.path) from exc
            logger.warning("Removing stale lock file %s", self.path)
            self.path.unlink(missing_ok=True)
            try:
                fd = self._create()
            except FileExistsError as again:
                raise BuildLocked(self.path) from again
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        return self

    def __exit__(self, *exc_info) -> None:
        self.path.unlink(missing_ok=True)

    def is_stale(self) -> bool:
        """True when the lock file names a process that is no longer running."""
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return True
        except OSError:
            return False
        if not text:
            # Holder has not written its PID yet.
            return False
        try:
            pid = int(text)
        except ValueError:
            return True
        return not pid_alive(pid)

    def _create(self) -> int:
        return os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)


def pid_alive(pid: int) -> bool:
    """Return True if a process with this PID is running."""
    if pid <= 0:
        return False
    if os.name != "posix":
        # Signal 0 terminates the process on Windows; assume it is alive.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def lock_path_for(cache_file: Path) -> Path:
    return cache_file.with_name(cache_file.name + ".lock")


def full_rebuild_marker_for(cache_file: Path) -> Path:
    """Marker present while a full rebuild that wiped the output is unfinished."""
    return cache_file.with_name(cache_file.name + ".full")


def load_store(project_root: Path, cache_file: Path) -> FingerprintStore:
    """Load the fingerprint store, treating a corrupt cache as empty.

    An empty store makes every file look new, so the build becomes a full
    rebuild.
    """
    try:
        return FingerprintStore.load(project_root, cache_file)
    except CacheCorrupt as exc:
        logger.warning("Ignoring corrupt build cache (%s); doing a full rebuild", exc.reason)
        return FingerprintStore(project_root, {}, cache_file)


def template_keys(store: FingerprintStore, templates_dir: Path) -> list[str]:
    """Store keys of every current template plus stored ones that vanished."""
    current = []
    if templates_dir.exists():
        current = sorted(
            store.key_for(path) for path in templates_dir.rglob("*") if path.is_file()
        )
    prefix = store.key_for(templates_dir).rstrip("/") + "/"
    vanished = sorted(key for key in store if key.startswith(prefix) and key not in current)
    return current + vanished


def build_site(
    project_root: Path,
    config_path: Path | None = None,
    full: bool = False,
    verify: bool | None = None,
    renderer: SiteRenderer | None = None,
) -> BuildResult:
    """Build the site, re-rendering only what changed.

    Args:
        project_root: Root directory of the project.
        config_path: Explicit config file, defaults to ``bunki.yaml``.
        full: Force a full rebuild.
        verify: Hash every file instead of trusting size and mtime. Defaults
            to the ``verify_hashes`` config value.
        renderer: Custom renderer, defaults to JinjaSiteRenderer.

    Returns:
        BuildResult describing the build.

    Raises:
        BuildError: If a file cannot be read or rendered.
        BuildLocked: If another build of the project is running.
        CacheWriteError: If the fingerprint store cannot be saved.
    """
    metrics = MetricsCollector()
    metrics.start_stage("initialization")
    config = SiteConfig.load(project_root, config_path)
    verify = config.verify_hashes if verify is None else verify

    with BuildLock(lock_path_for(config.cache_file)):
        store = load_store(project_root, config.cache_file)
        loader = PostLoader(project_root)
        post_files = discover_posts(config.content_dir)
        post_keys = [loader.key_for(path) for path in post_files]
        content_key = store.key_for(config.content_dir)
        options = DetectOptions(
            config_path=store.key_for(config.config_file),
            style_paths=[store.key_for(path) for path in config.style_paths],
            template_paths=template_keys(store, config.templates_dir),
            content_suffix=POST_SUFFIX,
            content_prefix="" if content_key == "." else content_key.rstrip("/") + "/",
            verify=verify,
            workers=config.hash_workers,
        )

        metrics.start_stage("change_detection")
        detector = ChangeDetector(store, options)
        change_set = detector.detect(post_keys)
        if change_set.unreadable:
            raise _unreadable_error(project_root, change_set.unreadable)
        marker = full_rebuild_marker_for(config.cache_file)
        if marker.exists():
            logger.info("Previous full rebuild did not finish; rebuilding everything")
        if full or marker.exists() or not config.output_dir.exists():
            change_set.full_rebuild = True

        tracked = _tracked_keys(options, post_keys)
        fingerprints = _fingerprints(store, detector, tracked)

        posts_by_key = loader.load_all(post_files)
        previous_tags = {key: store.tags_of(key) for key in change_set.changed_posts}
        previous_urls = {key: store.url_of(key) for key in change_set.changed_posts}
        plan = plan_rebuild(change_set, posts_by_key, previous_tags, previous_urls)
        ordered = sorted(posts_by_key.values(), key=lambda p: (p.date, p.slug), reverse=True)
        _log_plan(plan, len(ordered))

        renderer = renderer or JinjaSiteRenderer(
            config.templates_dir,
            config.output_dir,
            project_root,
            site=config.site,
            page_size=config.page_size,
        )
        written = _execute(plan, renderer, posts_by_key, ordered, config, metrics)

        updates = {
            key: _with_post(fingerprint, posts_by_key.get(key))
            for key, fingerprint in fingerprints.items()
            if fingerprint is not None
        }
        store.merge(updates, removed=[key for key in store if key not in updates]).save()
        marker.unlink(missing_ok=True)

    result_metrics = metrics.finish(
        posts=len(ordered),
        rendered=len(plan.posts),
        pages=len(written),
        total_size=directory_size(config.output_dir),
    )
    return BuildResult(
        posts=ordered,
        output_dir=config.output_dir,
        change_set=change_set,
        plan=plan,
        written=written,
        metrics=result_metrics,
    )


def _tracked_keys(options: DetectOptions, post_keys: list[str]) -> list[str]:
    keys: list[str] = []
    if options.config_path:
        keys.append(options.config_path)
    keys.extend(options.template_paths)
    keys.extend(options.style_paths)
    keys.extend(post_keys)
    return list(dict.fromkeys(keys))


def _fingerprints(
    store: FingerprintStore, detector: ChangeDetector, tracked: list[str]
) -> dict[str, Fingerprint | None]:
    """Current fingerprint of every tracked key, reusing what detection saw.

    Keys skipped by a short-circuited detection are fingerprinted here,
    before anything is rendered.
    """
    fingerprints = dict(detector.observed)
    missing = [key for key in tracked if key not in fingerprints]
    probes = store.scan(missing, verify=detector.options.verify, workers=detector.options.workers)
    unreadable = {probe.path: probe.error.reason for probe in probes if probe.error is not None}
    if unreadable:
        raise _unreadable_error(store.root, unreadable)
    fingerprints.update((probe.path, probe.fingerprint) for probe in probes)
    return {key: fingerprints.get(key) for key in tracked}


def _with_post(fingerprint: Fingerprint, post: Post | None) -> Fingerprint:
    if post is None:
        return fingerprint
    return dataclasses.replace(fingerprint, tags=tuple(post.tags), url=post.url)


def _execute(
    plan: RebuildPlan,
    renderer: SiteRenderer,
    posts_by_key: dict[str, Post],
    ordered: list[Post],
    config: SiteConfig,
    metrics: MetricsCollector,
) -> list[Path]:
    written: list[Path] = []
    if plan.full:
        # Cleared only once the new fingerprints are saved.
        full_rebuild_marker_for(config.cache_file).touch()
        ensure_clean_dir(config.output_dir)
    else:
        config.output_dir.mkdir(parents=True, exist_ok=True)

    metrics.start_stage("css_processing")
    if plan.styles:
        written.extend(renderer.process_styles(config.style_paths))

    metrics.start_stage("page_generation")
    renderer.set_posts(ordered)
    for key in plan.posts:
        written.append(_render(config.project_root / key, renderer.render_post, posts_by_key[key]))
    for url in plan.stale_urls:
        renderer.remove_page(url)
    if plan.indexes:
        written.extend(_render(config.templates_dir / "index.html", renderer.render_indexes, ordered))
    for tag in sorted(plan.tags):
        tagged = [post for post in ordered if tag in post.tags]
        written.extend(_render(config.templates_dir / "tag.html", renderer.render_tag, tag, tagged))
    metrics.end_stage()
    return written


def _render(source_path: Path, render, *args):
    """Call a renderer method, wrapping failures in a BuildError for ``source_path``."""
    try:
        return render(*args)
    except TemplateSyntaxError as exc:
        raise BuildError(
            source_path,
            f"Template syntax error on line {exc.lineno}: {exc.message}",
            exc,
        ) from exc
    except Exception as exc:
        raise BuildError(source_path, _format_error_message(exc), exc) from exc


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    if error_type == "UndefinedError":
        return f"Undefined variable: {exc}"
    if error_type == "TypeError":
        return f"Type error: {exc}"
    if error_type == "AttributeError":
        return f"Attribute error: {exc}"
    return f"{error_type}: {exc}"


def _unreadable_error(project_root: Path, unreadable: dict[str, str]) -> BuildError:
    first = next(iter(unreadable))
    details = "; ".join(f"{key}: {reason}" for key, reason in unreadable.items())
    return BuildError(project_root / first, f"Cannot read tracked file(s): {details}")


def _log_plan(plan: RebuildPlan, total_posts: int) -> None:
    if plan.full:
        logger.info("Full rebuild of %d post(s)", total_posts)
    elif plan.is_noop:
        logger.info("No changes detected")
    else:
        logger.info(
            "Incremental build: %d of %d post(s), %d tag page(s), indexes %s",
            len(plan.posts),
            total_posts,
            len(plan.tags),
            "regenerated" if plan.indexes else "unchanged",
        )


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)
