"""Change detection for incremental builds.

Compares the current source files against the fingerprint store and reports
what changed since the last successful build as a ChangeSet.

Checks run in a fixed order and may stop early:

1. A changed config file forces a full rebuild; nothing else is checked.
2. The first changed template forces a full rebuild; nothing else is checked.
3. Changed stylesheets only flag ``styles_changed``.
4. Posts that differ from (or are missing in) the store are ``changed_posts``.
5. Stored posts under the content directory that are absent from the
   current file list are ``deleted_posts``, and any deletion forces a full
   rebuild since listings and pagination shift.

Key classes:
- ChangeSet: What changed in this build.
- DetectOptions: The tracked config, template and style paths.
- ChangeDetector: Runs the checks and remembers the fingerprints it saw.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .fingerprints import Fingerprint, FingerprintStore, Probe

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Changes detected for a single build.

    Attributes:
        changed_posts: New or modified posts, in input order.
        deleted_posts: Posts recorded in the store but no longer present.
        styles_changed: Whether any stylesheet changed.
        config_changed: Whether the config file changed.
        templates_changed: Whether any template changed.
        full_rebuild: Whether every output must be regenerated.
        unreadable: Tracked files that could not be read, mapped to the reason.
    """

    changed_posts: list[str] = field(default_factory=list)
    deleted_posts: list[str] = field(default_factory=list)
    styles_changed: bool = False
    config_changed: bool = False
    templates_changed: bool = False
    full_rebuild: bool = False
    unreadable: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when nothing needs to be rebuilt."""
        return not (
            self.changed_posts
            or self.deleted_posts
            or self.styles_changed
            or self.full_rebuild
        )


@dataclass(frozen=True)
class DetectOptions:
    """Inputs recognised by the change detector besides the posts.

    Attributes:
        config_path: Store key of the site config file.
        style_paths: Store keys of tracked stylesheets.
        template_paths: Store keys of tracked templates, checked in order.
        content_suffix: Suffix identifying post files in the store.
        content_prefix: Store key prefix of the content directory, empty for
            the project root. Only keys under it can be deleted posts.
        verify: Always hash content instead of trusting size and mtime.
        workers: Threads used to fingerprint posts and styles.
    """

    config_path: str | None = None
    style_paths: Sequence[str] = ()
    template_paths: Sequence[str] = ()
    content_suffix: str = ".md"
    content_prefix: str = ""
    verify: bool = False
    workers: int = 0


class ChangeDetector:
    """Computes a ChangeSet against a fingerprint store.

    The store is only read. Every fingerprint computed along the way is kept
    in ``observed`` so the caller can persist it after a successful build
    without reading the files again.

    Attributes:
        store: Fingerprints from the last successful build.
        options: Tracked non-post inputs.
        observed: Current fingerprint per checked key (None if absent or unreadable).
    """

    def __init__(self, store: FingerprintStore, options: DetectOptions | None = None):
        self.store = store
        self.options = options or DetectOptions()
        self.observed: dict[str, Fingerprint | None] = {}

    def detect(self, current_files: Sequence[str]) -> ChangeSet:
        """Detect changes for the given post files.

        Args:
            current_files: Store keys of every post that currently exists.

        Returns:
            The ChangeSet for this build.
        """
        options = self.options
        changes = ChangeSet()

        if options.config_path:
            probe = self._record(self.store.probe(options.config_path, options.verify), changes)
            if probe.changed:
                logger.info("Config %s changed; full rebuild required", probe.path)
                changes.config_changed = True
                changes.full_rebuild = True
                return changes

        for template in options.template_paths:
            probe = self._record(self.store.probe(template, options.verify), changes)
            if probe.changed:
                logger.info("Template %s changed; full rebuild required", probe.path)
                changes.templates_changed = True
                changes.full_rebuild = True
                return changes

        if options.style_paths:
            style_probes = self._scan(options.style_paths, changes)
            changed_styles = [probe.path for probe in style_probes if probe.changed]
            if changed_styles:
                logger.info("Stylesheets changed: %s", ", ".join(changed_styles))
                changes.styles_changed = True

        for probe in self._scan(current_files, changes):
            if probe.changed:
                changes.changed_posts.append(probe.path)

        current = set(current_files)
        tracked = {options.config_path, *options.template_paths, *options.style_paths}
        changes.deleted_posts = sorted(
            key
            for key in self.store
            if key.startswith(options.content_prefix)
            and key.endswith(options.content_suffix)
            and key not in current
            and key not in tracked
        )
        if changes.deleted_posts:
            logger.info(
                "%d post(s) deleted; full rebuild required", len(changes.deleted_posts)
            )
            changes.full_rebuild = True

        logger.debug(
            "Detected %d changed and %d deleted post(s)",
            len(changes.changed_posts),
            len(changes.deleted_posts),
        )
        return changes

    def _scan(self, keys: Sequence[str], changes: ChangeSet) -> list[Probe]:
        probes = self.store.scan(keys, verify=self.options.verify, workers=self.options.workers)
        for probe in probes:
            self._record(probe, changes)
        return probes

    def _record(self, probe: Probe, changes: ChangeSet) -> Probe:
        self.observed[probe.path] = probe.fingerprint
        if probe.error is not None:
            logger.warning("Cannot read %s: %s", probe.path, probe.error.reason)
            changes.unreadable[probe.path] = probe.error.reason
        return probe


def detect_changes(
    current_files: Sequence[str],
    store: FingerprintStore,
    options: DetectOptions | None = None,
) -> ChangeSet:
    """Detect changes since the last successful build.

    Args:
        current_files: Store keys of every post that currently exists.
        store: Fingerprints from the last successful build.
        options: Tracked config, template and style paths.

    Returns:
        The ChangeSet for this build.
    """
    return ChangeDetector(store, options).detect(current_files)
