"""Rebuild scope derived from a ChangeSet.

Pure functions, no I/O. Given what changed, decide which outputs have to be
regenerated:

- a full rebuild re-renders every post, tag page and index;
- otherwise only changed posts are re-rendered, tag pages are regenerated for
  every tag those posts carry now or carried at their previous build, and
  index pages are regenerated whenever any post changed;
- a changed post whose URL moved leaves its old URL in ``stale_urls``.

Key functions:
- affected_tags: Union of tags across posts.
- needs_index_regeneration: Whether listing pages must be rebuilt.
- plan_rebuild: Turn a ChangeSet into a RebuildPlan.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .changes import ChangeSet
from .protocols import TaggedPost


@dataclass
class RebuildPlan:
    """Concrete list of outputs to regenerate.

    Attributes:
        full: Re-render every output.
        posts: Store keys of posts to re-render.
        deleted: Store keys of posts whose outputs must be removed.
        tags: Tag pages to regenerate.
        indexes: Whether index/listing pages are regenerated.
        styles: Whether stylesheets are reprocessed.
        stale_urls: Published URLs no current post lives at any more.
    """

    full: bool = False
    posts: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    tags: set[str] = field(default_factory=set)
    indexes: bool = False
    styles: bool = False
    stale_urls: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not (
            self.full
            or self.posts
            or self.deleted
            or self.tags
            or self.indexes
            or self.styles
            or self.stale_urls
        )


def affected_tags(posts: Iterable[TaggedPost]) -> set[str]:
    """Return the union of tags across the given posts."""
    tags: set[str] = set()
    for post in posts:
        tags.update(post.tags)
    return tags


def needs_index_regeneration(change_set: ChangeSet) -> bool:
    """Return True if index and listing pages must be regenerated.

    Any added, modified or removed post can change the ordering or
    membership of listing pages, as can a forced full rebuild.
    """
    return bool(
        change_set.changed_posts or change_set.deleted_posts or change_set.full_rebuild
    )


def plan_rebuild(
    change_set: ChangeSet,
    posts_by_path: Mapping[str, TaggedPost],
    previous_tags: Mapping[str, Iterable[str]] | None = None,
    previous_urls: Mapping[str, str | None] | None = None,
) -> RebuildPlan:
    """Derive the rebuild plan for a build.

    Args:
        change_set: Output of change detection.
        posts_by_path: Every current post keyed by its store key.
        previous_tags: Tags each post had at its last successful build. Tags
            dropped from a changed post still need their listing regenerated.
        previous_urls: URL each post was published at by its last successful
            build. A changed post that moved leaves its old URL stale.

    Returns:
        The RebuildPlan.
    """
    if change_set.full_rebuild:
        return RebuildPlan(
            full=True,
            posts=list(posts_by_path),
            deleted=list(change_set.deleted_posts),
            tags=affected_tags(posts_by_path.values()),
            indexes=True,
            styles=True,
        )

    changed = [posts_by_path[key] for key in change_set.changed_posts if key in posts_by_path]
    tags = affected_tags(changed)
    if previous_tags:
        for key in change_set.changed_posts:
            tags.update(previous_tags.get(key, ()))
    previous_urls = previous_urls or {}
    current_urls = {post.url for post in posts_by_path.values()}
    stale_urls: list[str] = []
    for key in change_set.changed_posts:
        old_url = previous_urls.get(key)
        if old_url and old_url not in current_urls and old_url not in stale_urls:
            stale_urls.append(old_url)
    return RebuildPlan(
        full=False,
        posts=[key for key in change_set.changed_posts if key in posts_by_path],
        deleted=list(change_set.deleted_posts),
        tags=tags,
        indexes=needs_index_regeneration(change_set),
        styles=change_set.styles_changed,
        stale_urls=stale_urls,
    )
