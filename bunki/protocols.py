"""Protocol definitions for Bunki.

The incremental build engine only needs a narrow view of posts and of the
renderer that produces pages. These protocols describe that view so the
engine can be exercised with lightweight stand-ins in tests and so the
rendering backend can be swapped without touching change detection.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Collection, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import Post


@runtime_checkable
class TaggedPost(Protocol):
    """What the invalidation policy needs to know about a post."""

    slug: str
    url: str
    tags: Collection[str]


@runtime_checkable
class SiteRenderer(Protocol):
    """Protocol for the component that writes site output.

    The build orchestrator decides *which* outputs to regenerate and calls
    these methods; implementations decide *how* to render them.
    """

    @abstractmethod
    def set_posts(self, posts: Sequence[Post]) -> None:
        """Record every current post before any page is rendered.

        Args:
            posts: Every published post, newest first.
        """
        ...

    @abstractmethod
    def render_post(self, post: Post) -> Path:
        """Render a single post page.

        Args:
            post: Post to render.

        Returns:
            Path of the written file.
        """
        ...

    @abstractmethod
    def render_indexes(self, posts: Sequence[Post]) -> list[Path]:
        """Render the paginated home page and the tag overview.

        Args:
            posts: Every published post, newest first.

        Returns:
            Paths of the written files.
        """
        ...

    @abstractmethod
    def render_tag(self, tag: str, posts: Sequence[Post]) -> list[Path]:
        """Render the listing pages of one tag.

        An empty ``posts`` sequence removes the tag's pages.

        Args:
            tag: Tag name.
            posts: Posts carrying the tag, newest first.

        Returns:
            Paths of the written files.
        """
        ...

    @abstractmethod
    def remove_page(self, url: str) -> None:
        """Remove the page published at a URL, if it exists.

        Args:
            url: URL path of the page, such as ``/2024/hello/``.
        """
        ...

    @abstractmethod
    def process_styles(self, style_paths: Sequence[Path]) -> list[Path]:
        """Write stylesheets to the output directory.

        Args:
            style_paths: Source stylesheets.

        Returns:
            Paths of the written files.
        """
        ...
