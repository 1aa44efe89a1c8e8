"""Page rendering for Bunki.

Renders posts, paginated listings and tag pages with Jinja2, converting post
Markdown with mistune. Templates are looked up in the project's templates
directory first and fall back to minimal built-in ones.

Templates and their context:

- ``post.html``: ``site``, ``post``, ``content`` (rendered HTML), ``tags``
- ``index.html``: ``site``, ``posts``, ``pagination``, ``tags``
- ``tag.html``: ``site``, ``tag``, ``posts``, ``pagination``, ``tags``
- ``tags.html``: ``site``, ``tags``

Key classes:
- Pagination: Position of one listing page.
- TagSummary: A tag with its slug and post count.
- JinjaSiteRenderer: SiteRenderer implementation.
"""

from __future__ import annotations

import logging
import math
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import mistune
from jinja2 import ChoiceLoader, DictLoader, Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from .content import Post, slugify

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = {
    "post.html": (
        "<!doctype html><html><head><title>{{ post.title }} | {{ site.title }}</title></head>"
        "<body><article><h1>{{ post.title }}</h1>"
        "<time>{{ post.date.strftime('%Y-%m-%d') }}</time>{{ content }}"
        "<ul>{% for tag in post.tags %}<li>{{ tag }}</li>{% endfor %}</ul>"
        "</article></body></html>"
    ),
    "index.html": (
        "<!doctype html><html><head><title>{{ site.title }}</title></head><body><ul>"
        "{% for post in posts %}<li><a href=\"{{ post.url }}\">{{ post.title }}</a></li>{% endfor %}"
        "</ul></body></html>"
    ),
    "tag.html": (
        "<!doctype html><html><head><title>{{ tag.name }} | {{ site.title }}</title></head>"
        "<body><h1>{{ tag.name }}</h1><ul>"
        "{% for post in posts %}<li><a href=\"{{ post.url }}\">{{ post.title }}</a></li>{% endfor %}"
        "</ul></body></html>"
    ),
    "tags.html": (
        "<!doctype html><html><head><title>Tags | {{ site.title }}</title></head><body><ul>"
        "{% for tag in tags %}<li><a href=\"/tags/{{ tag.slug }}/\">{{ tag.name }}</a>"
        " ({{ tag.count }})</li>{% endfor %}</ul></body></html>"
    ),
}


@dataclass(frozen=True)
class Pagination:
    """Position of one page in a paginated listing."""

    current_page: int
    total_pages: int
    page_size: int
    total_items: int
    page_path: str

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.current_page > 1

    @property
    def next_page(self) -> int | None:
        return self.current_page + 1 if self.has_next_page else None

    @property
    def prev_page(self) -> int | None:
        return self.current_page - 1 if self.has_prev_page else None


@dataclass(frozen=True)
class TagSummary:
    name: str
    slug: str
    count: int


def paginate(items: Sequence[Any], page_size: int) -> list[Sequence[Any]]:
    """Split items into pages; an empty sequence still yields one empty page."""
    if not items:
        return [items[:0]]
    total = math.ceil(len(items) / page_size)
    return [items[i * page_size : (i + 1) * page_size] for i in range(total)]


def tag_summaries(posts: Sequence[Post]) -> list[TagSummary]:
    counts: dict[str, int] = {}
    for post in posts:
        for tag in post.tags:
            counts[tag] = counts.get(tag, 0) + 1
    return [TagSummary(name=tag, slug=slugify(tag), count=counts[tag]) for tag in sorted(counts)]


class JinjaSiteRenderer:
    """Writes site output using Jinja2 templates.

    Attributes:
        templates_dir: Directory with user templates.
        output_dir: Directory pages are written to.
        project_root: Root used to place copied stylesheets.
        site: Values exposed to templates as ``site``.
        page_size: Posts per listing page.
        env: Jinja2 environment.
    """

    def __init__(
        self,
        templates_dir: Path,
        output_dir: Path,
        project_root: Path,
        site: dict[str, Any] | None = None,
        page_size: int = 10,
    ):
        self.templates_dir = templates_dir
        self.output_dir = output_dir
        self.project_root = project_root
        self.site = site or {}
        self.page_size = page_size
        self.env = Environment(
            loader=ChoiceLoader(
                [FileSystemLoader(str(templates_dir)), DictLoader(DEFAULT_TEMPLATES)]
            ),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self._markdown = mistune.create_markdown(
            escape=False, plugins=["strikethrough", "footnotes", "table", "url"]
        )
        self._tags: list[TagSummary] = []

    def set_posts(self, posts: Sequence[Post]) -> None:
        """Record every current post so pages can list all tags."""
        self._tags = tag_summaries(posts)

    def render_markdown(self, body: str) -> Markup:
        return Markup(self._markdown(body))

    def render_post(self, post: Post) -> Path:
        html = self._render(
            "post.html",
            post=post,
            content=self.render_markdown(post.body),
        )
        return self._write(post.url, html)

    def render_indexes(self, posts: Sequence[Post]) -> list[Path]:
        written = self._render_listing("/", "index.html", posts)
        written.append(self._write("/tags/", self._render("tags.html")))
        return written

    def render_tag(self, tag: str, posts: Sequence[Post]) -> list[Path]:
        slug = slugify(tag)
        base = f"/tags/{slug}/"
        if not posts:
            target = self.output_dir / "tags" / slug
            if target.exists():
                logger.debug("Removing pages of unused tag %s", tag)
                shutil.rmtree(target)
            return []
        summary = TagSummary(name=tag, slug=slug, count=len(posts))
        return self._render_listing(base, "tag.html", posts, tag=summary)

    def remove_page(self, url: str) -> None:
        target_dir = self.output_dir / url.strip("/")
        html_path = target_dir / "index.html"
        if not html_path.exists():
            return
        logger.debug("Removing stale page %s", url)
        html_path.unlink()
        if target_dir != self.output_dir and not any(target_dir.iterdir()):
            target_dir.rmdir()

    def process_styles(self, style_paths: Sequence[Path]) -> list[Path]:
        written: list[Path] = []
        for source in style_paths:
            if not source.exists():
                logger.warning("Stylesheet not found: %s", source)
                continue
            dest = self.output_dir / source.relative_to(self.project_root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
            written.append(dest)
        return written

    def _render_listing(
        self, base: str, template: str, posts: Sequence[Post], **extra: Any
    ) -> list[Path]:
        pages = paginate(posts, self.page_size)
        stale = self.output_dir / base.strip("/") / "page"
        if stale.exists():
            shutil.rmtree(stale)
        written = []
        for number, chunk in enumerate(pages, start=1):
            pagination = Pagination(
                current_page=number,
                total_pages=len(pages),
                page_size=self.page_size,
                total_items=len(posts),
                page_path=base,
            )
            html = self._render(template, posts=chunk, pagination=pagination, **extra)
            url = base if number == 1 else f"{base}page/{number}/"
            written.append(self._write(url, html))
        return written

    def _render(self, template: str, **context: Any) -> str:
        return self.env.get_template(template).render(site=self.site, tags=self._tags, **context)

    def _write(self, url: str, html: str) -> Path:
        target_dir = self.output_dir / url.strip("/")
        target_dir.mkdir(parents=True, exist_ok=True)
        html_path = target_dir / "index.html"
        with open(html_path, "w", encoding="utf-8") as f:
            f.write(html)
        return html_path
