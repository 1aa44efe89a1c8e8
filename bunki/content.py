"""Post loading for Bunki.

Posts are Markdown files under the content directory, optionally starting
with a YAML front matter block::

    ---
    title: Hello
    date: 2024-01-15
    tags: [python, web]
    ---
    Body text.

Loading a post only reads its metadata and body. Markdown is converted to
HTML by the renderer, and only for the posts a build actually re-renders.

Key items:
- Post: A blog post.
- discover_posts: List post files under a content directory.
- PostLoader: Build Post objects from files.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from .errors import BuildError

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
POST_SUFFIX = ".md"


@dataclass
class Post:
    """A blog post.

    Attributes:
        title: Human-readable title.
        slug: URL-friendly slug.
        url: URL path, ``/{year}/{slug}/``.
        date: Publication date.
        tags: Tags from the front matter, in declaration order.
        body: Markdown body without the front matter.
        excerpt: First paragraph of the body as plain text.
        path: Source path relative to the project root (the store key).
        frontmatter: Raw front matter values.
    """

    title: str
    slug: str
    url: str
    date: datetime
    tags: list[str]
    body: str
    excerpt: str
    path: str
    frontmatter: dict[str, Any] = field(default_factory=dict)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split YAML front matter from the body.

    Returns:
        Tuple of (front matter dict, remaining body). Text without a valid
        front matter block is returned unchanged with an empty dict.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


def slugify(name: str) -> str:
    """Convert a filename stem or tag to a slug, dropping a date prefix.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    parts = name.split("-")
    if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
        name = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", name).strip("-").lower()
    return cleaned or "index"


def _date_from_name(stem: str) -> datetime | None:
    parts = stem.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def _coerce_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _coerce_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    elif not isinstance(value, (list, tuple, set)):
        # A lone scalar such as ``tags: 2024``.
        value = [value]
    tags: list[str] = []
    for tag in value:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in tags:
            tags.append(cleaned)
    return tags


def _excerpt(body: str, limit: int = 200) -> str:
    for para in (p.strip() for p in body.split("\n\n")):
        if not para or para.startswith(("#", "![", "```", "---")):
            continue
        text = re.sub(r"<[^>]+>", "", " ".join(para.split()))
        return text[:limit]
    return ""


def discover_posts(content_dir: Path) -> list[Path]:
    """List post files under a content directory.

    Files and folders starting with ``_`` are treated as drafts or internal
    and skipped.

    Returns:
        Paths sorted by their path relative to ``content_dir``.
    """
    if not content_dir.exists():
        return []
    files: list[Path] = []
    for path in content_dir.rglob(f"*{POST_SUFFIX}"):
        if not path.is_file():
            continue
        rel = path.relative_to(content_dir)
        if any(part.startswith("_") for part in rel.parts):
            continue
        files.append(path)
    return sorted(files, key=lambda p: p.relative_to(content_dir).as_posix())


class PostLoader:
    """Builds Post objects from Markdown files.

    Attributes:
        project_root: Root that post keys are relative to.
    """

    def __init__(self, project_root: Path):
        self.project_root = project_root

    def key_for(self, path: Path) -> str:
        return path.relative_to(self.project_root).as_posix()

    def load(self, path: Path) -> Post:
        """Load one post.

        Raises:
            BuildError: If the file cannot be read or decoded.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise BuildError(path, f"Cannot read post: {exc}", exc) from exc

        frontmatter, body = extract_frontmatter(raw)
        slug = slugify(str(frontmatter.get("slug") or path.stem))
        published = (
            _coerce_date(frontmatter.get("date"))
            or _date_from_name(path.stem)
            or datetime.fromtimestamp(path.stat().st_mtime)
        )
        if published.tzinfo is not None:
            # Posts are sorted together; keep every date naive.
            published = published.replace(tzinfo=None)
        title = str(frontmatter.get("title") or self._title_from_body(body) or slug)
        return Post(
            title=title,
            slug=slug,
            url=f"/{published.year}/{slug}/",
            date=published,
            tags=_coerce_tags(frontmatter.get("tags")),
            body=body,
            excerpt=str(frontmatter.get("excerpt") or _excerpt(body)),
            path=self.key_for(path),
            frontmatter=frontmatter,
        )

    def load_all(self, paths: list[Path]) -> dict[str, Post]:
        """Load several posts keyed by their store key, preserving order."""
        return {post.path: post for post in (self.load(path) for path in paths)}

    @staticmethod
    def _title_from_body(body: str) -> str:
        for line in body.splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return stripped[2:].strip()
        return ""
