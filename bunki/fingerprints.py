"""Fingerprint store for incremental builds.

The store is the only state that survives between builds. It maps
project-relative paths to a Fingerprint (content hash, size, modification
time) recorded the last time the file was successfully processed.

A store is an immutable snapshot: it is loaded once at the start of a build,
read during change detection, and replaced by ``merge`` once the build has
finished. ``save`` writes it atomically so an interrupted build never leaves a
half-written cache behind.

Staleness is checked cheaply first: when size and modification time match the
stored fingerprint, the stored hash is reused without reading the file. File
systems with coarse mtime resolution can hide a same-size rewrite inside that
window; pass ``verify=True`` to always hash content.

Key classes:
- Fingerprint: Summary of a file's content.
- Probe: Result of checking one path against the store.
- FingerprintStore: The persisted path -> Fingerprint mapping.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import CacheCorrupt, CacheWriteError, FileUnreadable

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
DEFAULT_CACHE_FILE = ".bunki-cache.json"
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Fingerprint:
    """Compact summary of a file's content.

    Attributes:
        content_hash: SHA-256 hex digest of the file content.
        size: File size in bytes.
        modified_at: Modification time (seconds since the epoch).
        tags: Tags of the post rendered from this file, when it is a post.
        url: URL the post was published at, when it is a post.
    """

    content_hash: str
    size: int
    modified_at: float
    tags: tuple[str, ...] | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "hash": self.content_hash,
            "size": self.size,
            "modified_at": self.modified_at,
        }
        if self.tags is not None:
            payload["tags"] = list(self.tags)
        if self.url is not None:
            payload["url"] = self.url
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Fingerprint:
        """Build a Fingerprint from its persisted form.

        Unknown keys are ignored.

        Raises:
            KeyError: If a required key is missing.
            TypeError: If a value has the wrong type.
            ValueError: If a numeric value cannot be converted.
        """
        content_hash = payload["hash"]
        if not isinstance(content_hash, str):
            raise TypeError(f"hash must be a string, got {type(content_hash).__name__}")
        tags = payload.get("tags")
        if tags is not None and not isinstance(tags, list):
            raise TypeError("tags must be a list")
        url = payload.get("url")
        if url is not None and not isinstance(url, str):
            raise TypeError("url must be a string")
        return cls(
            content_hash=content_hash,
            size=int(payload["size"]),
            modified_at=float(payload["modified_at"]),
            tags=tuple(str(tag) for tag in tags) if tags is not None else None,
            url=url,
        )

    def matches_stat(self, size: int, modified_at: float) -> bool:
        """Return True if size and modification time are unchanged."""
        return self.size == size and self.modified_at == modified_at


@dataclass(frozen=True)
class Probe:
    """Outcome of comparing one path against the store.

    Attributes:
        path: Store key that was checked.
        changed: Whether the file differs from its stored fingerprint.
        fingerprint: Current fingerprint, or None if the file is absent or unreadable.
        error: The read failure, if the file could not be read.
    """

    path: str
    changed: bool
    fingerprint: Fingerprint | None
    error: FileUnreadable | None = None


def hash_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def fingerprint_of(
    path: Path,
    previous: Fingerprint | None = None,
    verify: bool = False,
) -> Fingerprint | None:
    """Compute the fingerprint of a file on disk.

    Args:
        path: File to fingerprint.
        previous: Stored fingerprint; reused as-is when size and mtime match.
        verify: Always hash the content, even if size and mtime match.

    Returns:
        The fingerprint, or None if the file does not exist.

    Raises:
        FileUnreadable: If the file exists but cannot be read.
    """
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise FileUnreadable(path, exc.strerror or str(exc)) from exc

    if previous is not None and not verify and previous.matches_stat(stat.st_size, stat.st_mtime):
        return previous

    try:
        content_hash = hash_file(path)
    except FileNotFoundError:
        # Deleted between stat and open.
        return None
    except OSError as exc:
        raise FileUnreadable(path, exc.strerror or str(exc)) from exc
    return Fingerprint(content_hash=content_hash, size=stat.st_size, modified_at=stat.st_mtime)


class FingerprintStore(Mapping[str, Fingerprint]):
    """Immutable mapping of project-relative path to Fingerprint.

    Keys are POSIX paths relative to ``root``. Instances are never mutated;
    ``merge`` returns a new store so the snapshot read at build start stays
    intact if the build fails.

    Attributes:
        root: Project root that keys are relative to.
        cache_file: Where the store is persisted.
    """

    def __init__(
        self,
        root: Path,
        entries: Mapping[str, Fingerprint] | None = None,
        cache_file: Path | None = None,
    ):
        self.root = root
        self.cache_file = cache_file or root / DEFAULT_CACHE_FILE
        self._entries: dict[str, Fingerprint] = dict(entries or {})

    def __getitem__(self, key: str) -> Fingerprint:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"FingerprintStore({len(self._entries)} files, cache={self.cache_file})"

    @classmethod
    def load(cls, root: Path, cache_file: Path | None = None) -> FingerprintStore:
        """Load the store persisted for a project.

        A missing cache file yields an empty store.

        Args:
            root: Project root.
            cache_file: Cache location, defaults to ``root/.bunki-cache.json``.

        Returns:
            The loaded store.

        Raises:
            CacheCorrupt: If the cache file cannot be read or parsed, or was
                written by an unsupported format version.
        """
        cache_file = cache_file or root / DEFAULT_CACHE_FILE
        if not cache_file.exists():
            return cls(root, {}, cache_file)
        try:
            payload = json.loads(cache_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CacheCorrupt(cache_file, f"cannot parse cache: {exc}") from exc

        if not isinstance(payload, dict):
            raise CacheCorrupt(cache_file, "cache root is not an object")
        version = payload.get("version")
        if version != CACHE_VERSION:
            raise CacheCorrupt(
                cache_file, f"unsupported cache version {version!r} (expected {CACHE_VERSION})"
            )
        files = payload.get("files")
        if not isinstance(files, dict):
            raise CacheCorrupt(cache_file, "'files' is not an object")

        entries: dict[str, Fingerprint] = {}
        for key, raw in files.items():
            if not isinstance(raw, dict):
                raise CacheCorrupt(cache_file, f"entry for {key!r} is not an object")
            try:
                entries[key] = Fingerprint.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise CacheCorrupt(cache_file, f"invalid entry for {key!r}: {exc}") from exc
        logger.debug("Loaded %d fingerprints from %s", len(entries), cache_file)
        return cls(root, entries, cache_file)

    def key_for(self, path: Path | str) -> str:
        """Return the store key for a path.

        Absolute paths under ``root`` are made relative; relative paths are
        normalised to POSIX form.
        """
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.relative_to(self.root)
            except ValueError:
                pass
        return candidate.as_posix()

    def resolve(self, key: str) -> Path:
        """Return the filesystem path for a store key."""
        return self.root / key

    def tags_of(self, key: str) -> tuple[str, ...]:
        """Return the tags recorded for a post, or an empty tuple."""
        entry = self._entries.get(key)
        if entry is None or entry.tags is None:
            return ()
        return entry.tags

    def url_of(self, key: str) -> str | None:
        """Return the URL recorded for a post, if any."""
        entry = self._entries.get(key)
        return entry.url if entry is not None else None

    def fingerprint_of(self, key: str, verify: bool = False) -> Fingerprint | None:
        """Fingerprint the file behind a key, reusing the stored entry when possible.

        Raises:
            FileUnreadable: If the file exists but cannot be read.
        """
        return fingerprint_of(self.resolve(key), self._entries.get(key), verify=verify)

    def has_changed(self, key: str, verify: bool = False) -> tuple[bool, Fingerprint | None]:
        """Compare a file on disk with its stored fingerprint.

        A file whose mtime changed but whose content hash is identical is
        reported as unchanged. A missing file counts as changed only when the
        store has an entry for it.

        Returns:
            Tuple of (changed, current fingerprint or None if absent).

        Raises:
            FileUnreadable: If the file exists but cannot be read.
        """
        previous = self._entries.get(key)
        current = self.fingerprint_of(key, verify=verify)
        if current is None:
            return previous is not None, None
        if previous is None:
            return True, current
        return current.content_hash != previous.content_hash, current

    def probe(self, key: str, verify: bool = False) -> Probe:
        """Check one key, capturing read failures instead of raising them."""
        try:
            changed, current = self.has_changed(key, verify=verify)
        except FileUnreadable as exc:
            return Probe(path=key, changed=True, fingerprint=None, error=exc)
        return Probe(path=key, changed=changed, fingerprint=current)

    def scan(
        self, keys: Sequence[str], verify: bool = False, workers: int = 0
    ) -> list[Probe]:
        """Probe many keys, optionally on a thread pool.

        Results are always returned in the order of ``keys``, whatever order
        the worker threads finish in.

        Args:
            keys: Store keys to check.
            verify: Always hash content.
            workers: Thread count; 0 or 1 runs sequentially.

        Returns:
            One Probe per key, in input order.
        """
        keys = list(keys)
        if workers <= 1 or len(keys) < 2:
            return [self.probe(key, verify) for key in keys]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda key: self.probe(key, verify), keys))

    def merge(
        self,
        updates: Mapping[str, Fingerprint],
        removed: Iterable[str] = (),
    ) -> FingerprintStore:
        """Return a new store with updates applied and removed keys dropped.

        The receiver is left untouched.
        """
        entries = dict(self._entries)
        for key in removed:
            entries.pop(key, None)
        entries.update(updates)
        return FingerprintStore(self.root, entries, self.cache_file)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": CACHE_VERSION,
            "files": {key: self._entries[key].to_dict() for key in sorted(self._entries)},
        }

    def save(self) -> None:
        """Persist the store atomically.

        The JSON document is written to a temporary file next to the cache
        file, flushed to disk, then renamed over it.

        Raises:
            CacheWriteError: If the cache cannot be written.
        """
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"
        tmp_name: str | None = None
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.cache_file.name}.", suffix=".tmp", dir=self.cache_file.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.cache_file)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CacheWriteError(self.cache_file, exc) from exc
        logger.debug("Saved %d fingerprints to %s", len(self._entries), self.cache_file)
