import json
import os
from pathlib import Path

import pytest

from bunki.errors import CacheCorrupt, CacheWriteError
from bunki.fingerprints import (
    CACHE_VERSION,
    Fingerprint,
    FingerprintStore,
    fingerprint_of,
    hash_file,
)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def store_with(root: Path, *keys: str) -> FingerprintStore:
    store = FingerprintStore(root)
    return store.merge({key: store.fingerprint_of(key) for key in keys})


def test_hash_file_is_sha256(tmp_path):
    path = write(tmp_path / "a.txt", "hello")
    assert hash_file(path) == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


def test_fingerprint_of_missing_file_is_none(tmp_path):
    assert fingerprint_of(tmp_path / "missing.md") is None


def test_fingerprint_of_reuses_previous_when_stat_matches(tmp_path):
    path = write(tmp_path / "a.md", "body")
    first = fingerprint_of(path)
    stale = Fingerprint(content_hash="not-rehashed", size=first.size, modified_at=first.modified_at)
    assert fingerprint_of(path, previous=stale) is stale
    assert fingerprint_of(path, previous=stale, verify=True).content_hash == first.content_hash


def test_load_missing_cache_is_empty(tmp_path):
    store = FingerprintStore.load(tmp_path)
    assert len(store) == 0
    assert store.cache_file == tmp_path / ".bunki-cache.json"


def test_save_then_load(tmp_path):
    write(tmp_path / "content" / "a.md", "alpha")
    store = FingerprintStore(tmp_path)
    fp = store.fingerprint_of("content/a.md")
    store = store.merge({"content/a.md": Fingerprint(fp.content_hash, fp.size, fp.modified_at, ("python",))})
    store.save()

    loaded = FingerprintStore.load(tmp_path)
    assert loaded["content/a.md"] == store["content/a.md"]
    assert loaded.tags_of("content/a.md") == ("python",)
    payload = json.loads((tmp_path / ".bunki-cache.json").read_text(encoding="utf-8"))
    assert payload["version"] == CACHE_VERSION
    assert set(payload["files"]["content/a.md"]) == {"hash", "size", "modified_at", "tags"}
    # No temporary files left behind
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []


def test_load_tolerates_unknown_fields(tmp_path):
    cache = {
        "version": CACHE_VERSION,
        "generator": "something else",
        "files": {"a.md": {"hash": "abc", "size": 3, "modified_at": 1.5, "extra": True}},
    }
    (tmp_path / ".bunki-cache.json").write_text(json.dumps(cache), encoding="utf-8")
    store = FingerprintStore.load(tmp_path)
    assert store["a.md"] == Fingerprint(content_hash="abc", size=3, modified_at=1.5)
    assert store.tags_of("a.md") == ()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"version": CACHE_VERSION + 1, "files": {}}),
        json.dumps({"version": CACHE_VERSION, "files": []}),
        json.dumps({"version": CACHE_VERSION, "files": {"a.md": {"size": 1}}}),
    ],
)
def test_load_corrupt_cache_raises(tmp_path, content):
    (tmp_path / ".bunki-cache.json").write_text(content, encoding="utf-8")
    with pytest.raises(CacheCorrupt) as exc:
        FingerprintStore.load(tmp_path)
    assert exc.value.cache_file == tmp_path / ".bunki-cache.json"


def test_has_changed_new_file(tmp_path):
    write(tmp_path / "a.md", "alpha")
    changed, current = FingerprintStore(tmp_path).has_changed("a.md")
    assert changed is True
    assert current is not None


def test_touch_without_edit_is_unchanged(tmp_path):
    path = write(tmp_path / "a.md", "alpha")
    store = store_with(tmp_path, "a.md")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    changed, current = store.has_changed("a.md")
    assert changed is False
    assert current.modified_at != store["a.md"].modified_at
    assert current.content_hash == store["a.md"].content_hash


def test_edit_is_changed(tmp_path):
    path = write(tmp_path / "a.md", "alpha")
    store = store_with(tmp_path, "a.md")
    path.write_text("alpha, edited", encoding="utf-8")
    assert store.has_changed("a.md")[0] is True


def test_same_size_rewrite_needs_verify(tmp_path):
    path = write(tmp_path / "a.md", "aaaa")
    store = store_with(tmp_path, "a.md")
    stat = path.stat()
    path.write_text("bbbb", encoding="utf-8")
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))

    assert store.has_changed("a.md")[0] is False
    assert store.has_changed("a.md", verify=True)[0] is True


def test_missing_file_changed_only_when_stored(tmp_path):
    path = write(tmp_path / "a.md", "alpha")
    store = store_with(tmp_path, "a.md")
    path.unlink()
    assert store.has_changed("a.md") == (True, None)
    assert store.has_changed("never-seen.md") == (False, None)


def test_probe_records_unreadable_file(tmp_path):
    # A directory exists but cannot be read as a file.
    (tmp_path / "broken.md").mkdir()
    probe = FingerprintStore(tmp_path).probe("broken.md")
    assert probe.changed is True
    assert probe.fingerprint is None
    assert probe.error is not None
    assert probe.error.path == tmp_path / "broken.md"


def test_scan_preserves_order_with_workers(tmp_path):
    keys = [f"post-{i:02d}.md" for i in range(20)]
    for i, key in enumerate(keys):
        write(tmp_path / key, "x" * (i + 1))
    probes = FingerprintStore(tmp_path).scan(list(reversed(keys)), workers=4)
    assert [probe.path for probe in probes] == list(reversed(keys))
    assert [probe.fingerprint.size for probe in probes] == list(range(20, 0, -1))


def test_merge_returns_new_store(tmp_path):
    write(tmp_path / "a.md", "alpha")
    write(tmp_path / "b.md", "beta")
    store = store_with(tmp_path, "a.md", "b.md")
    fp = store["a.md"]

    merged = store.merge({"c.md": fp}, removed=["b.md"])
    assert sorted(merged) == ["a.md", "c.md"]
    assert sorted(store) == ["a.md", "b.md"]


def test_key_for_relative_and_absolute(tmp_path):
    store = FingerprintStore(tmp_path)
    assert store.key_for(tmp_path / "content" / "a.md") == "content/a.md"
    assert store.key_for("content/a.md") == "content/a.md"


def test_failed_save_keeps_previous_cache(tmp_path, monkeypatch):
    write(tmp_path / "a.md", "alpha")
    store_with(tmp_path, "a.md").save()
    before = (tmp_path / ".bunki-cache.json").read_text(encoding="utf-8")

    write(tmp_path / "b.md", "beta")
    updated = store_with(tmp_path, "a.md", "b.md")

    def failing_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", failing_replace)
    with pytest.raises(CacheWriteError):
        updated.save()

    assert (tmp_path / ".bunki-cache.json").read_text(encoding="utf-8") == before
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []


def test_fingerprint_keeps_post_url():
    fp = Fingerprint(content_hash="abc", size=1, modified_at=2.0, tags=("a",), url="/2024/a/")
    assert fp.to_dict()["url"] == "/2024/a/"
    assert Fingerprint.from_dict(fp.to_dict()) == fp
    assert "url" not in Fingerprint(content_hash="abc", size=1, modified_at=2.0).to_dict()
