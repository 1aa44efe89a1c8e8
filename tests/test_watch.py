from pathlib import Path

from bunki.watch import Watcher, _ChangeHandler


class DummyEvent:
    def __init__(self, path, is_directory=False, event_type="modified"):
        self.src_path = path
        self.is_directory = is_directory
        self.event_type = event_type


def create_project(root: Path) -> Path:
    (root / "content").mkdir(parents=True)
    (root / "content" / "hello.md").write_text("# Hello\n", encoding="utf-8")
    return root


def test_change_handler_skips_output_and_cache(tmp_path):
    watcher = Watcher(create_project(tmp_path))
    called = []
    watcher.rebuild = lambda: called.append(True)
    handler = _ChangeHandler(watcher)

    handler.on_any_event(DummyEvent(str(tmp_path / "dist" / "index.html")))
    handler.on_any_event(DummyEvent(str(tmp_path / ".bunki-cache.json")))
    handler.on_any_event(DummyEvent(str(tmp_path / ".bunki-cache.json.lock")))
    handler.on_any_event(DummyEvent(str(tmp_path / ".bunki-cache.json.full")))
    handler.on_any_event(DummyEvent(str(tmp_path / "..bunki-cache.json.abc123.tmp")))
    handler.on_any_event(DummyEvent(str(tmp_path / "content"), is_directory=True))
    assert called == []

    handler.on_any_event(DummyEvent(str(tmp_path / "content" / "hello.md")))
    assert called == [True]


def test_rebuild_runs_incremental_build(tmp_path):
    project = create_project(tmp_path)
    watcher = Watcher(project, debounce_seconds=0)
    first = watcher.build()
    assert first.plan.full is True

    (project / "content" / "new.md").write_text("# New\n", encoding="utf-8")
    result = watcher.rebuild()
    assert result is not None
    assert result.plan.full is False
    assert result.plan.posts == ["content/new.md"]


def test_rebuild_is_debounced(tmp_path):
    watcher = Watcher(create_project(tmp_path), debounce_seconds=60)
    watcher._last_rebuild_at = 10**12
    assert watcher.rebuild() is None


def test_rebuild_reports_build_errors(tmp_path, capsys):
    project = create_project(tmp_path)
    (project / "templates").mkdir()
    (project / "templates" / "post.html").write_text("{% if %}", encoding="utf-8")
    watcher = Watcher(project, debounce_seconds=0)

    assert watcher.rebuild() is None
    assert "Build failed:" in capsys.readouterr().err


def test_watch_dirs_only_existing(tmp_path):
    watcher = Watcher(create_project(tmp_path))
    assert watcher.watch_dirs() == [tmp_path / "content"]
