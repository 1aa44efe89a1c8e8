from pathlib import Path

from click.testing import CliRunner

from bunki.cli import cli


def create_project(root: Path) -> Path:
    (root / "content").mkdir(parents=True)
    (root / "bunki.yaml").write_text("title: CLI Blog\n", encoding="utf-8")
    (root / "content" / "2024-05-01-hello.md").write_text(
        "---\ntitle: Hello\ntags: [intro]\n---\nHi there.\n", encoding="utf-8"
    )
    return root


def test_cli_build_then_noop(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    monkeypatch.chdir(project)
    runner = CliRunner()

    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Full rebuild: 1 posts" in result.output
    assert "page_generation" in result.output
    assert (project / "dist" / "2024" / "hello" / "index.html").exists()

    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "No changes detected" in result.output
    assert "Estimated time saved: 6 ms" in result.output


def test_cli_build_full_flag(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    monkeypatch.chdir(project)
    runner = CliRunner()
    runner.invoke(cli, ["build"], catch_exceptions=False)

    result = runner.invoke(cli, ["-v", "build", "--full", "--verify"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Full rebuild" in result.output


def test_cli_build_error_is_reported(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    (project / "templates").mkdir()
    (project / "templates" / "post.html").write_text("{{ post.title }", encoding="utf-8")
    monkeypatch.chdir(project)

    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "File: content/2024-05-01-hello.md" in result.output


def test_cli_missing_config(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    monkeypatch.chdir(project)

    result = CliRunner().invoke(cli, ["build", "--config", "missing.yaml"])
    assert result.exit_code != 0
    assert "Config file not found" in result.output


def test_cli_cache_show_and_clear(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    monkeypatch.chdir(project)
    runner = CliRunner()

    result = runner.invoke(cli, ["cache", "show"], catch_exceptions=False)
    assert "No entries" in result.output

    runner.invoke(cli, ["build"], catch_exceptions=False)
    result = runner.invoke(cli, ["cache", "show"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "content/2024-05-01-hello.md" in result.output
    assert "[intro]" in result.output
    assert "2 entries" in result.output

    result = runner.invoke(cli, ["cache", "clear"], catch_exceptions=False)
    assert result.exit_code == 0
    assert not (project / ".bunki-cache.json").exists()

    result = runner.invoke(cli, ["cache", "clear"], catch_exceptions=False)
    assert "No build cache" in result.output


def test_cli_cache_show_corrupt(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    (project / ".bunki-cache.json").write_text("nope", encoding="utf-8")
    monkeypatch.chdir(project)

    result = CliRunner().invoke(cli, ["cache", "show"])
    assert result.exit_code != 0
    assert "Build cache is corrupt" in result.output


def test_cli_watch_uses_watcher(monkeypatch, tmp_path):
    project = create_project(tmp_path)
    monkeypatch.chdir(project)
    called = {}

    class DummyWatcher:
        def __init__(self, root, config_path=None):
            called["root"] = root
            called["config"] = config_path

        def start(self):
            called["started"] = True

    monkeypatch.setattr("bunki.watch.Watcher", DummyWatcher)
    result = CliRunner().invoke(cli, ["watch"], catch_exceptions=False)
    assert result.exit_code == 0
    assert called == {"root": project, "config": None, "started": True}


def test_module_main_entrypoint():
    from bunki.__main__ import main

    assert callable(main)
