from pathlib import Path

import pytest

from bunki.config import DEFAULT_CONFIG, SiteConfig, load_config
from bunki.errors import ConfigError, ConfigMissing


def test_defaults_without_config_file(tmp_path):
    config = load_config(tmp_path)
    assert config == DEFAULT_CONFIG

    site = SiteConfig.load(tmp_path)
    assert site.config_file == tmp_path / "bunki.yaml"
    assert site.content_dir == tmp_path / "content"
    assert site.output_dir == tmp_path / "dist"
    assert site.cache_file == tmp_path / ".bunki-cache.json"
    assert site.style_paths == [tmp_path / "assets" / "css" / "main.css"]
    assert site.page_size == 10
    assert site.verify_hashes is False


def test_values_override_defaults(tmp_path):
    (tmp_path / "bunki.yaml").write_text(
        "title: Notes\n"
        "base_url: https://notes.example.com/\n"
        "output_dir: public\n"
        "styles: css/site.css\n"
        "page_size: 3\n"
        "verify_hashes: true\n"
        "hash_workers: 0\n",
        encoding="utf-8",
    )
    site = SiteConfig.load(tmp_path)
    assert site.output_dir == tmp_path / "public"
    assert site.style_paths == [tmp_path / "css" / "site.css"]
    assert site.page_size == 3
    assert site.verify_hashes is True
    assert site.hash_workers == 0
    assert site.site == {
        "title": "Notes",
        "description": DEFAULT_CONFIG["description"],
        "base_url": "https://notes.example.com",
    }


def test_explicit_config_path(tmp_path):
    custom = tmp_path / "site.yaml"
    custom.write_text("content_dir: posts\n", encoding="utf-8")
    site = SiteConfig.load(tmp_path, custom)
    assert site.config_file == custom
    assert site.content_dir == tmp_path / "posts"


def test_explicit_config_path_must_exist(tmp_path):
    with pytest.raises(ConfigMissing) as exc:
        load_config(tmp_path, tmp_path / "nope.yaml")
    assert exc.value.config_path == tmp_path / "nope.yaml"


@pytest.mark.parametrize("text", ["- a\n- b\n", "title: [unclosed\n"])
def test_invalid_config_raises(tmp_path, text):
    (tmp_path / "bunki.yaml").write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_empty_config_file_uses_defaults(tmp_path):
    (tmp_path / "bunki.yaml").write_text("", encoding="utf-8")
    assert load_config(Path(tmp_path)) == DEFAULT_CONFIG
