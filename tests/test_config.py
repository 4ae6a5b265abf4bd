from pathlib import Path

import pytest

from tabgroups.config import (
    ConfigError,
    Settings,
    load_settings,
    require_api_key,
    resolve_api_key,
    resolve_cache_dir,
    safari_source_path,
)


def test_defaults_point_keys_at_environment():
    s = Settings.from_env()
    assert s.raindrop_api_key == "$RAINDROP_TOKEN"
    assert s.openrouter_api_key == "$OPENROUTER_API_KEY"
    assert s.describe_skip_domains == ["localhost", "127.0.0.1"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TABGROUPS_CACHE_DIR", "/tmp/tg-cache")
    monkeypatch.setenv("TABGROUPS_DESCRIBE_CATEGORIES", "work, play ,")
    monkeypatch.setenv("TABGROUPS_DESCRIBE_MAX_TABS_TO_FETCH", "2")
    monkeypatch.setenv("TABGROUPS_NO_COLOR", "yes")
    s = Settings.from_env()
    assert resolve_cache_dir(s) == Path("/tmp/tg-cache")
    assert s.describe_categories == ["work", "play"]
    assert s.describe_max_tabs_to_fetch == 2
    assert s.no_color is True


def test_yaml_file_overrides_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("TABGROUPS_OPENROUTER_MODEL", "from-env")
    cfg = tmp_path / "tabgroups.yaml"
    cfg.write_text("openrouter_model: from-file\nsafari_variant: stp\nunknown_key: ignored\n", encoding="utf-8")
    s = load_settings(str(cfg))
    assert s.openrouter_model == "from-file"
    assert s.safari_variant == "stp"
    assert not hasattr(s, "unknown_key")


def test_yaml_file_must_be_mapping(tmp_path: Path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(str(cfg))


def test_default_cache_dir_uses_xdg(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    assert resolve_cache_dir(Settings()) == tmp_path / "safari-tabgroups"


def test_api_key_indirection(monkeypatch):
    monkeypatch.setenv("MY_TOKEN", " secret ")
    assert resolve_api_key("$MY_TOKEN") == "secret"
    assert resolve_api_key("literal-key") == "literal-key"
    monkeypatch.delenv("MY_TOKEN")
    assert resolve_api_key("$MY_TOKEN") == ""
    with pytest.raises(ConfigError, match="Raindrop API key not set"):
        require_api_key("$MY_TOKEN", service="Raindrop", hint="Set it.")


def test_safari_source_path_variants(tmp_path: Path):
    assert safari_source_path(Settings(), home=tmp_path) == (
        tmp_path / "Library/Containers/com.apple.Safari/Data/Library/Safari/SafariTabs.db"
    )
    stp = safari_source_path(Settings(safari_variant="stp"), home=tmp_path)
    assert "SafariTechnologyPreview" in str(stp)
    assert safari_source_path(Settings(safari_db=str(tmp_path / "x.db"))) == tmp_path / "x.db"
    with pytest.raises(ConfigError):
        safari_source_path(Settings(safari_variant="chrome"), home=tmp_path)
