"""
Tests for store configuration and the error log.
"""

from pathlib import Path

import pytest

from oogvault.config import (
    CONFIG_FILENAME,
    SearchConfig,
    Settings,
    VaultConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from oogvault.errors import log_exception


class TestDefaults:

    def test_default_settings(self):
        settings = Settings()
        assert settings.auto_save is True
        assert settings.autocomplete_enabled is True
        assert settings.autocomplete_min_length == 20
        assert settings.theme == "default"

    def test_default_search_policy(self):
        search = SearchConfig()
        assert search.conversation_threshold == 0.25
        assert search.similar_threshold == 0.3
        assert search.nugget_threshold == 0.3
        assert search.similar_min_query_length == 8

    def test_store_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OOGVAULT_STORE_PATH", str(tmp_path / "vault"))
        assert get_default_store_path() == tmp_path / "vault"

    def test_store_path_home_fallback(self, monkeypatch):
        monkeypatch.delenv("OOGVAULT_STORE_PATH", raising=False)
        assert get_default_store_path() == Path.home() / ".oogvault"


class TestLoadOrCreate:

    def test_creates_file(self, tmp_path):
        config = load_or_create_config(tmp_path / "store")
        assert config.config_path.exists()
        assert config.database_path == tmp_path / "store" / "vault.db"
        assert config.created

    def test_round_trip(self, tmp_path):
        config = load_or_create_config(tmp_path)
        config.settings.autocomplete_enabled = False
        config.settings.theme = "dark"
        config.search.similar_threshold = 0.45
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.settings.autocomplete_enabled is False
        assert loaded.settings.theme == "dark"
        assert loaded.search.similar_threshold == 0.45
        assert loaded.created == config.created

    def test_existing_file_is_loaded(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[settings]\ntheme = "solarized"\n')
        config = load_or_create_config(tmp_path)
        assert config.settings.theme == "solarized"
        assert config.settings.auto_save is True


class TestLoadConfig:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("this is = = not toml")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_unknown_keys_ignored(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "[settings]\nfuture_flag = 1\n\n[search]\nexperimental = true\n"
        )
        config = load_config(tmp_path)
        assert config.settings == Settings()
        assert config.search == SearchConfig()

    def test_bool_must_be_bool(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[settings]\nauto_save = 1\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_int_threshold_becomes_float(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[search]\nnugget_threshold = 1\n")
        config = load_config(tmp_path)
        assert config.search.nugget_threshold == 1.0
        assert isinstance(config.search.nugget_threshold, float)


class TestVaultConfig:

    def test_paths(self, tmp_path):
        config = VaultConfig(path=tmp_path)
        assert config.config_path == tmp_path / "vault.toml"
        assert not config.exists()
        save_config(config)
        assert config.exists()


class TestErrorLog:

    def test_writes_traceback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OOGVAULT_STORE_PATH", str(tmp_path))
        try:
            raise RuntimeError("disk on fire")
        except RuntimeError as e:
            path = log_exception(e, "oogvault save")

        assert path == tmp_path / "vault-errors.log"
        text = path.read_text()
        assert "oogvault save: RuntimeError: disk on fire" in text
        assert "Traceback" in text
