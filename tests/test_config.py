"""Tests for bytepad.toml handling and environment overrides."""

from pathlib import Path

import pytest

from bytepad.config import (
    CONFIG_FILENAME,
    ServerConfig,
    get_data_dir,
    load_config,
    load_or_create_config,
    require_secure_url,
    save_config,
)


class TestDataDir:

    def test_default(self):
        assert get_data_dir({}) == Path.home() / ".bytepad"

    def test_env_var(self, tmp_path):
        assert get_data_dir({"BYTEPAD_DATA_DIR": str(tmp_path)}) == tmp_path.resolve()

    def test_legacy_env_var(self, tmp_path):
        assert get_data_dir({"DATA_DIR": str(tmp_path)}) == tmp_path.resolve()

    def test_new_name_wins(self, tmp_path):
        env = {"BYTEPAD_DATA_DIR": str(tmp_path / "new"), "DATA_DIR": str(tmp_path / "old")}
        assert get_data_dir(env).name == "new"


class TestLoadOrCreate:

    def test_creates_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path, env={})
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.local_api.url == "http://127.0.0.1:31337"
        assert config.local_api.health_cache_seconds == 30.0
        assert config.remote.api_url == "https://api.github.com"
        assert config.dedup_ttl_seconds == 300.0
        assert config.data_path == tmp_path / "bytepad-data.json"
        assert config.sync_config_path == tmp_path / "gist-config.json"

    def test_round_trip_edits(self, tmp_path):
        config = ServerConfig(data_dir=tmp_path)
        config.local_api.url = "http://localhost:4000"
        config.dedup_ttl_seconds = 60.0
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.local_api.url == "http://localhost:4000"
        assert loaded.dedup_ttl_seconds == 60.0

    def test_env_overrides_file(self, tmp_path):
        save_config(ServerConfig(data_dir=tmp_path))
        config = load_or_create_config(tmp_path, env={
            "LOCAL_API_URL": "http://127.0.0.1:5000/",
            "BYTEPAD_GIST_API_URL": "https://ghe.example.com/api/v3",
        })
        assert config.local_api.url == "http://127.0.0.1:5000"
        assert config.remote.api_url == "https://ghe.example.com/api/v3"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    @pytest.mark.parametrize("value", ["0", "-5", '"fast"', "true"])
    def test_invalid_timeouts_rejected(self, tmp_path, value):
        (tmp_path / CONFIG_FILENAME).write_text(f"[local_api]\nrequest_timeout = {value}\n")
        with pytest.raises(ValueError, match="request_timeout"):
            load_config(tmp_path)


class TestSecureUrl:

    def test_https_allowed(self):
        assert require_secure_url("https://api.github.com/", "Gist API") == "https://api.github.com"

    @pytest.mark.parametrize("url", ["http://localhost:8080", "http://127.0.0.1", "http://[::1]:9000"])
    def test_loopback_allowed(self, url):
        require_secure_url(url, "Gist API")

    def test_remote_http_rejected(self):
        with pytest.raises(ValueError, match="Gist API URL must use HTTPS"):
            require_secure_url("http://api.github.com", "Gist API")
