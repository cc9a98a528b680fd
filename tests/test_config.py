import os
from pathlib import Path

import click
import pytest

from stemmy.config import DEFAULT_PORT, Config, get_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolated environment: no STEMMY_* vars, cwd without a .env file."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("STEMMY_")}
    monkeypatch.setattr(os, "environ", env)
    monkeypatch.chdir(tmp_path)
    return env


class TestDefaults:
    def test_defaults(self):
        config = get_config()
        assert config.host == "127.0.0.1"
        assert config.port == DEFAULT_PORT
        assert config.api_url == f"http://127.0.0.1:{DEFAULT_PORT}"
        assert config.stale_check_seconds == 60
        assert config.log_level == "INFO"
        assert config.db_path == Path.home() / ".stemmy" / "stemmy.db"

    def test_api_url_follows_host_and_port(self):
        assert Config(host="0.0.0.0", port=9000).api_url == "http://0.0.0.0:9000"

    def test_explicit_api_url_kept(self):
        assert Config(api_url="http://box:1").api_url == "http://box:1"


class TestEnvironment:
    def test_overrides(self, clean_env, tmp_path):
        clean_env.update({
            "STEMMY_DB": str(tmp_path / "x.db"),
            "STEMMY_PORT": "9123",
            "STEMMY_STALE_CHECK_SECONDS": "5",
            "STEMMY_LOG_LEVEL": "debug",
        })
        config = get_config()
        assert config.db_path == tmp_path / "x.db"
        assert config.port == 9123
        assert config.api_url.endswith(":9123")
        assert config.stale_check_seconds == 5
        assert config.log_level == "DEBUG"

    def test_db_path_expands_user(self, clean_env):
        clean_env["STEMMY_DB"] = "~/data/s.db"
        assert get_config().db_path == Path.home() / "data" / "s.db"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("STEMMY_PORT=7001\n")
        assert get_config().port == 7001

    def test_real_env_beats_dotenv(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("STEMMY_PORT=7001\n")
        clean_env["STEMMY_PORT"] = "7002"
        assert get_config().port == 7002

    def test_explicit_env_file(self, tmp_path):
        env_file = tmp_path / "conf" / "stemmy.env"
        env_file.parent.mkdir()
        env_file.write_text("STEMMY_HOST=10.0.0.2\n")
        assert get_config(env_file).host == "10.0.0.2"


class TestValidation:
    @pytest.mark.parametrize("name,value", [
        ("STEMMY_PORT", "abc"),
        ("STEMMY_PORT", "70000"),
        ("STEMMY_STALE_CHECK_SECONDS", "0"),
        ("STEMMY_LOG_LEVEL", "LOUD"),
    ])
    def test_bad_values(self, clean_env, name, value):
        clean_env[name] = value
        with pytest.raises(click.ClickException):
            get_config()
