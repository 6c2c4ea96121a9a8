import pytest

from feedcore import config


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    config_dir = tmp_path / ".config" / "feedcore"
    config_file = config_dir / "config.json"
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_FILE", config_file)
    for name in ("USE_MOCK_DATA", "RATE_LIMIT_MAX_REQUESTS", "OLLAMA_MODEL"):
        monkeypatch.delenv(config.ENV_PREFIX + name, raising=False)
    return config_file


def test_config_workflow(config_file):
    assert config.load_config() == {}

    config.save_config("ollama_model", "llama3:8b")
    assert config_file.exists()
    assert config.load_config()["ollama_model"] == "llama3:8b"

    config.save_config("use_mock_data", False)
    loaded = config.load_config()
    assert loaded == {"ollama_model": "llama3:8b", "use_mock_data": False}


def test_load_corrupt_config(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("invalid json{")
    assert config.load_config() == {}


def test_settings_defaults(config_file):
    settings = config.load_settings()
    assert settings.use_mock_data is True
    assert settings.rate_limit_max_requests == 20
    assert settings.rate_limit_window_ms == 3_600_000
    assert settings.durable_cache_ttl == 1800


def test_settings_precedence(config_file, monkeypatch):
    config.save_config("ollama_model", "from-file")
    config.save_config("rate_limit_max_requests", 5)
    monkeypatch.setenv("FEEDCORE_RATE_LIMIT_MAX_REQUESTS", "7")

    settings = config.load_settings()
    assert settings.ollama_model == "from-file"
    assert settings.rate_limit_max_requests == 7

    settings = config.load_settings({"rate_limit_max_requests": 9})
    assert settings.rate_limit_max_requests == 9


@pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("TRUE", True), ("yes", True)])
def test_env_booleans(config_file, monkeypatch, raw, expected):
    monkeypatch.setenv("FEEDCORE_USE_MOCK_DATA", raw)
    assert config.load_settings().use_mock_data is expected


def test_malformed_values_are_ignored(config_file, monkeypatch):
    monkeypatch.setenv("FEEDCORE_RATE_LIMIT_MAX_REQUESTS", "lots")
    assert config.load_settings().rate_limit_max_requests == 20
