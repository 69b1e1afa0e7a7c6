# test_config.py
#
#
# Imports
from pathlib import Path
#
# Local Imports
from snapvault_Server_API.app.core.config import load_settings, load_client_config
#
#######################################################################################################################
#
# Functions:


def test_server_defaults(monkeypatch):
    for key in ("META_DB_PATH", "S3_BUCKET", "S3_KEY_PREFIX", "SIGNED_URL_EXPIRES_SECONDS",
                "DEFAULT_DEVICE_NAMESPACE", "ALLOWED_ORIGINS", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    settings = load_settings()
    assert settings["S3_BUCKET"] == "snapvault"
    assert settings["S3_KEY_PREFIX"] == "photos"
    assert settings["SIGNED_URL_EXPIRES_SECONDS"] == 600
    assert settings["DEFAULT_DEVICE_NAMESPACE"] == "default"
    assert settings["ALLOWED_ORIGINS"] == ["http://localhost:5173", "http://127.0.0.1:5173"]
    assert settings["LOG_LEVEL"] == "INFO"
    assert isinstance(settings["META_DB_PATH"], Path)


def test_server_env_overrides(monkeypatch):
    monkeypatch.setenv("S3_BUCKET", "other")
    monkeypatch.setenv("SIGNED_URL_EXPIRES_SECONDS", "120")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, ,https://b.example")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = load_settings()
    assert settings["S3_BUCKET"] == "other"
    assert settings["SIGNED_URL_EXPIRES_SECONDS"] == 120
    assert settings["ALLOWED_ORIGINS"] == ["https://a.example", "https://b.example"]
    assert settings["LOG_LEVEL"] == "DEBUG"


def test_client_defaults(monkeypatch):
    for key in ("API_BASE", "LOCAL_DB_PATH", "DEVICE_ID_CACHE_PATH", "HTTP_TIMEOUT_SECONDS"):
        monkeypatch.delenv(key, raising=False)
    config = load_client_config()
    assert config["API_BASE"] == "http://127.0.0.1:8787"
    assert config["HTTP_TIMEOUT_SECONDS"] == 30
    assert config["LOCAL_DB_PATH"].name == "photos.sqlite"


def test_client_ini_and_env_precedence(tmp_path, monkeypatch):
    monkeypatch.delenv("API_BASE", raising=False)
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "7")
    ini = tmp_path / "client.ini"
    ini.write_text("[Client]\napi_base = http://sync.example:8787\nhttp_timeout_seconds = 12\n")
    config = load_client_config(ini)
    assert config["API_BASE"] == "http://sync.example:8787"
    assert config["HTTP_TIMEOUT_SECONDS"] == 7


def test_client_ini_without_section(tmp_path, monkeypatch):
    monkeypatch.delenv("API_BASE", raising=False)
    ini = tmp_path / "client.ini"
    ini.write_text("[Other]\napi_base = http://ignored\n")
    assert load_client_config(ini)["API_BASE"] == "http://127.0.0.1:8787"

#
# End of test_config.py
#######################################################################################################################
