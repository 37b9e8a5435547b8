import pytest

from ghstats.domain.errors import ConfigurationError
from ghstats.domain.models.common import ResourceKind
from ghstats.infrastructure.config import settings
from ghstats.infrastructure.config.settings import (
    ClientSettings,
    get_config,
    load_configuration,
    set_config_for_testing,
)


def test_test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("GHSTATS_CACHE_MAX_ENTRIES", "50")
    set_config_for_testing({"cache.max_entries": 10})
    assert get_config("cache.max_entries") == 10


def test_prefixed_environment_variable_with_type_conversion(monkeypatch):
    monkeypatch.setenv("GHSTATS_RETRY_MAX_RETRIES", "5")
    monkeypatch.setenv("GHSTATS_AGGREGATOR_INCLUDE_TRAFFIC", "false")
    monkeypatch.setenv("GHSTATS_RETRY_JITTER", "0.1")
    assert get_config("retry.max_retries") == 5
    assert get_config("aggregator.include_traffic") is False
    assert get_config("retry.jitter") == 0.1


def test_yaml_nested_keys(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("github:\n  username: hubot\ncache:\n  ttl:\n    profile: 42\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", False)

    load_configuration(config_file=config_file, env_file=tmp_path / ".env", force=True)

    assert get_config("github.username") == "hubot"
    assert get_config("cache.ttl.profile") == 42
    assert get_config("cache.ttl.missing", "fallback") == "fallback"


def test_dotenv_does_not_override_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("GHSTATS_GITHUB_USERNAME=from-dotenv\n")
    monkeypatch.setenv("GHSTATS_GITHUB_USERNAME", "from-env")
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", False)

    load_configuration(config_file=tmp_path / "absent.yaml", env_file=env_file, force=True)

    assert get_config("github.username") == "from-env"


def test_client_settings_defaults():
    set_config_for_testing({"github.username": "octocat"})
    resolved = ClientSettings.from_config()
    assert resolved.username == "octocat"
    assert resolved.token is None
    assert resolved.ttls[ResourceKind.EVENTS] == 300
    assert resolved.ttls[ResourceKind.LANGUAGES] == 3600
    assert resolved.backoff_policy() == {
        "max_retries": 3, "initial_delay": 1.0, "factor": 2.0, "max_delay": 30.0, "jitter": 0.25,
    }
    assert resolved.poll_interval == 300


def test_client_settings_overrides():
    set_config_for_testing({
        "github.username": "octocat",
        "github.token": "abc",
        "cache.ttl.traffic": 60,
        "aggregator.max_concurrency": 2,
        "aggregator.include_traffic": "no",
    })
    resolved = ClientSettings.from_config(username="hubot")
    assert resolved.username == "hubot"
    assert resolved.token == "abc"
    assert resolved.ttls[ResourceKind.TRAFFIC] == 60.0
    assert resolved.max_concurrency == 2
    assert resolved.include_traffic is False


def test_missing_username_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ClientSettings.from_config()


@pytest.mark.parametrize("key, value", [("retry.max_retries", "many"), ("aggregator.max_concurrency", 0)])
def test_invalid_values_are_configuration_errors(key, value):
    set_config_for_testing({"github.username": "octocat", key: value})
    with pytest.raises(ConfigurationError):
        ClientSettings.from_config()


def test_watch_interval_and_events_switch():
    set_config_for_testing({"github.username": "octocat", "watch.interval": "60", "aggregator.include_events": "false"})
    resolved = ClientSettings.from_config()
    assert resolved.poll_interval == 60
    assert resolved.include_events is False


def test_non_positive_watch_interval_is_a_configuration_error():
    set_config_for_testing({"github.username": "octocat", "watch.interval": 0})
    with pytest.raises(ConfigurationError):
        ClientSettings.from_config()
