import pytest

from assistive_control.config import ConfigError, ProviderType, Settings


def test_defaults_without_environment():
    settings = Settings.from_env({})
    assert settings.provider is ProviderType.OLLAMA
    assert settings.model_name == "llama3.2"
    assert settings.max_retries == 2
    assert settings.max_observations == 5
    assert settings.max_plan_depth == 4
    assert settings.step_delay == 0.3
    assert settings.launch_delay == 1.5
    assert settings.model_timeout == 60.0
    assert settings.action_timeout == 15.0

def test_environment_values_are_parsed():
    settings = Settings.from_env({
        "ASSISTIVE_PROVIDER": "anthropic",
        "ANTHROPIC_API_KEY": "sk-ant",
        "ANTHROPIC_MODEL": "claude-test",
        "ASSISTIVE_MAX_RETRIES": "4",
        "ASSISTIVE_STEP_DELAY": "0",
    })
    assert settings.provider is ProviderType.ANTHROPIC
    assert settings.anthropic_api_key == "sk-ant"
    assert settings.model_name == "claude-test"
    assert settings.max_retries == 4
    assert settings.step_delay == 0.0

def test_blank_variables_are_ignored():
    settings = Settings.from_env({"OPENAI_MODEL": "   ", "ASSISTIVE_PROVIDER": ""})
    assert settings.openai_model == "gpt-4o"
    assert settings.provider is ProviderType.OLLAMA

def test_overrides_win_over_environment():
    settings = Settings.from_env(
        {"ASSISTIVE_PROVIDER": "anthropic"}, provider="openai", openai_model=None
    )
    assert settings.provider is ProviderType.OPENAI
    assert settings.openai_model == "gpt-4o"

@pytest.mark.parametrize("env", [
    {"ASSISTIVE_PROVIDER": "gemini"},
    {"ASSISTIVE_MAX_RETRIES": "-1"},
    {"ASSISTIVE_MODEL_TIMEOUT": "0"},
    {"ASSISTIVE_STEP_DELAY": "soon"},
])
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        Settings.from_env(env)

def test_settings_are_immutable():
    settings = Settings.from_env({})
    with pytest.raises(Exception):
        settings.max_retries = 10

def test_log_level_is_normalised():
    assert Settings.from_env({"ASSISTIVE_LOG_LEVEL": "debug"}).log_level == "DEBUG"

def test_unknown_log_level_raises_config_error():
    with pytest.raises(ConfigError):
        Settings.from_env({"ASSISTIVE_LOG_LEVEL": "verbose"})
