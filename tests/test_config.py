"""
Test EngineSettings - environment-driven configuration
"""

import pytest

from questengine.config import DEFAULT_BOOLEAN_ALIASES, DEFAULT_DATE_FORMATS, EngineSettings


def test_defaults(monkeypatch):
    for key in (
        "QUESTENGINE_LOG_LEVEL",
        "QUESTENGINE_DEFINITIONS_DIR",
        "QUESTENGINE_MULTI_CHOICE_DELIMITER",
        "QUESTENGINE_DATE_FORMATS",
        "QUESTENGINE_MAX_LOOP_ITERATIONS",
        "QUESTENGINE_BOOLEAN_ALIASES",
    ):
        monkeypatch.delenv(key, raising=False)

    settings = EngineSettings.from_env()

    assert settings.log_level == "INFO"
    assert settings.definitions_dir == "data/questionnaires"
    assert settings.multi_choice_delimiter == ","
    assert settings.date_formats == DEFAULT_DATE_FORMATS
    assert settings.max_loop_iterations == 50
    assert dict(settings.boolean_aliases) == dict(DEFAULT_BOOLEAN_ALIASES)


def test_overrides(monkeypatch):
    monkeypatch.setenv("QUESTENGINE_LOG_LEVEL", "debug")
    monkeypatch.setenv("QUESTENGINE_MULTI_CHOICE_DELIMITER", ";")
    monkeypatch.setenv("QUESTENGINE_DATE_FORMATS", "%d/%m/%Y|%Y-%m-%d")
    monkeypatch.setenv("QUESTENGINE_MAX_LOOP_ITERATIONS", "5")
    monkeypatch.setenv("QUESTENGINE_BOOLEAN_ALIASES", "y=true, n=false")

    settings = EngineSettings.from_env()

    assert settings.log_level == "DEBUG"
    assert settings.multi_choice_delimiter == ";"
    assert settings.date_formats == ("%d/%m/%Y", "%Y-%m-%d")
    assert settings.max_loop_iterations == 5
    assert dict(settings.boolean_aliases) == {"y": "true", "n": "false"}


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("QUESTENGINE_MAX_LOOP_ITERATIONS", "many")
    monkeypatch.setenv("QUESTENGINE_BOOLEAN_ALIASES", "yes=maybe")
    monkeypatch.setenv("QUESTENGINE_DEFINITIONS_DIR", "   ")

    settings = EngineSettings.from_env()

    assert settings.max_loop_iterations == 50
    assert dict(settings.boolean_aliases) == dict(DEFAULT_BOOLEAN_ALIASES)
    assert settings.definitions_dir == "data/questionnaires"


def test_non_positive_loop_cap_falls_back(monkeypatch):
    monkeypatch.setenv("QUESTENGINE_MAX_LOOP_ITERATIONS", "0")

    assert EngineSettings.from_env().max_loop_iterations == 50


def test_boolean_aliases_are_read_only():
    source = {"y": "true"}
    settings = EngineSettings(boolean_aliases=source)
    source["n"] = "false"

    assert dict(settings.boolean_aliases) == {"y": "true"}
    with pytest.raises(TypeError):
        settings.boolean_aliases["n"] = "false"
