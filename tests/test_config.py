"""Tests for environment-driven configuration."""

import logging

import pytest

from formrules.config import (
    FormConfig,
    get_execution_timeout,
    get_history_limit,
    get_log_level,
    get_max_cascade_depth,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "FORMRULES_HISTORY_LIMIT",
        "FORMRULES_EXECUTION_TIMEOUT",
        "FORMRULES_MAX_CASCADE_DEPTH",
        "FORMRULES_VALIDATE_ON_CHANGE",
        "FORMRULES_STRICT",
        "FORMRULES_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = FormConfig.from_env()
    assert config == FormConfig()
    assert config.history_limit == 50
    assert config.execution_timeout == 30.0
    assert config.max_cascade_depth == 0
    assert config.validate_on_change is True
    assert config.strict is False


def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("FORMRULES_HISTORY_LIMIT", "10")
    monkeypatch.setenv("FORMRULES_EXECUTION_TIMEOUT", "2.5")
    monkeypatch.setenv("FORMRULES_MAX_CASCADE_DEPTH", "3")
    monkeypatch.setenv("FORMRULES_VALIDATE_ON_CHANGE", "no")
    monkeypatch.setenv("FORMRULES_STRICT", "TRUE")

    config = FormConfig.from_env()

    assert config == FormConfig(
        history_limit=10,
        execution_timeout=2.5,
        max_cascade_depth=3,
        validate_on_change=False,
        strict=True,
    )


@pytest.mark.parametrize(
    "name,raw,getter,expected",
    [
        ("FORMRULES_HISTORY_LIMIT", "0", get_history_limit, 1),
        ("FORMRULES_HISTORY_LIMIT", "99999", get_history_limit, 10000),
        ("FORMRULES_HISTORY_LIMIT", "many", get_history_limit, 50),
        ("FORMRULES_EXECUTION_TIMEOUT", "-1", get_execution_timeout, 0.001),
        ("FORMRULES_EXECUTION_TIMEOUT", "soon", get_execution_timeout, 30.0),
        ("FORMRULES_MAX_CASCADE_DEPTH", "500", get_max_cascade_depth, 100),
        ("FORMRULES_MAX_CASCADE_DEPTH", "-4", get_max_cascade_depth, 0),
    ],
)
def test_values_are_clamped(monkeypatch, name, raw, getter, expected):
    monkeypatch.setenv(name, raw)
    assert getter() == expected


def test_log_level(monkeypatch, capsys):
    monkeypatch.setenv("FORMRULES_LOG_LEVEL", "debug")
    assert get_log_level() == logging.DEBUG

    monkeypatch.setenv("FORMRULES_LOG_LEVEL", "chatty")
    assert get_log_level() == logging.INFO
    assert "Invalid FORMRULES_LOG_LEVEL" in capsys.readouterr().err


@pytest.mark.parametrize(
    "kwargs", [{"history_limit": 0}, {"execution_timeout": 0}, {"max_cascade_depth": -1}]
)
def test_explicit_values_are_validated(kwargs):
    with pytest.raises(ValueError):
        FormConfig(**kwargs)
