"""
Tests for agent configuration.
"""
import pytest

from docsearch_agent.config import AgentConfig
from docsearch_agent.errors import ConfigurationError


def test_defaults():
    config = AgentConfig()

    assert config.top_k == 3
    assert config.max_iterations == 2
    assert config.enable_query_refinement is False
    assert config.temperature == 0.0
    assert config.validate() is config


def test_from_env(monkeypatch):
    monkeypatch.setenv("TOP_K", "5")
    monkeypatch.setenv("MAX_ITERATIONS", "4")
    monkeypatch.setenv("ENABLE_QUERY_REFINEMENT", "true")
    monkeypatch.setenv("LLM_MODEL", "mistral")
    monkeypatch.setenv("LLM_TEMPERATURE", "0.3")

    config = AgentConfig.from_env()

    assert config == AgentConfig(
        top_k=5,
        max_iterations=4,
        enable_query_refinement=True,
        model_name="mistral",
        temperature=0.3,
    )


@pytest.mark.parametrize("name, value", [
    ("TOP_K", "three"),
    ("MAX_ITERATIONS", "2.5"),
    ("ENABLE_QUERY_REFINEMENT", "maybe"),
    ("LLM_TEMPERATURE", "warm"),
])
def test_malformed_env_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        AgentConfig.from_env()


@pytest.mark.parametrize("kwargs", [
    {"top_k": 0},
    {"max_iterations": -1},
    {"model_name": "  "},
    {"temperature": 3.0},
])
def test_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        AgentConfig(**kwargs).validate()
