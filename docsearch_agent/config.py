"""
Config for the Document Search Agent.
All settings come from environment variables with defaults.
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

# Ollama LLM
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
LLM_MODEL = os.getenv("LLM_MODEL", "llama3")

# Redis for session checkpoints
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Shown to the user when an invocation fails. Must not look like a model answer.
FAILURE_NOTICE = "Sorry, something went wrong while answering your question. Please try again."


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def llm_timeout() -> float:
    """Seconds allowed for one Ollama request."""
    return _env_float("LLM_TIMEOUT", 120.0)


def llm_retry_attempts() -> int:
    """Attempts per Ollama request. 1 means the core never retries."""
    return _env_int("LLM_RETRY_ATTEMPTS", 1)


@dataclass(frozen=True)
class AgentConfig:
    """Per-agent settings for the retrieval/generation loop."""

    top_k: int = 3
    max_iterations: int = 2
    enable_query_refinement: bool = False
    model_name: str = LLM_MODEL
    temperature: float = 0.0

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            top_k=_env_int("TOP_K", 3),
            max_iterations=_env_int("MAX_ITERATIONS", 2),
            enable_query_refinement=_env_bool("ENABLE_QUERY_REFINEMENT", False),
            model_name=os.getenv("LLM_MODEL", LLM_MODEL),
            temperature=_env_float("LLM_TEMPERATURE", 0.0),
        )

    def validate(self) -> "AgentConfig":
        if self.top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {self.top_k}")
        if self.max_iterations < 0:
            raise ConfigurationError(
                f"max_iterations must be non-negative, got {self.max_iterations}"
            )
        if not self.model_name or not self.model_name.strip():
            raise ConfigurationError("model_name is required")
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                f"temperature must be between 0 and 2, got {self.temperature}"
            )
        return self
