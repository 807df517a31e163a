"""
Exceptions raised by the agent and its external service adapters.
"""


class AgentError(Exception):
    """Base class for every error the agent raises."""


class ConfigurationError(AgentError):
    """Missing or invalid settings. Raised before any stage runs."""


class LLMError(AgentError):
    """The language model call failed (network, quota, malformed response)."""


class AnalysisError(AgentError):
    """The vagueness check during query analysis failed."""


class RefinementError(AgentError):
    """Rewriting the question failed."""


class GenerationError(AgentError):
    """Generating the answer failed."""


class SearchError(AgentError):
    """The similarity search against the chunk index failed."""


class RetrievalLookupError(AgentError):
    """Fetching one full document from the store failed."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(message or f"Failed to fetch document for source '{source}'")
