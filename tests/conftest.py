"""
Shared fakes and fixtures for the agent tests.

The fakes stand in for the Ollama client and the Milvus store. They are
deterministic and record every call so tests can count stage executions.
"""
import pytest

from docsearch_agent.config import AgentConfig
from docsearch_agent.errors import RetrievalLookupError
from docsearch_agent.graph import DocumentSearchAgent
from docsearch_agent.memory import InMemoryCheckpointStore
from docsearch_agent.nodes import REFUSAL_PHRASE

VALENCIA_TOURS = (
    "Valencia walking tours run daily from the Plaza de la Virgen. "
    "Bike tours of the Turia gardens leave at 10:00."
)


def message_kind(messages):
    """Which stage sent these messages."""
    if messages[0]["role"] == "system":
        return "generate"
    if 'answer ONLY with "yes" or "no"' in messages[0]["content"]:
        return "analyze"
    return "refine"


class FakeChatModel:
    """
    Scripted language model.
    Each reply is a string, a callable taking the messages, or an exception to raise.
    """

    def __init__(self, analyze="no", refine="guided tours in Valencia", generate="Here is the answer."):
        self.replies = {"analyze": analyze, "refine": refine, "generate": generate}
        self.calls = []

    def count(self, kind):
        return sum(1 for k, _ in self.calls if k == kind)

    async def generate(self, messages):
        kind = message_kind(messages)
        self.calls.append((kind, messages))
        reply = self.replies[kind]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply


class FakeKnowledgeBase:
    """Chunk index and full-document store in one, like MilvusDB."""

    def __init__(self, chunks=None, documents=None, failing=()):
        self.chunks = chunks or []
        self.documents = documents or {}
        self.failing = set(failing)
        self.searches = []
        self.fetches = []

    async def search(self, query, top_k):
        self.searches.append((query, top_k))
        return [dict(c) for c in self.chunks[:top_k]]

    async def fetch_document(self, source):
        self.fetches.append(source)
        if source in self.failing:
            raise RetrievalLookupError(source)
        if source not in self.documents:
            return None
        return {"text": self.documents[source], "source": source}


@pytest.fixture
def valencia_kb():
    return FakeKnowledgeBase(
        chunks=[
            {"text": "Walking tours run daily.", "source": "docs/valencia.md", "score": 0.91},
            {"text": "Bike tours of the Turia.", "source": "docs/valencia.md", "score": 0.87},
            {"text": "Booking is online.", "source": "docs/booking.md", "score": 0.55},
        ],
        documents={
            "docs/valencia.md": VALENCIA_TOURS,
            "docs/booking.md": "Tours can be booked online up to one day in advance.",
        },
    )


@pytest.fixture
def empty_kb():
    return FakeKnowledgeBase()


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest.fixture
def make_agent(checkpoints):
    def _make(llm, kb, checkpoint_store=checkpoints, **config):
        return DocumentSearchAgent(
            llm=llm,
            index=kb,
            document_store=kb,
            config=AgentConfig(**config),
            checkpoint_store=checkpoint_store,
        )

    return _make


@pytest.fixture
def refusal():
    return REFUSAL_PHRASE
