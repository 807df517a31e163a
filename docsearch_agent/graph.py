"""
LangGraph workflow definition.
Builds the adaptive analyze -> refine -> retrieve -> generate graph and runs it.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from langgraph.graph import StateGraph, END

from .config import AgentConfig, OLLAMA_BASE_URL
from .errors import ConfigurationError
from .memory import CheckpointStore
from .nodes import (
    ChatModel,
    DocumentSearchNodes,
    DocumentStore,
    SemanticIndex,
    route_after_analysis,
    route_after_generation,
)
from .state import ConversationState, Message, Stage, new_state

logger = logging.getLogger(__name__)

# Every Stage a router can return, and the node it leads to
_TARGETS = {
    Stage.ANALYZE: Stage.ANALYZE.value,
    Stage.REFINE: Stage.REFINE.value,
    Stage.RETRIEVE: Stage.RETRIEVE.value,
    Stage.GENERATE: Stage.GENERATE.value,
    Stage.END: END,
}


def build_graph(nodes: DocumentSearchNodes, max_iterations: int):
    """Build and return the compiled agent graph."""

    workflow = StateGraph(ConversationState)

    workflow.add_node(Stage.ANALYZE.value, nodes.analyze_query)
    workflow.add_node(Stage.REFINE.value, nodes.refine_query)
    workflow.add_node(Stage.RETRIEVE.value, nodes.retrieve)
    workflow.add_node(Stage.GENERATE.value, nodes.generate)

    workflow.set_entry_point(Stage.ANALYZE.value)

    # After analysis, decide: refine or retrieve
    workflow.add_conditional_edges(
        Stage.ANALYZE.value,
        route_after_analysis,
        {stage: _TARGETS[stage] for stage in (Stage.REFINE, Stage.RETRIEVE)},
    )

    workflow.add_edge(Stage.REFINE.value, Stage.RETRIEVE.value)
    workflow.add_edge(Stage.RETRIEVE.value, Stage.GENERATE.value)

    def route_after_generate(state: ConversationState) -> Stage:
        return route_after_generation(state, max_iterations)

    # After generation, retrieve again or finish
    workflow.add_conditional_edges(
        Stage.GENERATE.value,
        route_after_generate,
        {stage: _TARGETS[stage] for stage in (Stage.RETRIEVE, Stage.END)},
    )

    logger.info("Document search graph built successfully")
    return workflow.compile()


def recursion_limit(max_iterations: int) -> int:
    """Steps needed for the longest legal run: analyze, refine, then N+1 retrieve/generate pairs."""
    return 2 + 2 * (max_iterations + 1) + 1


@dataclass
class AgentResult:
    answer: str
    documents: List[str]
    iterations: int
    retrieval_count: int
    refined_query: str = ""
    stages: List[str] = field(default_factory=list)
    state: Optional[ConversationState] = None


class DocumentSearchAgent:
    """
    Entry point for one question.
    Holds the compiled graph and the external clients, constructed once and
    shared by all sessions.
    """

    def __init__(
        self,
        llm: ChatModel,
        index: SemanticIndex,
        document_store: DocumentStore,
        config: Optional[AgentConfig] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
    ):
        self.config = (config or AgentConfig()).validate()
        self.checkpoint_store = checkpoint_store
        self.nodes = DocumentSearchNodes(llm, index, document_store, self.config)
        self.graph = build_graph(self.nodes, self.config.max_iterations)
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._session_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _session(self, session_id: str):
        """Serialize runs of one session; the entry is dropped once nobody holds or awaits it."""
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._session_users[session_id] = self._session_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._session_users[session_id] -= 1
            if not self._session_users[session_id]:
                del self._session_users[session_id]
                del self._session_locks[session_id]

    async def _run(self, state: ConversationState) -> AgentResult:
        stages: List[str] = []
        final: ConversationState = state

        async for mode, chunk in self.graph.astream(
            state,
            {"recursion_limit": recursion_limit(self.config.max_iterations)},
            stream_mode=["updates", "values"],
        ):
            if mode == "updates":
                stages.extend(chunk.keys())
            else:
                final = chunk

        stages.append(Stage.END.value)

        return AgentResult(
            answer=final["answer"],
            documents=list(final["documents"]),
            iterations=final["iterations"],
            retrieval_count=final["retrieval_count"],
            refined_query=final["refined_query"],
            stages=stages,
            state=final,
        )

    async def ask(
        self,
        question: str,
        conversation_history: Optional[List[Message]] = None,
        session_id: Optional[str] = None,
    ) -> AgentResult:
        """
        Answer one question.

        With a session_id and a checkpoint store, prior history is loaded
        from the checkpoint unless conversation_history is given explicitly,
        and the final state is saved once the run completes. Nothing is saved
        when the run fails or is cancelled.
        """
        if not question or not question.strip():
            raise ValueError("Question cannot be empty")

        if session_id is None or self.checkpoint_store is None:
            result = await self._run(new_state(question, conversation_history))
            logger.info(f"[Agent] Completed, answer length: {len(result.answer)}")
            return result

        async with self._session(session_id):
            history = conversation_history
            if history is None:
                previous = await self.checkpoint_store.load(session_id)
                history = previous["conversation_history"] if previous else []

            logger.info(
                f"[Agent] Processing: '{question[:50]}...' with history len: {len(history)}"
            )
            result = await self._run(new_state(question, history))
            await self.checkpoint_store.save(session_id, result.state)

        logger.info(f"[Agent] Completed, answer length: {len(result.answer)}")
        return result


def build_agent(config: Optional[AgentConfig] = None) -> DocumentSearchAgent:
    """
    Wire the agent to Ollama, Milvus and Redis from environment settings.
    """
    from knowledge_base.db import MilvusDB
    from knowledge_base.ingestion import generate_embeddings

    from .memory import RedisCheckpointStore
    from .tools import OllamaChat

    config = (config or AgentConfig.from_env()).validate()
    if not OLLAMA_BASE_URL.startswith(("http://", "https://")):
        raise ConfigurationError(f"OLLAMA_BASE_URL must be an http(s) URL, got {OLLAMA_BASE_URL!r}")

    db = MilvusDB(embed=generate_embeddings)
    db.connect()

    llm = OllamaChat(
        base_url=OLLAMA_BASE_URL,
        model=config.model_name,
        temperature=config.temperature,
    )

    return DocumentSearchAgent(
        llm=llm,
        index=db,
        document_store=db,
        config=config,
        checkpoint_store=RedisCheckpointStore(),
    )
