"""
Graph nodes - the actual logic of each step in the workflow.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .config import AgentConfig
from .errors import (
    AnalysisError,
    GenerationError,
    LLMError,
    RefinementError,
    RetrievalLookupError,
    SearchError,
)
from .state import ConversationState, Message, Stage

logger = logging.getLogger(__name__)

REFUSAL_PHRASE = "I don't have enough information to answer that question."
EMPTY_CONTEXT = "No documents found."
DOCUMENT_SEPARATOR = "\n\n---\n\n"

# Heuristics for vague questions
MIN_QUESTION_TOKENS = 3
GENERIC_QUESTION_MAX_CHARS = 30
GENERIC_QUESTION = re.compile(r"\b(what|how|why|summarize|explain)\b", re.IGNORECASE)

AFFIRMATIVE = re.compile(r"\byes\b", re.IGNORECASE)
INSUFFICIENT_ANSWER = re.compile(
    r"don['’]t have|not enough information|cannot find", re.IGNORECASE
)


class ChatModel(Protocol):
    async def generate(self, messages: List[Message]) -> str: ...


class SemanticIndex(Protocol):
    async def search(self, query: str, top_k: int) -> List[Dict[str, Any]]: ...


class DocumentStore(Protocol):
    async def fetch_document(self, source: str) -> Optional[Dict[str, Any]]: ...


def is_vague(question: str) -> bool:
    """Too few words, or a short generic question."""
    if len(question.split()) < MIN_QUESTION_TOKENS:
        return True
    return bool(GENERIC_QUESTION.search(question)) and len(question) < GENERIC_QUESTION_MAX_CHARS


def is_insufficient(answer: str) -> bool:
    """True when the model says the context did not cover the question."""
    return bool(INSUFFICIENT_ANSWER.search(answer))


def format_document(index: int, doc: Dict[str, Any]) -> str:
    source = doc.get("source") or "unknown"
    return f"[Document {index}] (Source: {source})\n{doc.get('text', '')}"


async def fetch_full_documents(store: DocumentStore, sources: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Fetch the full document for each source.
    Missing sources and failed lookups are skipped, the rest are returned.
    """
    results = []
    for source in sources:
        try:
            doc = await store.fetch_document(source)
        except RetrievalLookupError as e:
            logger.warning(f"[Retrieve] Skipping source '{source}': {e}")
            continue

        if doc is None:
            logger.warning(f"[Retrieve] No document found with source: {source}")
            continue

        logger.info(f"[Retrieve] Found document: {source} ({len(doc.get('text', ''))} chars)")
        results.append(doc)

    return results


class DocumentSearchNodes:
    """The four stages of the graph, bound to their external services."""

    def __init__(
        self,
        llm: ChatModel,
        index: SemanticIndex,
        document_store: DocumentStore,
        config: AgentConfig,
    ):
        self.llm = llm
        self.index = index
        self.document_store = document_store
        self.config = config

    async def analyze_query(self, state: ConversationState) -> dict:
        """Decide whether the question should be rewritten before retrieval."""
        question = state["question"]
        logger.info(f"[Analyze] Question: '{question[:50]}...'")

        # Only the first pass of a question may trigger refinement
        if not self.config.enable_query_refinement or state.get("iterations", 0) >= 1:
            return {"needs_refinement": False, "needs_retrieval": True}

        prompt = f"""Given the following user question, answer ONLY with "yes" or "no": Does this question need to be clarified, specified, or improved to help a search system retrieve relevant documents? If the question is clear, answer "no". If vague or too broad, answer "yes".

User question: "{question}"
"""
        try:
            response = await self.llm.generate([{"role": "user", "content": prompt}])
        except LLMError as e:
            raise AnalysisError(f"Query analysis failed: {e}") from e

        if AFFIRMATIVE.search(response):
            logger.info("[Analyze] LLM identified query as vague, will refine")
            return {"needs_refinement": True, "needs_retrieval": False}

        if is_vague(question):
            logger.info("[Analyze] Heuristic: query seems vague, will refine")
            return {"needs_refinement": True, "needs_retrieval": False}

        return {"needs_refinement": False, "needs_retrieval": True}

    async def refine_query(self, state: ConversationState) -> dict:
        """Rewrite the question into a search query."""
        question = state["question"]

        prompt = f"""Given this user question, generate a more specific search query that would help find relevant documents.

User question: "{question}"

Generate a refined search query (just the query, no explanation):"""

        try:
            refined = await self.llm.generate([{"role": "user", "content": prompt}])
        except LLMError as e:
            raise RefinementError(f"Query refinement failed: {e}") from e

        refined = refined.strip()
        logger.info(f"[Refine] '{question[:50]}' -> '{refined[:50]}'")

        return {"refined_query": refined}

    async def retrieve(self, state: ConversationState) -> dict:
        """Search chunks, then load the full documents they came from."""
        query = state.get("refined_query") or state["question"]
        count = state.get("retrieval_count", 0)

        logger.info(f"[Retrieve] Attempt {count + 1}, query: '{query[:50]}...'")

        try:
            chunks = await self.index.search(query, self.config.top_k)
        except SearchError:
            raise
        except Exception as e:
            raise SearchError(f"Similarity search failed: {e}") from e

        logger.info(f"[Retrieve] Found {len(chunks)} relevant chunks")

        if not chunks:
            logger.warning("[Retrieve] No relevant documents found")
            return {"documents": [], "retrieval_count": 1, "needs_retrieval": False}

        # dict keeps first-seen order while dropping duplicates
        sources = list(dict.fromkeys(c["source"] for c in chunks if c.get("source")))
        logger.info(f"[Retrieve] Fetching {len(sources)} full document(s)")

        full_docs = await fetch_full_documents(self.document_store, sources)
        if not full_docs:
            logger.warning("[Retrieve] None of the matching sources could be fetched")

        documents = [format_document(i, doc) for i, doc in enumerate(full_docs, 1)]

        return {"documents": documents, "retrieval_count": 1, "needs_retrieval": False}

    async def generate(self, state: ConversationState) -> dict:
        """Answer from the retrieved documents and the conversation so far."""
        question = state["question"]
        documents = state.get("documents", [])
        history = state.get("conversation_history", [])

        context = DOCUMENT_SEPARATOR.join(documents) if documents else EMPTY_CONTEXT

        logger.info(
            f"[Generate] Attempt {state.get('iterations', 0) + 1}, "
            f"{len(documents)} document(s), context size: {len(context)} chars"
        )

        system_prompt = f"""You are a helpful assistant that answers questions based on the provided context.

Rules:
- Answer ONLY using information from the context below
- If the answer is not in the context, say "{REFUSAL_PHRASE}"
- Be concise but complete
- Use bullet points for lists
- Cite document sources when possible

Context:
{context}"""

        user_message = {"role": "user", "content": question}
        messages = [{"role": "system", "content": system_prompt}, *history, user_message]

        try:
            answer = await self.llm.generate(messages)
        except LLMError as e:
            raise GenerationError(f"Answer generation failed: {e}") from e

        insufficient = is_insufficient(answer)
        retrieval_count = state.get("retrieval_count", 0)

        # Nothing was found for this question, searching again will not help
        needs_retrieval = (
            insufficient
            and bool(documents)
            and retrieval_count < self.config.max_iterations
        )

        if insufficient:
            logger.info(f"[Generate] Answer insufficient, retry retrieval: {needs_retrieval}")
        logger.info(f"[Generate] Answer generated ({len(answer)} chars)")

        return {
            "answer": answer,
            "conversation_history": [*history, user_message, {"role": "assistant", "content": answer}],
            "iterations": 1,
            "needs_retrieval": needs_retrieval,
        }


def route_after_analysis(state: ConversationState) -> Stage:
    """Refine vague questions, otherwise go straight to retrieval."""
    if state.get("needs_refinement"):
        return Stage.REFINE
    return Stage.RETRIEVE


def route_after_generation(state: ConversationState, max_iterations: int) -> Stage:
    """Retrieve again while the answer is insufficient and under the cap."""
    if state.get("needs_retrieval") and state.get("retrieval_count", 0) < max_iterations:
        logger.info("[Router] Answer insufficient, will re-retrieve")
        return Stage.RETRIEVE
    return Stage.END
