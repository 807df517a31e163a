"""
Graph state definition for the document search agent.

Every node returns a partial update. Each field carries its own reducer, used
both by the LangGraph channels and by merge_state().
"""
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, TypedDict, Annotated, get_type_hints

Message = Dict[str, str]


def replace_if_present(current: Any, update: Any) -> Any:
    """Take the update unless it is None."""
    return current if update is None else update


def accumulate(current: Optional[int], delta: Optional[int]) -> int:
    """Add a non-negative increment to a counter."""
    if delta is None:
        return current or 0
    if delta < 0:
        raise ValueError(f"Counters never decrease, got increment {delta}")
    return (current or 0) + delta


class ConversationState(TypedDict):
    """State that flows through the graph."""

    # Current user question, replaced by the caller each turn
    question: Annotated[str, replace_if_present]

    # Prior exchanges as {"role", "content"} messages, never truncated here
    conversation_history: Annotated[List[Message], replace_if_present]

    # Formatted full documents from the latest retrieval
    documents: Annotated[List[str], replace_if_present]

    needs_retrieval: Annotated[bool, replace_if_present]
    needs_refinement: Annotated[bool, replace_if_present]

    # Rewritten search query, empty until refinement runs
    refined_query: Annotated[str, replace_if_present]

    answer: Annotated[str, replace_if_present]

    # Generation passes
    iterations: Annotated[int, accumulate]

    # Retrieval passes
    retrieval_count: Annotated[int, accumulate]


class Stage(str, Enum):
    """Nodes of the graph plus the terminal marker."""

    ANALYZE = "analyze"
    REFINE = "refine"
    RETRIEVE = "retrieve"
    GENERATE = "generate"
    END = "end"


_REDUCERS = {
    name: hint.__metadata__[0]
    for name, hint in get_type_hints(ConversationState, include_extras=True).items()
}


def new_state(question: str, conversation_history: Optional[List[Message]] = None) -> ConversationState:
    """Fresh state for one invocation."""
    return ConversationState(
        question=question,
        conversation_history=list(conversation_history or []),
        documents=[],
        needs_retrieval=True,
        needs_refinement=False,
        refined_query="",
        answer="",
        iterations=0,
        retrieval_count=0,
    )


def merge_state(state: Mapping[str, Any], update: Mapping[str, Any]) -> ConversationState:
    """Apply a partial update field by field. Neither argument is modified."""
    unknown = set(update) - set(_REDUCERS)
    if unknown:
        raise KeyError(f"Unknown state fields: {sorted(unknown)}")

    merged = dict(state)
    for field, value in update.items():
        merged[field] = _REDUCERS[field](state.get(field), value)
    return merged  # type: ignore[return-value]
