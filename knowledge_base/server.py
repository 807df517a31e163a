"""
MCP Server - exposes the knowledge base and the question-answering agent as tools.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP

from docsearch_agent.config import FAILURE_NOTICE, LOG_LEVEL
from docsearch_agent.errors import AgentError
from docsearch_agent.graph import DocumentSearchAgent, build_agent

from .ingestion import ingest_file, supported_formats

# Setup logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

# MCP server instance
mcp = FastMCP(
    "Document Search",
    instructions="Document ingestion and question answering over the knowledge base.",
)

# Built in main(), shared by all tool calls
_agent: Optional[DocumentSearchAgent] = None


def get_agent() -> DocumentSearchAgent:
    global _agent
    if _agent is None:
        _agent = build_agent()
    return _agent


@mcp.tool()
async def ingest_document(file_path: str) -> str:
    """
    Add a document to the knowledge base.
    Supports: PDF, DOCX, PPTX, XLSX, TXT, MD
    """
    logger.info(f"[ingest_document] {file_path}")

    try:
        path = Path(file_path)
        if not path.exists():
            return f"Error: File not found - {file_path}"

        # The agent owns the connected store; earlier rows for the file are replaced
        report = await ingest_file(file_path, get_agent().nodes.document_store)

        if report.chunks == 0:
            return f"Warning: No content extracted from {path.name}"

        return f"Ingested {report.chunks} chunks from '{path.name}'"

    except ValueError as e:
        logger.error(f"[ingest_document] {e}")
        return f"Error: {e}"
    except Exception as e:
        logger.error(f"[ingest_document] Failed: {e}")
        return f"Error: Ingestion failed - {e}"


@mcp.tool()
async def ask_question(question: str, session_id: str = "") -> str:
    """
    Answer a question from the documents in the knowledge base.
    Pass the same session_id to continue a conversation.
    """
    logger.info(f"[ask_question] '{question[:50]}...'")

    if not question.strip():
        return "Error: Question cannot be empty"

    try:
        result = await get_agent().ask(question, session_id=session_id or None)
    except AgentError as e:
        logger.error(f"[ask_question] Failed: {e}")
        return FAILURE_NOTICE

    return result.answer


@mcp.tool()
async def list_supported_formats() -> str:
    """List supported file formats."""
    return f"Supported: {supported_formats()}"


def main():
    """Start the MCP server."""
    logger.info("Starting MCP Server...")

    try:
        get_agent()
    except Exception as e:
        logger.error(f"Cannot start agent: {e}")
        logger.error("Check Milvus, Redis and Ollama settings")
        sys.exit(1)

    mcp.run()


if __name__ == "__main__":
    main()
