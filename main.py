"""
Main entry point for the application.
Ask questions, ingest documents, reset the store, or start the MCP server.
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from docsearch_agent.config import AgentConfig, FAILURE_NOTICE, LOG_LEVEL
from docsearch_agent.errors import AgentError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _config_from_args(args) -> AgentConfig:
    config = AgentConfig.from_env()
    overrides = {}
    if args.top_k is not None:
        overrides["top_k"] = args.top_k
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations
    if args.refine:
        overrides["enable_query_refinement"] = True
    return replace(config, **overrides)


async def ask(args) -> int:
    from docsearch_agent.graph import build_agent

    try:
        agent = build_agent(_config_from_args(args))
        if args.reset and args.session:
            await agent.checkpoint_store.clear(args.session)
        result = await agent.ask(args.question, session_id=args.session)
    except AgentError as e:
        logger.error(f"Agent error: {e}")
        print(FAILURE_NOTICE)
        return 1
    except Exception as e:
        logger.error(f"Cannot reach services: {e}")
        print(FAILURE_NOTICE)
        return 1

    print(result.answer)
    print()
    print(f"Stages: {' -> '.join(result.stages)}")
    print(f"Documents retrieved: {len(result.documents)}")
    print(f"Iterations: {result.iterations}")
    print(f"Retrieval attempts: {result.retrieval_count}")
    return 0


async def ingest(args) -> int:
    from knowledge_base.db import MilvusDB
    from knowledge_base.ingestion import generate_embeddings, ingest_files

    db = MilvusDB(embed=generate_embeddings)
    db.connect()
    try:
        reports, failed = await ingest_files(args.files, db, replace=not args.append)
    finally:
        db.close()

    for report in reports:
        logger.info(f"{report.source}: {report.chunks} chunks")
    return 1 if failed else 0


def clear(args) -> int:
    from knowledge_base.db import MilvusDB
    from knowledge_base.ingestion import generate_embeddings

    db = MilvusDB(embed=generate_embeddings)
    db.connect()
    try:
        db.drop_collections()
    finally:
        db.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Question answering over your documents.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_ask = sub.add_parser("ask", help="Answer a question")
    p_ask.add_argument("question")
    p_ask.add_argument("--session", help="Session id to continue a conversation")
    p_ask.add_argument("--reset", action="store_true", help="Forget the session history first")
    p_ask.add_argument("--refine", action="store_true", help="Enable query refinement")
    p_ask.add_argument("--top-k", type=int, dest="top_k")
    p_ask.add_argument("--max-iterations", type=int, dest="max_iterations")

    p_ingest = sub.add_parser("ingest", help="Add documents to the knowledge base")
    p_ingest.add_argument("files", nargs="+")
    p_ingest.add_argument(
        "--append",
        action="store_true",
        help="Keep rows already stored for these files instead of replacing them",
    )

    sub.add_parser("clear", help="Drop the chunk and document collections")
    sub.add_parser("serve", help="Start the MCP server")

    return parser


def main():
    """Start the application."""
    args = build_parser().parse_args()

    if args.command == "ask":
        sys.exit(asyncio.run(ask(args)))
    if args.command == "ingest":
        sys.exit(asyncio.run(ingest(args)))
    if args.command == "clear":
        sys.exit(clear(args))

    from knowledge_base.server import main as serve
    serve()


if __name__ == "__main__":
    main()
