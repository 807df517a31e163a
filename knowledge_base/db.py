"""
Milvus database layer.
Two collections: chunks for vector search, full documents fetched by source.
"""
import logging
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
from concurrent.futures import ThreadPoolExecutor

from pymilvus import MilvusClient, DataType
from pymilvus.exceptions import MilvusException
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from docsearch_agent.errors import RetrievalLookupError, SearchError

from .config import (
    MILVUS_HOST,
    MILVUS_PORT,
    CHUNKS_COLLECTION,
    DOCUMENTS_COLLECTION,
    EMBEDDING_DIM,
    MAX_TEXT_BYTES,
    STORE_TIMEOUT,
)

logger = logging.getLogger(__name__)

# Thread pool for running sync Milvus ops in async context
_executor = ThreadPoolExecutor(max_workers=4)

EmbedFn = Callable[[List[str]], Awaitable[List[List[float]]]]


def clip_text(text: str, max_bytes: int = MAX_TEXT_BYTES) -> str:
    """Cut text to fit a VARCHAR field without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MilvusDB:
    """Milvus wrapper: chunk search plus full-document lookup."""

    def __init__(
        self,
        embed: EmbedFn,
        chunks_collection: str = CHUNKS_COLLECTION,
        documents_collection: str = DOCUMENTS_COLLECTION,
        timeout: float = STORE_TIMEOUT,
    ):
        self.client: Optional[MilvusClient] = None
        self.embed = embed
        self.chunks_collection = chunks_collection
        self.documents_collection = documents_collection
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(MilvusException),
    )
    def connect(self) -> None:
        """Connect to Milvus."""
        uri = f"http://{MILVUS_HOST}:{MILVUS_PORT}"
        logger.info(f"Connecting to Milvus at {uri}")
        self.client = MilvusClient(uri=uri)
        logger.info("Connected to Milvus")

    def _check_connection(self):
        if self.client is None:
            raise RuntimeError("Not connected to Milvus. Call connect() first.")

    async def _run(self, func, *args):
        """Run a sync Milvus call in the pool, bounded by the store timeout."""
        loop = asyncio.get_event_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(_executor, func, *args),
            timeout=self.timeout,
        )

    def _create_collection(self, name: str) -> None:
        if self.client.has_collection(name):
            logger.info(f"Collection '{name}' exists")
            return

        logger.info(f"Creating collection '{name}'")

        schema = self.client.create_schema(auto_id=True, enable_dynamic_field=True)

        schema.add_field(
            field_name="id",
            datatype=DataType.INT64,
            is_primary=True,
            auto_id=True,
        )

        schema.add_field(
            field_name="text",
            datatype=DataType.VARCHAR,
            max_length=MAX_TEXT_BYTES,
        )

        schema.add_field(
            field_name="dense_vector",
            datatype=DataType.FLOAT_VECTOR,
            dim=EMBEDDING_DIM,
        )

        schema.add_field(
            field_name="source",
            datatype=DataType.VARCHAR,
            max_length=512,
        )

        # Index for dense vectors
        index_params = self.client.prepare_index_params()
        index_params.add_index(
            field_name="dense_vector",
            index_type="IVF_FLAT",
            metric_type="COSINE",
            params={"nlist": 128},
        )

        self.client.create_collection(
            collection_name=name,
            schema=schema,
            index_params=index_params,
        )
        logger.info(f"Collection '{name}' created")

    def ensure_collections(self) -> None:
        """Create both collections if they don't exist."""
        self._check_connection()
        self._create_collection(self.chunks_collection)
        self._create_collection(self.documents_collection)

    def _insert_sync(self, collection: str, rows: List[Dict[str, Any]]) -> int:
        """Sync insert."""
        self._check_connection()

        if not rows:
            return 0

        result = self.client.insert(collection_name=collection, data=rows)
        count = len(result["ids"]) if isinstance(result, dict) else len(rows)
        logger.info(f"Inserted {count} rows into '{collection}'")
        return count

    async def insert_chunks(self, texts: List[str], embeddings: List[List[float]], sources: List[str]) -> int:
        """Store searchable chunks."""
        rows = [
            {"text": t, "dense_vector": e, "source": s}
            for t, e, s in zip(texts, embeddings, sources)
        ]
        return await self._run(self._insert_sync, self.chunks_collection, rows)

    async def insert_document(self, source: str, text: str, embedding: List[float]) -> int:
        """Store one full document under its source."""
        clipped = clip_text(text)
        if clipped != text:
            logger.warning(f"Document '{source}' clipped to {MAX_TEXT_BYTES} bytes")
        rows = [{"text": clipped, "dense_vector": embedding, "source": source}]
        return await self._run(self._insert_sync, self.documents_collection, rows)

    def _delete_sync(self, source: str) -> None:
        self._check_connection()
        for name in (self.chunks_collection, self.documents_collection):
            self.client.delete(collection_name=name, filter=f"source == {_quote(source)}")
        logger.info(f"Deleted rows for '{source}'")

    async def delete_source(self, source: str) -> None:
        """Remove every chunk and the full document stored under a source."""
        await self._run(self._delete_sync, source)

    def _search_sync(self, query_embedding: List[float], top_k: int) -> List[Dict[str, Any]]:
        """Sync search."""
        self._check_connection()

        results = self.client.search(
            collection_name=self.chunks_collection,
            data=[query_embedding],
            anns_field="dense_vector",
            search_params={"metric_type": "COSINE", "params": {"nprobe": 10}},
            limit=top_k,
            output_fields=["text", "source"],
        )

        docs = []
        for hits in results:
            for hit in hits:
                docs.append({
                    "text": hit["entity"].get("text", ""),
                    "source": hit["entity"].get("source", ""),
                    "score": hit["distance"],
                })

        return docs

    async def search(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        """Top-k chunks for the query, best first."""
        try:
            embeddings = await asyncio.wait_for(self.embed([query]), timeout=self.timeout)
            if not embeddings:
                raise SearchError("Could not generate query embedding")
            docs = await self._run(self._search_sync, embeddings[0], top_k)
        except SearchError:
            raise
        except (MilvusException, RuntimeError, asyncio.TimeoutError) as e:
            raise SearchError(f"Chunk search failed: {e}") from e

        if docs:
            logger.info(f"Found {len(docs)} chunks, top score: {docs[0]['score']:.3f}")
        else:
            logger.info("No results found")

        return docs

    def _fetch_sync(self, source: str) -> Optional[Dict[str, Any]]:
        """Sync lookup of one full document."""
        self._check_connection()

        rows = self.client.query(
            collection_name=self.documents_collection,
            filter=f"source == {_quote(source)}",
            output_fields=["text", "source"],
            limit=1,
        )
        if not rows:
            return None
        row = rows[0]
        return {"text": row.get("text", ""), "source": row.get("source", source)}

    async def fetch_document(self, source: str) -> Optional[Dict[str, Any]]:
        """Full document for a source, or None when there is none."""
        try:
            return await self._run(self._fetch_sync, source)
        except (MilvusException, RuntimeError, asyncio.TimeoutError) as e:
            raise RetrievalLookupError(source, f"Lookup of '{source}' failed: {e}") from e

    def drop_collections(self) -> None:
        """Drop both collections (useful for resetting)."""
        self._check_connection()
        for name in (self.chunks_collection, self.documents_collection):
            if self.client.has_collection(name):
                self.client.drop_collection(name)
                logger.info(f"Dropped collection '{name}'")

    def close(self) -> None:
        """Close connection."""
        if self.client:
            self.client.close()
            logger.info("Milvus connection closed")
