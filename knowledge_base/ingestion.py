"""
Turns files into knowledge-base rows.

A file becomes one full-document row keyed by its path, plus the chunk rows
that point back to that path. Re-ingesting a path replaces its earlier rows
unless the caller asks to append.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

from sentence_transformers import SentenceTransformer
from langchain_text_splitters import RecursiveCharacterTextSplitter
from langchain_community.document_loaders import (
    PyPDFLoader,
    Docx2txtLoader,
    UnstructuredPowerPointLoader,
    UnstructuredExcelLoader,
    TextLoader,
)

from .config import EMBEDDING_MODEL, CHUNK_SIZE, CHUNK_OVERLAP

logger = logging.getLogger(__name__)

_LOADERS = {
    ".pdf": PyPDFLoader,
    ".docx": Docx2txtLoader,
    ".doc": Docx2txtLoader,
    ".pptx": UnstructuredPowerPointLoader,
    ".ppt": UnstructuredPowerPointLoader,
    ".xlsx": UnstructuredExcelLoader,
    ".xls": UnstructuredExcelLoader,
    ".txt": TextLoader,
    ".md": TextLoader,
}


@dataclass
class SourceDocument:
    source: str
    text: str
    chunks: List[str] = field(default_factory=list)


@dataclass
class IngestReport:
    source: str
    chunks: int
    replaced: bool


def supported_formats() -> str:
    return ", ".join(ext.lstrip(".").upper() for ext in _LOADERS)


def read_text(path: Path) -> str:
    """Extract a file's text, non-empty pages joined by blank lines."""
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    loader_cls = _LOADERS.get(path.suffix.lower())
    if loader_cls is None:
        raise ValueError(f"Unsupported file type: {path.suffix}. Supported: {supported_formats()}")

    pages = [page.page_content for page in loader_cls(str(path)).load()]
    return "\n\n".join(p for p in pages if p.strip())


@lru_cache(maxsize=1)
def _splitter() -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=CHUNK_SIZE,
        chunk_overlap=CHUNK_OVERLAP,
        separators=["\n\n", "\n", ". ", " ", ""],
    )


def split_text(text: str) -> List[str]:
    if not text.strip():
        return []
    return _splitter().split_text(text)


def prepare_document(file_path: str) -> SourceDocument:
    """Read and chunk one file. The path string is the document's source."""
    text = read_text(Path(file_path))
    doc = SourceDocument(source=file_path, text=text, chunks=split_text(text))
    logger.info(f"Prepared '{file_path}': {len(doc.chunks)} chunks")
    return doc


@lru_cache(maxsize=1)
def _embedding_model() -> SentenceTransformer:
    logger.info(f"Loading embedding model: {EMBEDDING_MODEL}")
    return SentenceTransformer(EMBEDDING_MODEL)


def _encode(texts: List[str]) -> List[List[float]]:
    vectors = _embedding_model().encode(texts, show_progress_bar=False, convert_to_numpy=True)
    return vectors.tolist()


async def generate_embeddings(texts: List[str]) -> List[List[float]]:
    """Embed texts off the event loop. Also the query embedder for search."""
    if not texts:
        return []
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _encode, texts)


async def ingest_file(file_path: str, db, replace: bool = True) -> IngestReport:
    """
    Store one file as chunks plus a full document.

    With replace, rows already stored under the same source are deleted
    first, so a changed file never leaves stale chunks behind. An empty
    file in replace mode just clears the source.
    """
    loop = asyncio.get_running_loop()
    doc = await loop.run_in_executor(None, prepare_document, file_path)

    db.ensure_collections()
    if replace:
        await db.delete_source(doc.source)

    if not doc.chunks:
        logger.warning(f"No content in {file_path}")
        return IngestReport(doc.source, 0, replace)

    vectors = await generate_embeddings(doc.chunks + [doc.text])
    count = await db.insert_chunks(doc.chunks, vectors[:-1], [doc.source] * len(doc.chunks))
    await db.insert_document(doc.source, doc.text, vectors[-1])

    logger.info(f"Ingested {count} chunks from {file_path}")
    return IngestReport(doc.source, count, replace)


async def ingest_files(paths: List[str], db, replace: bool = True) -> Tuple[List[IngestReport], List[str]]:
    """Ingest several files; unreadable ones are logged and returned as failures."""
    reports, failed = [], []
    for path in paths:
        try:
            reports.append(await ingest_file(path, db, replace=replace))
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"{path}: {e}")
            failed.append(path)
    return reports, failed
