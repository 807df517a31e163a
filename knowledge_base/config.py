"""
Config for the knowledge base (Milvus + embeddings + ingestion).
All settings come from environment variables with defaults.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Milvus
MILVUS_HOST = os.getenv("MILVUS_HOST", "localhost")
MILVUS_PORT = int(os.getenv("MILVUS_PORT", "19530"))

# Chunks are searched, full documents are fetched by source
CHUNKS_COLLECTION = os.getenv("MILVUS_CHUNKS_COLLECTION", "document_chunks")
DOCUMENTS_COLLECTION = os.getenv("MILVUS_DOCUMENTS_COLLECTION", "full_documents")

# Embeddings - using sentence-transformers (runs locally, fast)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
EMBEDDING_DIM = 384  # Fixed for all-MiniLM-L6-v2

# Chunking
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))

# Seconds allowed for one Milvus call
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "30"))

# Milvus VARCHAR limit, in bytes
MAX_TEXT_BYTES = 65535
