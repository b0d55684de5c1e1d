from prometheus_client import Counter, Histogram

# HTTP layer
HTTP_REQUESTS = Counter(
    "kb_http_requests_total", "HTTP requests", ["path", "method", "status"]
)
HTTP_LATENCY = Histogram(
    "kb_http_request_duration_seconds", "HTTP request duration (s)", ["path", "method"]
)

# Retrieval
RETRIEVAL_LATENCY = Histogram(
    "kb_retrieval_seconds", "Per-document ranking duration (s)", ["method"]  # method: bm25|vector
)

# Import pipeline
IMPORTED_CHUNKS = Counter("kb_imported_chunks_total", "Chunks persisted by background imports")
IMPORT_RESULTS = Counter(
    "kb_imports_total", "Finished background imports", ["result"]  # result: done|extraction|storage|validation|cancelled
)

# Embeddings
EMBED_LATENCY = Histogram(
    "kb_embedding_request_seconds", "Remote embedding call duration (s)", ["provider"]
)
