from .remote import EmbeddingProvider, embed_chunks_remotely
from .store import save_vectors, vector_id_for

__all__ = ["EmbeddingProvider", "embed_chunks_remotely", "save_vectors", "vector_id_for"]
