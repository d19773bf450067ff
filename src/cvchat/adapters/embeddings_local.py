# src/cvchat/adapters/embeddings_local.py
from typing import List

from sentence_transformers import SentenceTransformer

from cvchat.core.errors import EmbeddingError


class LocalEmbedder:
    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", dim: int = 0):
        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        # expose dim for guardrails
        self.dim = int(self.model.get_sentence_embedding_dimension())
        if dim and dim != self.dim:
            raise EmbeddingError(f"{model_name} produces {self.dim}-d vectors, EMBED_DIM={dim}")

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vecs = self.model.encode(texts, normalize_embeddings=True, convert_to_numpy=True)
        except (RuntimeError, ValueError) as e:
            raise EmbeddingError(f"local embedding failed: {e}") from e
        return vecs.tolist()
