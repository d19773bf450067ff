# src/cvchat/adapters/embeddings_bedrock.py
import json
import logging
from typing import Any, List

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cvchat.core.errors import EmbeddingError

logger = logging.getLogger("cvchat.embed")


class BedrockEmbedder:
    """
    Supports Titan (amazon.titan-embed-text-v2:0) and Cohere (cohere.embed-english-v3 / cohere.embed-multilingual-v3).
    - Titan v2: one text per call, dimension set via the request body.
    - Cohere v3: accepts a batch, one call per batch.
    """

    def __init__(
        self,
        model_id: str = "amazon.titan-embed-text-v2:0",
        region: str = "us-east-1",
        dim: int = 1024,
        client: Any = None,
        connect_timeout: float = 2.0,
        read_timeout: float = 10.0,
    ):
        self.model_id = model_id
        self.region = region
        self.dim = int(dim)
        self.client = client or boto3.client(
            "bedrock-runtime",
            region_name=region,
            config=Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 2}),
        )

    def _invoke(self, body: dict) -> dict:
        try:
            resp = self.client.invoke_model(
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            return json.loads(resp["body"].read().decode("utf-8"))
        except (ClientError, BotoCoreError) as e:
            logger.warning("[embed] invoke %s failed: %s", self.model_id, e)
            raise EmbeddingError(f"embedding call failed: {e}") from e
        except (KeyError, ValueError) as e:
            raise EmbeddingError(f"bad embedding response: {e}") from e

    def _is_cohere(self) -> bool:
        return self.model_id.startswith("cohere.")

    def _check(self, vec: List[float]) -> List[float]:
        if not isinstance(vec, list) or len(vec) != self.dim:
            got = len(vec) if isinstance(vec, list) else type(vec).__name__
            raise EmbeddingError(f"embedding dim mismatch: got {got}, expected {self.dim}")
        return [float(x) for x in vec]

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if self._is_cohere():
            out = self._invoke({"texts": texts, "input_type": "search_document"})
            vecs = [e["embedding"] if isinstance(e, dict) else e for e in out.get("embeddings", [])]
            if len(vecs) != len(texts):
                raise EmbeddingError(f"expected {len(texts)} embeddings, got {len(vecs)}")
            return [self._check(v) for v in vecs]

        vecs: List[List[float]] = []
        for t in texts:
            out = self._invoke({"inputText": t, "dimensions": self.dim, "normalize": True})
            vecs.append(self._check(out.get("embedding")))
        return vecs
