# src/cvchat/core/similarity.py
import logging
from typing import List, Optional, Sequence

import numpy as np

from cvchat.core.ports import IKeyValueCache, ISkillStore, VectorMatch

logger = logging.getLogger("cvchat.fallback")

CURRENT_VERSION_KEY = "vector:current"


def vector_key(version: Optional[int], skill_id: int) -> str:
    return f"vector:v{version or 0}:skill-{skill_id}"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; a zero-norm side gives 0.0 instead of NaN."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dim mismatch: {va.shape[0]} vs {vb.shape[0]}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    sim = float(va @ vb) / denom
    # clamp float noise so sim(v, v) never reads as 1.0000000002
    return max(-1.0, min(1.0, sim))


class FallbackSearch:
    """
    Approximate top-K used when the vector index is unavailable.
    Scans at most `max_candidates` cached vectors; the cap trades recall for latency.
    """

    def __init__(self, cache: IKeyValueCache, store: ISkillStore, max_candidates: int = 20):
        self.cache = cache
        self.store = store
        self.max_candidates = max_candidates

    def current_version(self) -> Optional[int]:
        v = self.cache.get(CURRENT_VERSION_KEY)
        return int(v) if v is not None else None

    def search(self, q_vec: Sequence[float], top_k: int) -> List[VectorMatch]:
        if top_k <= 0 or q_vec is None or len(q_vec) == 0:
            return []
        version = self.current_version()
        ids = self.store.list_skill_ids(self.max_candidates)

        scored: List[VectorMatch] = []
        for sid in ids:
            rec = self.cache.get(vector_key(version, sid))
            if not rec or not isinstance(rec.get("values"), list):
                continue
            if len(rec["values"]) != len(q_vec):
                logger.warning("[fallback] skip skill-%s: dim %d != %d", sid, len(rec["values"]), len(q_vec))
                continue
            meta = dict(rec.get("metadata") or {})
            meta.setdefault("id", sid)
            scored.append(VectorMatch(id=f"skill-{sid}", score=cosine_similarity(q_vec, rec["values"]), metadata=meta))

        # ties broken by ascending skill id so repeated calls order identically
        scored.sort(key=lambda m: (-m.score, m.skill_id if m.skill_id is not None else 0))
        logger.info("[fallback] scanned=%d candidates=%d version=%s", len(scored), len(ids), version)
        return scored[:top_k]
