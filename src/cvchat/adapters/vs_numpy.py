# src/cvchat/adapters/vs_numpy.py
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

import boto3
import numpy as np
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cvchat.core.errors import VectorIndexUnavailable
from cvchat.core.ports import VectorMatch

logger = logging.getLogger("cvchat.vectors")


class NumpyIndex:
    """
    Vector index backed by NumPy arrays.
      - vectors.npy : [N, D] float32, rows L2-normalised
      - meta.jsonl  : N lines of {"id": ..., "metadata": {...}}
    Artifacts live in `index_dir` and are mirrored to s3://bucket/prefix when a bucket is set.
    """

    def __init__(
        self,
        index_dir: str,
        dim: int,
        bucket: str = "",
        prefix: str = "",
        s3_client: Any = None,
        connect_timeout: float = 2.0,
        read_timeout: float = 10.0,
    ):
        self.index_dir = index_dir
        self.index_path = os.path.join(index_dir, "vectors.npy")
        self.meta_path  = os.path.join(index_dir, "meta.jsonl")
        self.dim = int(dim)
        self.bucket = bucket
        self.prefix = (prefix or "").rstrip("/")
        self._s3 = s3_client
        self._s3_config = Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 2})

        self.vecs: np.ndarray = np.zeros((0, self.dim), dtype=np.float32)
        self.ids: List[str] = []
        self.meta: List[Dict[str, Any]] = []
        self.current_version: Optional[int] = None
        self._ready = False
        self._lock = threading.Lock()

    # ---- storage ----
    def _s3_client(self):
        if self._s3 is None:
            self._s3 = boto3.client("s3", config=self._s3_config)
        return self._s3

    def _s3_key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def _download_s3(self) -> bool:
        """Pulls both artifacts into index_dir. False when the index does not exist yet."""
        os.makedirs(self.index_dir, exist_ok=True)
        s3 = self._s3_client()
        for name, dst in (("vectors.npy", self.index_path), ("meta.jsonl", self.meta_path)):
            key = self._s3_key(name)
            logger.info("[vectors] downloading s3://%s/%s -> %s", self.bucket, key, dst)
            try:
                s3.download_file(self.bucket, key, dst)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                    return False
                raise
        return True

    def _upload_s3(self):
        s3 = self._s3_client()
        for name, src in (("vectors.npy", self.index_path), ("meta.jsonl", self.meta_path)):
            key = self._s3_key(name)
            logger.info("[vectors] uploading %s -> s3://%s/%s", src, self.bucket, key)
            s3.upload_file(src, self.bucket, key)

    def _load_local(self):
        vecs = np.load(self.index_path)
        if vecs.dtype != np.float32:
            vecs = vecs.astype(np.float32, copy=False)
        if vecs.ndim != 2:
            raise ValueError(f"vectors must be 2-D, got shape {vecs.shape}")

        ids, meta = [], []
        with open(self.meta_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                row = json.loads(line)
                ids.append(str(row["id"]))
                meta.append(row.get("metadata") or {})

        if vecs.shape[0] != len(meta):
            raise ValueError(f"count mismatch: vectors={vecs.shape[0]} meta_lines={len(meta)}")
        if vecs.shape[0] and vecs.shape[1] != self.dim:
            raise ValueError(f"dim mismatch: index_dim={vecs.shape[1]} expected={self.dim}")

        self.vecs = self._normalise(vecs.reshape(-1, self.dim))
        self.ids = ids
        self.meta = meta
        logger.info("[vectors] loaded index: N=%d D=%d", self.vecs.shape[0], self.dim)

    def _persist(self):
        os.makedirs(self.index_dir, exist_ok=True)
        np.save(self.index_path, self.vecs)
        with open(self.meta_path, "w", encoding="utf-8") as f:
            for i, m in zip(self.ids, self.meta):
                f.write(json.dumps({"id": i, "metadata": m}, ensure_ascii=False) + "\n")
        if self.bucket:
            self._upload_s3()

    def ensure(self) -> bool:
        """Loads the index once. A missing index starts empty; anything else marks it unavailable."""
        if self._ready:
            return True
        with self._lock:
            if self._ready:
                return True
            try:
                exists = self._download_s3() if self.bucket else os.path.isfile(self.index_path)
                if exists:
                    self._load_local()
                else:
                    os.makedirs(self.index_dir, exist_ok=True)
                    logger.info("[vectors] no index at %s yet; starting empty", self.bucket or self.index_dir)
                self._ready = True
            except (ClientError, BotoCoreError, OSError, ValueError, KeyError) as e:
                logger.warning("[vectors] ensure() failed: %s", e)
                self._ready = False
        return self._ready

    # ---- IVectorIndex ----
    def health(self) -> bool:
        return self.ensure()

    def size(self) -> int:
        return int(self.vecs.shape[0])

    def set_current_version(self, version: Optional[int]) -> None:
        self.current_version = int(version) if version is not None else None

    @staticmethod
    def _normalise(vecs: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vecs, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return vecs / norms

    def upsert(self, records: List[Dict[str, Any]]) -> None:
        """records: [{"id": str, "values": [float]*D, "metadata": {...}}]; same id replaces."""
        if not records:
            return
        if not self.ensure():
            raise VectorIndexUnavailable("vector index not loadable")
        for r in records:
            if len(r["values"]) != self.dim:
                raise VectorIndexUnavailable(f"dim mismatch on upsert: {len(r['values'])} != {self.dim}")

        with self._lock:
            pos = {i: n for n, i in enumerate(self.ids)}
            vecs = self.vecs.copy()
            ids, meta = list(self.ids), list(self.meta)
            new_rows = []
            for r in records:
                v = self._normalise(np.asarray([r["values"]], dtype=np.float32))[0]
                rid = str(r["id"])
                if rid in pos:
                    vecs[pos[rid]] = v
                    meta[pos[rid]] = dict(r.get("metadata") or {})
                else:
                    pos[rid] = len(ids)
                    ids.append(rid)
                    meta.append(dict(r.get("metadata") or {}))
                    new_rows.append(v)
            if new_rows:
                vecs = np.vstack([vecs, np.asarray(new_rows, dtype=np.float32)])
            self.vecs, self.ids, self.meta = vecs, ids, meta
            try:
                self._persist()
            except (ClientError, BotoCoreError, OSError) as e:
                raise VectorIndexUnavailable(f"persist failed: {e}") from e
        logger.info("[vectors] upserted %d records (N=%d)", len(records), self.size())

    def prune(self, keep_version: int) -> int:
        """Drops rows from every version except `keep_version`. Returns the number removed."""
        if not self.ensure():
            raise VectorIndexUnavailable("vector index not loadable")
        with self._lock:
            keep = [n for n, m in enumerate(self.meta) if m.get("version") == keep_version]
            removed = len(self.ids) - len(keep)
            if not removed:
                return 0
            self.vecs = self.vecs[np.asarray(keep, dtype=int)].reshape(-1, self.dim)
            self.ids = [self.ids[n] for n in keep]
            self.meta = [self.meta[n] for n in keep]
            try:
                self._persist()
            except (ClientError, BotoCoreError, OSError) as e:
                raise VectorIndexUnavailable(f"persist failed: {e}") from e
        logger.info("[vectors] pruned %d stale rows (N=%d, version=%s)", removed, self.size(), keep_version)
        return removed

    def query(self, vector: List[float], top_k: int) -> List[VectorMatch]:
        """Cosine similarity on L2-normalised rows, highest score first."""
        if not self.ensure():
            raise VectorIndexUnavailable("vector index not loaded")
        q = np.asarray(vector, dtype=np.float32)
        if q.ndim != 1 or q.shape[0] != self.dim:
            raise VectorIndexUnavailable(f"dim mismatch: index_dim={self.dim} query_dim={q.shape[-1]}")
        n = np.linalg.norm(q)
        if n == 0 or top_k <= 0:
            return []
        q = q / n

        V, metas, ids = self.vecs, self.meta, self.ids
        rows = np.arange(V.shape[0])
        if self.current_version is not None:
            rows = np.array([i for i, m in enumerate(metas) if m.get("version") == self.current_version], dtype=int)
        if rows.size == 0:
            return []

        sims = V[rows] @ q
        k = min(top_k, rows.size)
        idx = np.argpartition(-sims, k - 1)[:k]
        # stable sort on (-score, row) so equal scores keep insertion order
        idx = idx[np.lexsort((rows[idx], -sims[idx]))]

        return [
            VectorMatch(id=ids[rows[i]], score=float(sims[i]), metadata=dict(metas[rows[i]]))
            for i in idx
        ]
