# src/cvchat/ingest/indexer.py
import argparse
import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cvchat.core.config import AppConfig
from cvchat.core.errors import LockHeldError, VectorIndexUnavailable
from cvchat.core.ports import IEmbedder, IKeyValueCache, ISkillStore, IVectorIndex, SkillRecord
from cvchat.core.similarity import CURRENT_VERSION_KEY, vector_key

LOCK_KEY = "lock:index:skills"

logger = logging.getLogger("cvchat.index")


class IndexingOrchestrator:
    """Rebuilds the vector index (and its cache copy) from the relational store under a TTL lock."""

    def __init__(
        self,
        embedder: IEmbedder,
        index: IVectorIndex,
        store: ISkillStore,
        cache: IKeyValueCache,
        config: Optional[AppConfig] = None,
        max_workers: int = 8,
    ):
        self.embedder = embedder
        self.index = index
        self.store = store
        self.cache = cache
        self.config = config or AppConfig()
        self.max_workers = max_workers

    def _acquire(self) -> str:
        owner = uuid.uuid4().hex
        held = self.cache.add(
            LOCK_KEY,
            {"owner": owner, "since": datetime.now(timezone.utc).isoformat()},
            self.config.index_lock_ttl,
        )
        if not held:
            raise LockHeldError("Indexing is already in progress. Try again in a couple of minutes.")
        return owner

    def _release(self, owner: str):
        cur = self.cache.get(LOCK_KEY)
        # a lock that expired and was re-taken belongs to someone else now
        if cur is None or cur.get("owner") == owner:
            self.cache.delete(LOCK_KEY)

    @staticmethod
    def _record(skill: SkillRecord, values: List[float], version: int) -> Dict[str, Any]:
        return {
            "id": f"skill-{skill.id}@v{version}",
            "values": values,
            "metadata": {"id": skill.id, "version": version, "name": skill.name, "category": skill.category},
        }

    def run(self) -> Dict[str, Any]:
        owner = self._acquire()
        try:
            if not self.index.health():
                raise VectorIndexUnavailable("vector index not available and could not be created")

            version = self.store.next_index_version()
            self.store.begin_index(version)
            logger.info("[index] version=%d started", version)

            batch_size = max(1, self.config.index_batch_size)
            ttl = self.config.vector_kv_ttl
            total, offset = 0, 0
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                while True:
                    batch = self.store.list_skills(batch_size, offset)
                    if not batch:
                        break
                    vecs = self.embedder.embed_many([s.embedding_text() for s in batch])
                    records = [self._record(s, v, version) for s, v in zip(batch, vecs)]
                    self.index.upsert(records)

                    futures = [
                        pool.submit(
                            self.cache.put,
                            vector_key(version, r["metadata"]["id"]),
                            {"values": r["values"], "metadata": r["metadata"]},
                            ttl,
                        )
                        for r in records
                    ]
                    for f in futures:
                        f.result()

                    total += len(batch)
                    offset += len(batch)
                    logger.info("[index] version=%d embedded %d", version, total)

            self.store.complete_index(version, total)
            self.cache.put(CURRENT_VERSION_KEY, version)
            self.index.set_current_version(version)
            logger.info("[index] version=%d completed total=%d", version, total)
            try:
                self.index.prune(version)
            except VectorIndexUnavailable:
                # queries already filter on the published version; stale rows go on the next run
                logger.exception("[index] version=%d published but pruning older rows failed", version)
            return {"success": True, "version": version, "total": total}
        finally:
            self._release(owner)


def main():
    from cvchat.core.services import build_services

    ap = argparse.ArgumentParser(description="Seed skills and rebuild the vector index.")
    ap.add_argument("--seed", help="JSON file of skill records ({'skills': [...]} or a list)")
    ap.add_argument("--no-index", action="store_true", help="only seed, do not rebuild the index")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO)
    services = build_services(AppConfig.from_env())
    if args.seed:
        n = services.store.seed_file(args.seed)
        print(f"[ingest] seeded {n} skills from {args.seed}")
    if not args.no_index:
        out = services.indexer.run()
        print(json.dumps(out))


if __name__ == "__main__":
    main()
