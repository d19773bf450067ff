# src/cvchat/core/query.py
import hashlib
import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from cvchat.core.config import AppConfig
from cvchat.core.constants import NO_MATCH_REPLY
from cvchat.core.errors import (
    CVChatError,
    EmbeddingError,
    InferenceError,
    RetrievalError,
    VectorIndexUnavailable,
)
from cvchat.core.ports import IEmbedder, IKeyValueCache, ILLM, ISkillStore, IVectorIndex, VectorMatch
from cvchat.core.projects import ProjectDetector
from cvchat.core.prompts import PromptBuilder, ScoredSkill
from cvchat.core.quota import QuotaCounter
from cvchat.core.reply import ReplyCleaner
from cvchat.core.schedule import ScheduleGate
from cvchat.core.similarity import FallbackSearch
from cvchat.core.validation import QueryValidator, normalize_query

QUERY_PREFIX = "query:"


def query_cache_key(normalized: str) -> str:
    return QUERY_PREFIX + hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _daemon(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, daemon=True).start()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueryOrchestrator:
    """
    Schedule gate -> validate -> cache -> quota -> embed -> vector search (or fallback)
    -> hydrate -> project filter -> min similarity -> prompt -> infer -> clean -> cache store.
    """

    def __init__(
        self,
        embedder: IEmbedder,
        index: IVectorIndex,
        cache: IKeyValueCache,
        store: ISkillStore,
        llm: Optional[ILLM] = None,
        config: Optional[AppConfig] = None,
        schedule: Optional[ScheduleGate] = None,
        quota: Optional[QuotaCounter] = None,
        projects: Optional[ProjectDetector] = None,
        spawn: Callable[[Callable[[], None]], None] = _daemon,
        now: Callable[[], str] = _now_iso,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or AppConfig()
        c = self.config
        self.embedder = embedder
        self.index = index
        self.cache = cache
        self.store = store
        self.llm = llm
        self.validator = QueryValidator(c.min_query_length, c.max_query_length)
        self.schedule = schedule or ScheduleGate(
            start_hour=c.active_start_hour,
            end_hour=c.active_end_hour,
            days=c.active_days,
            tz_name=c.active_tz,
            bypass_phrase=c.schedule_bypass_phrase,
            enabled=c.schedule_enabled,
        )
        self.quota = quota or QuotaCounter(cache, c.daily_quota_limit)
        self.projects = projects or ProjectDetector(c.projects)
        self.fallback = FallbackSearch(cache, store, c.fallback_candidates)
        self.prompts = PromptBuilder(c.max_sentences)
        self.cleaner = ReplyCleaner(c.max_sentences)
        self.spawn = spawn
        self.now = now
        self.logger = logger or logging.getLogger("cvchat.query")

    # ---- phases ----
    def _embed(self, text: str) -> List[float]:
        try:
            return self.embedder.embed(text)
        except EmbeddingError as e:
            self.logger.warning("[embed] first attempt failed, retrying once: %s", e)
        return self.embedder.embed(text)

    def _search(self, q_vec: List[float]) -> Tuple[List[VectorMatch], str]:
        k = max(self.config.retrieve_k, self.config.top_k)
        try:
            return self.index.query(q_vec, k), "vector-index"
        except VectorIndexUnavailable as e:
            self.logger.warning("[query] vector index unavailable, using fallback: %s", e)
        matches = self.fallback.search(q_vec, k)
        if not matches:
            raise RetrievalError("vector index unavailable and fallback found nothing")
        return matches, "fallback"

    def _hydrate(self, matches: List[VectorMatch]) -> List[ScoredSkill]:
        out = []
        for m in matches:
            sid = m.skill_id
            if sid is None and m.id.startswith("skill-"):
                sid = int(m.id[len("skill-"):].split("@", 1)[0])
            rec = self.store.get_skill(sid) if sid is not None else None
            if rec is None:
                self.logger.info("[query] dropping unknown match %s", m.id)
                continue
            out.append(ScoredSkill(skill=rec, similarity=float(m.score)))
        return out

    def _store_cache(self, key: str, payload: Dict[str, Any]) -> None:
        try:
            self.cache.put(key, payload, self.config.cache_ttl)
        except CVChatError:
            self.logger.exception("[query] cache write failed for %s", key)

    @staticmethod
    def _result(s: ScoredSkill) -> Dict[str, Any]:
        return {
            "id": s.skill.id,
            "name": s.skill.name,
            "similarity": round(s.similarity, 4),
            "years": s.skill.experience_years,
            "level": s.skill.level,
            "category": s.skill.category,
            "summary": s.skill.summary,
        }

    # ---- entry point ----
    def handle(self, raw_query: Any, bypass_schedule: bool = False) -> Dict[str, Any]:
        t_all = time.perf_counter()
        pm: Dict[str, float] = {}

        def lap(name: str, t0: float):
            pm[name] = round((time.perf_counter() - t0) * 1000.0, 1)

        self.schedule.check(raw_query if isinstance(raw_query, str) else "", bypass=bypass_schedule)
        query = self.validator.validate(raw_query)

        t0 = time.perf_counter()
        key = query_cache_key(normalize_query(query))
        hit = self.cache.get(key)
        lap("cache", t0)
        if hit:
            payload = dict(hit)
            payload.update(source="cache", cached=True)
            self._telemetry(t_all, payload, pm, [])
            return payload

        quota_ok = self.quota.allowed()

        t0 = time.perf_counter()
        q_vec = self._embed(normalize_query(query))
        lap("embed", t0)

        t0 = time.perf_counter()
        matches, source = self._search(q_vec)
        lap("search", t0)

        t0 = time.perf_counter()
        scored = self._hydrate(matches)
        project = self.projects.detect(query)
        if project:
            on_project = [s for s in scored if ProjectDetector.matches(s.skill, project)]
            if on_project:
                scored = on_project
        scored = [s for s in scored if s.similarity >= self.config.min_similarity][: self.config.top_k]
        lap("hydrate", t0)

        reply: Optional[str] = None
        degraded_reason: Optional[str] = None
        if not scored:
            reply = NO_MATCH_REPLY
        elif self.llm is None:
            degraded_reason = "llm_disabled"
        elif not quota_ok:
            self.logger.warning("[query] daily inference quota reached; skipping llm")
            degraded_reason = "quota"
        else:
            t0 = time.perf_counter()
            system, user = self.prompts.build(query, scored, project)
            try:
                raw_reply = self.llm.answer(system, user)
                self.quota.record(self.config.quota_cost_per_call)
                reply = self.cleaner.clean(raw_reply)
            except InferenceError:
                self.logger.exception("[llm] inference failed; returning results only")
                degraded_reason = "inference"
            lap("llm", t0)

        payload = {
            "query": query,
            "results": [self._result(s) for s in scored],
            "assistantReply": reply,
            "source": source,
            "timestamp": self.now(),
            "cached": False,
            "degraded": degraded_reason is not None,
        }
        if degraded_reason:
            payload["degradedReason"] = degraded_reason
        else:
            snapshot = dict(payload)
            self.spawn(lambda: self._store_cache(key, snapshot))

        self._telemetry(t_all, payload, pm, [s.similarity for s in scored], project.name if project else None)
        return payload

    def _telemetry(self, t_all: float, payload: Dict[str, Any], pm: Dict[str, float], scores: List[float], project: Optional[str] = None):
        self.logger.info("[telemetry] %s", json.dumps({
            "latency_ms": round((time.perf_counter() - t_all) * 1000.0, 1),
            "source": payload.get("source"),
            "cache": "hit" if payload.get("cached") else "miss",
            "results": len(payload.get("results") or []),
            "scores": [round(float(s), 3) for s in scores[:5]],
            "project": project,
            "degraded": bool(payload.get("degraded")),
            "degraded_reason": payload.get("degradedReason"),
            "phase_ms": pm,
        }))
