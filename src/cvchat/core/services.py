# src/cvchat/core/services.py
import logging
from dataclasses import dataclass
from typing import Any, Optional

from cvchat.core.config import AppConfig
from cvchat.core.projects import ProjectDetector
from cvchat.core.query import QueryOrchestrator
from cvchat.core.quota import QuotaCounter
from cvchat.core.ratelimit import RateLimiter
from cvchat.core.schedule import ScheduleGate
from cvchat.core.secrets import resolve
from cvchat.core.session import SessionIssuer, TurnstileVerifier
from cvchat.core.similarity import CURRENT_VERSION_KEY
from cvchat.ingest.indexer import IndexingOrchestrator

logger = logging.getLogger("cvchat.services")


@dataclass
class Services:
    config: AppConfig
    embedder: Any
    index: Any
    cache: Any
    store: Any
    llm: Any
    schedule: ScheduleGate
    quota: QuotaCounter
    query: QueryOrchestrator
    indexer: IndexingOrchestrator
    session: Optional[SessionIssuer] = None
    rate_limiter: Optional[RateLimiter] = None
    admin_token: str = ""


def _embedder(c: AppConfig):
    if c.embed_provider == "bedrock":
        from cvchat.adapters.embeddings_bedrock import BedrockEmbedder
        return BedrockEmbedder(
            model_id=c.bedrock_embed_model, region=c.bedrock_region, dim=c.embed_dim,
            connect_timeout=c.connect_timeout, read_timeout=c.read_timeout,
        )
    from cvchat.adapters.embeddings_local import LocalEmbedder
    return LocalEmbedder(c.model_name, dim=c.embed_dim)


def _cache(c: AppConfig):
    if c.kv_provider == "dynamodb":
        from cvchat.adapters.kv_dynamodb import DynamoKV
        return DynamoKV(
            c.ddb_cache_table, region=c.aws_region,
            connect_timeout=c.connect_timeout, read_timeout=c.read_timeout,
        )
    from cvchat.adapters.kv_memory import MemoryKV
    return MemoryKV(max_items=max(c.cache_max_items, 1))


def _llm(c: AppConfig):
    if c.llm_provider == "bedrock" and c.llm_model_id:
        from cvchat.adapters.llm_bedrock import BedrockClaude
        return BedrockClaude(
            c.llm_model_id, region=c.bedrock_region, max_tokens=c.max_tokens,
            temperature=c.temperature, stop_sequences=c.stop_sequences,
            connect_timeout=c.connect_timeout, read_timeout=c.read_timeout,
        )
    logger.info("[llm] provider=%s; replies disabled", c.llm_provider)
    return None


def _session(c: AppConfig) -> Optional[SessionIssuer]:
    jwt_secret = resolve(c.jwt_secret, c.jwt_secret_arn)
    if not jwt_secret:
        return None
    verifier = TurnstileVerifier(
        resolve(c.turnstile_secret, c.turnstile_secret_arn), c.turnstile_verify_url, timeout=c.read_timeout,
    )
    return SessionIssuer(jwt_secret, verifier, ttl=c.session_ttl)


def build_services(
    config: AppConfig,
    embedder: Any = None,
    index: Any = None,
    cache: Any = None,
    store: Any = None,
    llm: Any = None,
    session: Optional[SessionIssuer] = None,
    **query_kwargs,
) -> Services:
    """Builds every client once; anything passed in is used as-is (tests inject fakes here)."""
    c = config
    if store is None:
        from cvchat.adapters.skills_sqlite import SqliteSkillStore
        store = SqliteSkillStore(c.db_path, timeout=c.db_timeout)
    cache = cache if cache is not None else _cache(c)
    embedder = embedder if embedder is not None else _embedder(c)
    if index is None:
        from cvchat.adapters.vs_numpy import NumpyIndex
        index = NumpyIndex(
            c.index_dir, embedder.dim, bucket=c.s3_bucket, prefix=c.index_prefix,
            connect_timeout=c.connect_timeout, read_timeout=c.read_timeout,
        )
    if llm is None:
        llm = _llm(c)
    if session is None:
        session = _session(c)

    current = cache.get(CURRENT_VERSION_KEY)
    if current is not None:
        index.set_current_version(int(current))

    schedule = ScheduleGate(
        start_hour=c.active_start_hour,
        end_hour=c.active_end_hour,
        days=c.active_days,
        tz_name=c.active_tz,
        bypass_phrase=c.schedule_bypass_phrase,
        enabled=c.schedule_enabled,
    )
    quota = QuotaCounter(cache, c.daily_quota_limit)
    rate_limiter = RateLimiter(
        cache, per_minute=c.rate_limit_per_minute, per_hour=c.rate_limit_per_hour,
        burst=c.rate_limit_burst, enabled=c.rate_limit_enabled,
    )
    query = QueryOrchestrator(
        embedder, index, cache, store, llm=llm, config=c, schedule=schedule, quota=quota,
        projects=ProjectDetector(c.projects), **query_kwargs,
    )
    indexer = IndexingOrchestrator(embedder, index, store, cache, config=c)
    logger.info(
        "[services] embed=%s kv=%s llm=%s index_version=%s",
        c.embed_provider, c.kv_provider, c.llm_provider if llm else "none", current,
    )
    return Services(
        c, embedder, index, cache, store, llm, schedule, quota, query, indexer, session,
        rate_limiter=rate_limiter, admin_token=resolve(c.admin_token, c.admin_token_arn),
    )
