# src/cvchat/core/config.py
import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

# Only try to load .env locally; in Lambda, env vars are injected by SAM
if os.environ.get("APP_ENV", "local") == "local":
    from dotenv import load_dotenv
    load_dotenv()

DEFAULT_STOP_SEQUENCES = [
    "I've worked",
    "I've demonstrated",
    "My expertise spans",
    "I've consistently",
    "Additionally,",
    "Moreover,",
    "In addition,",
    "My background includes",
    "across multiple",
    "various projects",
]

DEFAULT_PROJECTS = {
    "CCHQ": ["cchq", "conservative hq", "conservative party"],
    "Wairbut": ["wairbut"],
}

_DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "on", "yes", "allow"}


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return json.loads(raw)


def parse_days(raw: str) -> Tuple[int, ...]:
    """'mon-fri' or 'mon,wed,fri' -> weekday numbers (Monday=0)."""
    days = set()
    for part in (raw or "").lower().split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo, hi = (p.strip()[:3] for p in part.split("-", 1))
            a, b = _DAY_NAMES.index(lo), _DAY_NAMES.index(hi)
            days.update(range(a, b + 1) if a <= b else list(range(a, 7)) + list(range(0, b + 1)))
        else:
            days.add(_DAY_NAMES.index(part[:3]))
    return tuple(sorted(days))


@dataclass
class AppConfig:
    # Environment
    app_env: str = "local"
    aws_region: str = "us-east-1"

    # Providers
    embed_provider: str = "local"     # local | bedrock
    llm_provider: str = "none"        # none | bedrock
    kv_provider: str = "memory"       # memory | dynamodb

    # Embeddings / model
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    bedrock_region: str = "us-east-1"
    bedrock_embed_model: str = "amazon.titan-embed-text-v2:0"
    embed_dim: int = 384

    # LLM
    llm_model_id: str = ""
    max_tokens: int = 80
    temperature: float = 0.2
    stop_sequences: List[str] = field(default_factory=lambda: list(DEFAULT_STOP_SEQUENCES))
    max_sentences: int = 3

    # Relational store
    db_path: str = "store/skills.db"

    # Vector index (local dir, optionally mirrored to S3)
    index_dir: str = "store/index"
    s3_bucket: str = ""
    index_prefix: str = "cvchat/index"

    # Key-value cache
    ddb_cache_table: str = ""
    cache_ttl: int = 3600
    cache_max_items: int = 1000
    vector_kv_ttl: int = 86400 * 30

    # Retrieval
    top_k: int = 3
    retrieve_k: int = 5
    min_similarity: float = 0.5
    fallback_candidates: int = 20

    # Indexing
    index_batch_size: int = 10
    index_lock_ttl: int = 120

    # Validation
    min_query_length: int = 10
    max_query_length: int = 200

    # Schedule gate
    schedule_enabled: bool = True
    active_start_hour: int = 8
    active_end_hour: int = 20
    active_days: Tuple[int, ...] = (0, 1, 2, 3, 4)
    active_tz: str = "Europe/London"
    schedule_bypass_phrase: str = ""

    # Quota
    daily_quota_limit: float = 9500.0
    quota_cost_per_call: float = 5.0

    # Per-client rate limits
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 10
    rate_limit_per_hour: int = 50
    rate_limit_burst: int = 2
    admin_token: str = ""
    admin_token_arn: str = ""

    # Sessions
    require_session: bool = False
    session_ttl: int = 900
    jwt_secret: str = ""
    jwt_secret_arn: str = ""
    turnstile_secret: str = ""
    turnstile_secret_arn: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

    # Timeouts (seconds)
    connect_timeout: float = 2.0
    read_timeout: float = 10.0
    db_timeout: float = 5.0

    # Projects / employers: canonical name -> aliases
    projects: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_PROJECTS.items()})

    @classmethod
    def from_env(cls) -> "AppConfig":
        projects_raw = os.getenv("PROJECTS")
        return cls(
            app_env=os.getenv("APP_ENV", "local"),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),

            embed_provider=os.getenv("EMBED_PROVIDER", "local").strip().lower(),
            llm_provider=os.getenv("LLM_PROVIDER", "none").strip().lower(),
            kv_provider=os.getenv("KV_PROVIDER", "memory").strip().lower(),

            model_name=os.getenv("MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2"),
            bedrock_region=os.getenv("BEDROCK_REGION", os.getenv("AWS_REGION", "us-east-1")),
            bedrock_embed_model=os.getenv("BEDROCK_MODEL", "amazon.titan-embed-text-v2:0"),
            embed_dim=int(os.getenv("EMBED_DIM", "384")),

            llm_model_id=os.getenv("LLM_MODEL_ID", "").strip(),
            max_tokens=int(os.getenv("MAX_TOKENS", "80")),
            temperature=float(os.getenv("TEMPERATURE", "0.2")),
            stop_sequences=_env_list("STOP_SEQUENCES", DEFAULT_STOP_SEQUENCES),
            max_sentences=int(os.getenv("MAX_SENTENCES", "3")),

            db_path=os.getenv("DB_PATH", "store/skills.db"),

            index_dir=os.getenv("INDEX_DIR", "store/index"),
            s3_bucket=os.getenv("ARTIFACTS_BUCKET", "").strip(),
            index_prefix=os.getenv("INDEX_PREFIX", "cvchat/index").strip().rstrip("/"),

            ddb_cache_table=os.getenv("DDB_CACHE_TABLE", ""),
            cache_ttl=int(os.getenv("CACHE_TTL_SEC", "3600")),
            cache_max_items=int(os.getenv("CACHE_MAX_ITEMS", "1000")),
            vector_kv_ttl=int(os.getenv("VECTOR_KV_TTL", str(86400 * 30))),

            top_k=int(os.getenv("TOP_K", "3")),
            retrieve_k=int(os.getenv("RETRIEVE_K", "5")),
            min_similarity=float(os.getenv("MIN_SIMILARITY", "0.5")),
            fallback_candidates=int(os.getenv("FALLBACK_CANDIDATES", "20")),

            index_batch_size=int(os.getenv("INDEX_BATCH_SIZE", "10")),
            index_lock_ttl=int(os.getenv("INDEX_LOCK_TTL", "120")),

            min_query_length=int(os.getenv("MIN_QUERY_LENGTH", "10")),
            max_query_length=int(os.getenv("MAX_QUERY_LENGTH", "200")),

            schedule_enabled=_env_bool("SCHEDULE_ENABLED", "true"),
            active_start_hour=int(os.getenv("ACTIVE_START_HOUR", "8")),
            active_end_hour=int(os.getenv("ACTIVE_END_HOUR", "20")),
            active_days=parse_days(os.getenv("ACTIVE_DAYS", "mon-fri")),
            active_tz=os.getenv("ACTIVE_TZ", "Europe/London"),
            schedule_bypass_phrase=os.getenv("SCHEDULE_BYPASS_PHRASE", ""),

            daily_quota_limit=float(os.getenv("DAILY_QUOTA_LIMIT", "9500")),
            quota_cost_per_call=float(os.getenv("QUOTA_COST_PER_CALL", "5")),

            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "10")),
            rate_limit_per_hour=int(os.getenv("RATE_LIMIT_PER_HOUR", "50")),
            rate_limit_burst=int(os.getenv("RATE_LIMIT_BURST", "2")),
            admin_token=os.getenv("ADMIN_TOKEN", ""),
            admin_token_arn=os.getenv("ADMIN_TOKEN_ARN", ""),

            require_session=_env_bool("REQUIRE_SESSION", "false"),
            session_ttl=int(os.getenv("SESSION_TTL", "900")),
            jwt_secret=os.getenv("JWT_SECRET", ""),
            jwt_secret_arn=os.getenv("JWT_SECRET_ARN", ""),
            turnstile_secret=os.getenv("TURNSTILE_SECRET_KEY", ""),
            turnstile_secret_arn=os.getenv("TURNSTILE_SECRET_ARN", ""),
            turnstile_verify_url=os.getenv(
                "TURNSTILE_VERIFY_URL", "https://challenges.cloudflare.com/turnstile/v0/siteverify"
            ),

            connect_timeout=float(os.getenv("CONNECT_TIMEOUT", "2")),
            read_timeout=float(os.getenv("READ_TIMEOUT", "10")),
            db_timeout=float(os.getenv("DB_TIMEOUT", "5")),

            projects=json.loads(projects_raw) if projects_raw else {k: list(v) for k, v in DEFAULT_PROJECTS.items()},
        )
