# src/cvchat/api/app.py
import base64
import hmac
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from cvchat.core.config import AppConfig
from cvchat.core.errors import GENERIC_MESSAGE, AuthenticationError, CVChatError, ValidationError
from cvchat.core.services import Services, build_services

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cvchat.api")

# ------------------ Globals ------------------
_services: Optional[Services] = None

ROUTES = {
    "/query":   ("GET", "POST"),
    "/index":   ("POST",),
    "/health":  ("GET",),
    "/session": ("POST",),
    "/quota":   ("GET",),
    "/quota/reset": ("POST",),
}


def get_services() -> Services:
    """Clients are built once per process so warm Lambda invocations reuse them."""
    global _services
    if _services is None:
        _services = build_services(AppConfig.from_env())
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


# ------------------ Routes ------------------
def _bearer(headers: Dict[str, str]) -> Optional[str]:
    auth = headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def _client_ip(headers: Dict[str, str]) -> Optional[str]:
    ip = headers.get("cf-connecting-ip") or headers.get("x-forwarded-for", "").split(",")[0].strip()
    return ip or None


def _query(s: Services, method: str, params: Dict[str, str], body: Any, headers: Dict[str, str]):
    if s.rate_limiter is not None:
        s.rate_limiter.check(_client_ip(headers))
    if s.config.require_session:
        if s.session is None:
            raise AuthenticationError("Sessions are required but not configured.")
        s.session.verify(_bearer(headers))
    # ?q= wins for both methods; POST falls back to a JSON {"q"|"query"} body, then a plain-text body
    raw = params.get("q")
    if not raw and method == "POST":
        raw = body if isinstance(body, str) else body.get("q", body.get("query"))
    phrase = s.config.schedule_bypass_phrase
    bypass = bool(phrase) and headers.get("x-schedule-bypass") == phrase
    return s.query.handle(raw, bypass_schedule=bypass)


def _health(s: Services):
    s.store.ping()
    return {
        "status": "healthy",
        "db": "connected",
        "total_skills": s.store.count_skills(),
        "last_index": s.store.last_index(),
        "index": "ready" if s.index.health() else "unavailable",
        "quota": s.quota.status(),
        "schedule": s.schedule.status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _session(s: Services, body: Dict[str, Any], headers: Dict[str, str]):
    if s.session is None:
        raise CVChatError("session issuer not configured")
    challenge = headers.get("x-turnstile-token") or body.get("token")
    return s.session.issue(challenge, _client_ip(headers))


def _quota(s: Services, headers: Dict[str, str]):
    out = s.quota.status()
    ip = _client_ip(headers)
    if s.rate_limiter is not None and ip:
        out["rate_limit"] = s.rate_limiter.status(ip)
    return out


def _quota_reset(s: Services, headers: Dict[str, str]):
    token = _bearer(headers)
    if not s.admin_token or not token or not hmac.compare_digest(token.encode("utf-8"), s.admin_token.encode("utf-8")):
        raise AuthenticationError("Admin token required.")
    s.quota.reset()
    logger.info("[api] daily quota reset")
    return {"success": True, "message": "Quota reset successfully", "status": s.quota.status()}


def dispatch(
    method: str,
    path: str,
    params: Optional[Dict[str, str]] = None,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    services: Optional[Services] = None,
) -> Tuple[int, Dict[str, Any]]:
    """Shared router for the Lambda handler and the FastAPI app. Returns (status, body)."""
    method = (method or "GET").upper()
    path = "/" + (path or "/").strip("/")
    params = params or {}
    headers = {k.lower(): v for k, v in (headers or {}).items()}

    if path not in ROUTES:
        return 404, {"error": "NOT_FOUND", "message": "Not Found"}
    if method not in ROUTES[path]:
        return 405, {"error": "METHOD_NOT_ALLOWED", "message": f"{method} not allowed on {path}"}

    t0 = time.perf_counter()
    try:
        if body is None or body == "":
            body = {}
        if not isinstance(body, dict) and not (path == "/query" and isinstance(body, str)):
            raise ValidationError("Request body must be a JSON object.")
        s = services or get_services()
        if path == "/query":
            out = _query(s, method, params, body, headers)
        elif path == "/index":
            out = s.indexer.run()
        elif path == "/health":
            out = _health(s)
        elif path == "/quota":
            out = _quota(s, headers)
        elif path == "/quota/reset":
            out = _quota_reset(s, headers)
        else:
            out = _session(s, body, headers)
        status = 200
    except CVChatError as e:
        if e.public:
            logger.info("[api] %s %s -> %d %s: %s", method, path, e.status_code, e.code, e.message)
        else:
            logger.exception("[api] %s %s failed: %s", method, path, e.message)
        status, out = e.status_code, e.to_body()
    except Exception:
        logger.exception("[api] unhandled error on %s %s", method, path)
        status, out = 500, {"error": "INTERNAL_ERROR", "message": GENERIC_MESSAGE}

    logger.info("[api] %s %s %d %.1fms", method, path, status, (time.perf_counter() - t0) * 1000.0)
    return status, out


# ------------------ Lambda glue ------------------
def _json(status: int, body: dict, headers: Optional[dict] = None) -> dict:
    h = {"Content-Type": "application/json"}
    if headers:
        h.update(headers)
    return {"statusCode": status, "headers": h, "body": json.dumps(body, ensure_ascii=False)}


def _parse_body(raw: str, is_b64: bool = False, content_type: str = "") -> Any:
    """JSON when it parses; plain text otherwise. None for a malformed body sent as application/json."""
    if is_b64:
        raw = base64.b64decode(raw).decode("utf-8", "ignore")
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return None if "json" in (content_type or "").lower() else raw


def handler(event, context):
    """
    API Gateway HTTP API (v2) event router.
      GET|POST /query        (?q=..., JSON {"q": "..."} or a plain-text body)
      POST     /index
      GET      /health
      POST     /session      (X-Turnstile-Token header)
      GET      /quota
      POST     /quota/reset  (Authorization: Bearer <ADMIN_TOKEN>)
    """
    path = event.get("rawPath") or event.get("path") or "/"
    method = (event.get("requestContext", {}).get("http", {}).get("method") or event.get("httpMethod") or "GET").upper()
    params = event.get("queryStringParameters") or {}
    headers = event.get("headers") or {}
    content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")

    body = _parse_body(event.get("body") or "", bool(event.get("isBase64Encoded")), content_type)
    if body is None:
        return _json(400, ValidationError("Request body must be valid JSON.").to_body())

    status, out = dispatch(method, path, params, body, headers)
    return _json(status, out)


# ------------------ FastAPI ------------------
def create_app(services: Optional[Services] = None) -> FastAPI:
    api = FastAPI(title="cv-skills-chat")

    @api.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def _route(path: str, request: Request):
        raw = await request.body()
        body = _parse_body(raw.decode("utf-8", "ignore"), content_type=request.headers.get("content-type", ""))
        if body is None:
            return JSONResponse(status_code=400, content=ValidationError("Request body must be valid JSON.").to_body())
        status, out = await run_in_threadpool(
            dispatch, request.method, path, dict(request.query_params), body, dict(request.headers), services,
        )
        return JSONResponse(status_code=status, content=out)

    return api


IS_LAMBDA = bool(os.getenv("AWS_LAMBDA_FUNCTION_NAME"))
app = create_app() if not IS_LAMBDA else None
