# src/cvchat/core/session.py
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import jwt
import requests

from cvchat.core.errors import AuthenticationError, CVChatError

logger = logging.getLogger("cvchat.session")

SUBJECT = "cv-chat-session"


class TurnstileVerifier:
    """Checks a one-time challenge token against the siteverify endpoint."""

    def __init__(self, secret: str, verify_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.secret = secret
        self.verify_url = verify_url
        self.timeout = timeout
        self.http = session or requests.Session()

    def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        if not self.secret:
            raise CVChatError("challenge secret not configured")
        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip
        try:
            resp = self.http.post(self.verify_url, data=data, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("[session] siteverify failed: %s", e)
            return False
        if not body.get("success"):
            logger.info("[session] challenge rejected: %s", body.get("error-codes"))
            return False
        return True


class SessionIssuer:
    def __init__(
        self,
        secret: str,
        verifier: Any,
        ttl: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.verifier = verifier
        self.ttl = ttl
        self.clock = clock

    def issue(self, challenge: Optional[str], remote_ip: Optional[str] = None) -> Dict[str, Any]:
        if not challenge:
            raise AuthenticationError("A challenge token is required.")
        if not self.secret:
            raise CVChatError("session secret not configured")
        if not self.verifier.verify(challenge, remote_ip):
            raise AuthenticationError("Challenge verification failed. Please refresh and try again.")

        now = int(self.clock())
        exp = now + self.ttl
        payload = {"sub": SUBJECT, "iat": now, "exp": exp, "sid": secrets.token_hex(16)}
        token = jwt.encode(payload, self.secret, algorithm="HS256")
        logger.info("[session] issued sid=%s ttl=%ds", payload["sid"], self.ttl)
        return {
            "token": token,
            "expiresIn": self.ttl,
            "expiresAt": datetime.fromtimestamp(exp, tz=timezone.utc).isoformat(),
        }

    def verify(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise AuthenticationError("Session token required.")
        try:
            # exp is compared against self.clock below, not wall time
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                options={"require": ["exp", "sub"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as e:
            raise AuthenticationError("Session expired or invalid. Please start a new session.") from e
        if claims.get("sub") != SUBJECT or int(claims["exp"]) <= int(self.clock()):
            raise AuthenticationError("Session expired or invalid. Please start a new session.")
        return claims
