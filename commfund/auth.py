# commfund/auth.py
# -----------------------------------------------------------------------------
# Bearer auth for the admin API.
# A request is admitted by either a static token from API_TOKENS (full scope)
# or a JWT signed with JWT_SECRET whose scopes/role grant what the view needs.
# -----------------------------------------------------------------------------
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, List, Optional, Set, Tuple

import jwt
from flask import current_app, g, request
from werkzeug.exceptions import Unauthorized

log = logging.getLogger(__name__)

ADMIN_SCOPE = "donations:admin"


def _api_tokens() -> Set[str]:
    raw = current_app.config.get("API_TOKENS") or ()
    if isinstance(raw, str):
        raw = raw.split(",")
    return {str(t).strip() for t in raw if str(t).strip()}


def _bearer_token() -> Optional[str]:
    h = request.headers.get("Authorization", "")
    return h.split(" ", 1)[1].strip() if h.lower().startswith("bearer ") else None


def _token_scopes_from_claims(claims: Dict[str, Any]) -> Set[str]:
    """Collect scopes from the usual claim spellings, plus role=admin."""
    scopes: Set[str] = set()
    if isinstance(claims.get("scope"), str):
        scopes.update(claims["scope"].split())
    for key in ("scopes", "permissions"):
        if isinstance(claims.get(key), (list, tuple)):
            scopes.update(map(str, claims[key]))

    roles = claims.get("roles") if isinstance(claims.get("roles"), (list, tuple)) else [claims.get("role")]
    if "admin" in roles:
        scopes.add(ADMIN_SCOPE)
    return scopes


def _verify_bearer_token(tok: str) -> Tuple[str, Set[str]]:
    if tok in _api_tokens():
        return f"apikey:{tok[-4:]}", {"*"}

    cfg = current_app.config
    secret = str(cfg.get("JWT_SECRET") or "")
    if not secret:
        raise Unauthorized("Invalid bearer token.")

    audience = cfg.get("API_AUDIENCE") or None
    issuer = cfg.get("API_ISSUER") or None
    try:
        claims = jwt.decode(
            tok,
            key=secret,
            algorithms=[str(cfg.get("JWT_ALG") or "HS256")],
            audience=audience,
            issuer=issuer,
            options={"verify_aud": bool(audience), "verify_iss": bool(issuer)},
        )
    except jwt.PyJWTError as exc:
        log.info("auth: rejected bearer token (%s)", type(exc).__name__)
        raise Unauthorized("Invalid bearer token.") from exc
    return str(claims.get("sub", "jwt")), _token_scopes_from_claims(claims)


def require_bearer(scopes: Optional[List[str]] = None):
    """Reject the request with 401 unless a bearer token grants ``scopes``.

        @bp.post("/recompute")
        @require_bearer(scopes=["donations:admin"])
        def recompute(): ...
    """
    needed = set(scopes or [])

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            tok = _bearer_token()
            if not tok:
                raise Unauthorized("Missing bearer token.")

            subject, granted = _verify_bearer_token(tok)
            if needed and not (needed.issubset(granted) or "*" in granted):
                raise Unauthorized("Insufficient scope.")

            g.api_subject = subject
            g.api_scopes = granted
            return fn(*args, **kwargs)

        return wrapped

    return decorator
