"""
Clerk identity resolution.

Handles:
- Session token (JWT) verification, networkless via CLERK_JWT_KEY or via JWKS
- Clerk Backend API user lookup (email address)
- FastAPI dependency that turns a request into an explicit Identity

Testing:
- Use set_jwks_provider_for_tests() to avoid JWKS network calls
- Pass an httpx client (e.g. with MockTransport) to fetch_clerk_user()
"""
import json
import logging
from typing import Dict, Any, Optional, Callable

import httpx
import jwt
from jwt.algorithms import RSAAlgorithm
from fastapi import Request

from fitai.core.config import settings
from fitai.core.errors import AuthenticationMissingError, UpstreamFailureError
from fitai.models.identity import Identity

logger = logging.getLogger("fitai")

USER_NOT_FOUND_MESSAGE = "User not found in Clerk."

# JWKS override (tests) and cache keyed by issuer/jwks_url
_jwks_provider_override: Optional[Callable[[str, str], Dict[str, Any]]] = None
_jwks_cache: Dict[str, Dict[str, Any]] = {}


def set_jwks_provider_for_tests(provider: Optional[Callable[[str, str], Dict[str, Any]]]) -> None:
    """Set or clear JWKS provider override for deterministic testing (no network)."""
    global _jwks_provider_override
    _jwks_provider_override = provider
    _jwks_cache.clear()


def _default_fetch_jwks(issuer: str, jwks_url: str) -> Dict[str, Any]:
    response = httpx.get(jwks_url, timeout=5)
    response.raise_for_status()
    return response.json()


def get_jwks(issuer: str, jwks_url: Optional[str] = None) -> Dict[str, Any]:
    """Fetch JWKS using override (tests) or default fetcher. Cached per issuer/url."""
    resolved_url = jwks_url or f"{issuer.rstrip('/')}/.well-known/jwks.json"
    cache_key = f"{issuer}|{resolved_url}"

    if cache_key in _jwks_cache:
        return _jwks_cache[cache_key]

    if _jwks_provider_override:
        jwks = _jwks_provider_override(issuer, resolved_url)
    else:
        jwks = _default_fetch_jwks(issuer, resolved_url)

    _jwks_cache[cache_key] = jwks
    return jwks


def _signing_key(token: str):
    # Env files often carry the PEM with escaped newlines
    if settings.CLERK_JWT_KEY:
        return settings.CLERK_JWT_KEY.replace("\\n", "\n")

    issuer = settings.CLERK_ISSUER
    jwks_url = settings.CLERK_JWKS_URL
    if not issuer and not jwks_url:
        raise jwt.PyJWTError("CLERK_JWT_KEY, CLERK_ISSUER or CLERK_JWKS_URL must be configured")

    jwks = get_jwks(issuer or "", jwks_url)

    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise jwt.PyJWTError("Token missing 'kid' in header")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return RSAAlgorithm.from_jwk(json.dumps(key))

    raise jwt.PyJWTError(f"Key ID '{kid}' not found in JWKS")


def verify_session_token(token: str) -> Dict[str, Any]:
    """
    Verify a Clerk session token and return its claims.

    Raises jwt.PyJWTError on an invalid, expired or unverifiable token.
    """
    return jwt.decode(
        token,
        _signing_key(token),
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=settings.CLERK_ISSUER,
        options={"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.CLERK_AUDIENCE)},
    )


def fetch_clerk_user(user_id: str, client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """
    Look up a user through the Clerk Backend API.

    Raises:
        AuthenticationMissingError: Clerk has no such user
        UpstreamFailureError: Clerk unreachable, misconfigured or erroring
    """
    if not settings.CLERK_SECRET_KEY:
        raise UpstreamFailureError("Identity provider is not configured.")

    url = f"{settings.CLERK_API_URL.rstrip('/')}/users/{user_id}"
    headers = {"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"}

    http = client or httpx.Client(timeout=10)
    try:
        response = http.get(url, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"[clerk] user lookup failed: {e}")
        raise UpstreamFailureError("Identity provider unavailable.") from e
    finally:
        if client is None:
            http.close()

    if response.status_code == 404:
        raise AuthenticationMissingError(USER_NOT_FOUND_MESSAGE)
    if response.status_code >= 400:
        logger.error(f"[clerk] user lookup returned HTTP {response.status_code}")
        raise UpstreamFailureError("Identity provider unavailable.")

    return response.json()


def primary_email(user: Dict[str, Any]) -> str:
    """Primary email of a Clerk user payload, else the first listed, else ""."""
    addresses = user.get("email_addresses") or []
    primary_id = user.get("primary_email_address_id")
    for address in addresses:
        if primary_id and address.get("id") == primary_id and address.get("email_address"):
            return address["email_address"]
    if addresses:
        return addresses[0].get("email_address") or ""
    return ""


def _session_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    # Same-origin browser requests carry the session in Clerk's cookie
    return request.cookies.get("__session")


def get_current_identity(request: Request) -> Identity:
    """
    Resolve the caller into an explicit Identity (FastAPI dependency).

    Raises:
        AuthenticationMissingError: No token, invalid token, or unknown user
        UpstreamFailureError: Clerk API failure
    """
    token = _session_token(request)
    if not token:
        raise AuthenticationMissingError(USER_NOT_FOUND_MESSAGE)

    try:
        claims = verify_session_token(token)
    except jwt.PyJWTError as e:
        logger.debug(f"Invalid session token: {e}")
        raise AuthenticationMissingError(USER_NOT_FOUND_MESSAGE)

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationMissingError(USER_NOT_FOUND_MESSAGE)

    user = fetch_clerk_user(user_id)
    return Identity(user_id=user_id, email=primary_email(user))
