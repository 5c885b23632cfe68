"""
Admin authentication for operator endpoints.

Shared-secret X-Admin-Key header compared against settings.ADMIN_KEY.
With no ADMIN_KEY configured every admin request is refused.
"""
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Header

from fitai.core.config import settings
from fitai.core.errors import PermissionError

logger = logging.getLogger("fitai")


def require_admin_key(x_admin_key: Optional[str] = Header(None)) -> str:
    """FastAPI dependency. Returns a short, non-reversible actor id for logs."""
    expected = settings.ADMIN_KEY
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key.strip(), expected):
        logger.warning("[admin] invalid or missing X-Admin-Key")
        raise PermissionError("Invalid or missing X-Admin-Key header")
    return "admin:" + hashlib.sha256(expected.encode()).hexdigest()[:12]
