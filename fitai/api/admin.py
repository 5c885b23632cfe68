"""
Admin-only webhook dead-letter operations.
Requires X-Admin-Key header for all endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from fitai.core.admin_auth import require_admin_key
from fitai.features.billing.service import list_webhook_failures, replay_webhook_failures

logger = logging.getLogger("fitai")

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ReplayRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, description="Max pending failures to replay")


@router.get("/webhook-failures")
def get_webhook_failures(
    include_replayed: bool = Query(False),
    actor: str = Depends(require_admin_key),
):
    failures = list_webhook_failures(include_replayed=include_replayed)
    return {"failures": failures, "count": len(failures)}


@router.post("/webhook-failures/replay")
def replay_failures(body: Optional[ReplayRequest] = None, actor: str = Depends(require_admin_key)):
    result = replay_webhook_failures(limit=body.limit if body else None)
    logger.info(f"[admin] {actor} replayed webhook failures: {result}")
    return result
