"""Webhook token authentication dependency."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, status

from updatectl.errors import Unauthorized
from updatectl.services.dispatcher import WebhookDispatcher, get_dispatcher


async def require_webhook_token(
    request: Request,
    token: Optional[str] = Query(default=None),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> None:
    """FastAPI dependency that enforces the ``token`` query parameter.

    An unset UPDATECTL_WEBHOOK_SECRET rejects every request.
    """
    request_id = getattr(request.state, "request_id", "-")
    try:
        dispatcher.authenticate(token, request_id)
    except Unauthorized as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
