"""Webhook trigger endpoints.

Every endpoint authenticates the ``token`` query parameter, resolves
``server`` and answers 202 as soon as the job is started.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from updatectl.auth import require_webhook_token
from updatectl.errors import BadRequest
from updatectl.models.cleanup import CleanupProfile
from updatectl.models.jobs import Operation
from updatectl.models.server import Server
from updatectl.services.dispatcher import WebhookDispatcher, get_dispatcher

router = APIRouter(
    prefix="/webhook",
    tags=["webhook"],
    dependencies=[Depends(require_webhook_token)],
)


def _resolve(dispatcher: WebhookDispatcher, server: Optional[str]) -> Server:
    try:
        return dispatcher.resolve(server)
    except BadRequest as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _accepted(text: str) -> PlainTextResponse:
    return PlainTextResponse(text, status_code=status.HTTP_202_ACCEPTED)


@router.post("/update/os", status_code=status.HTTP_202_ACCEPTED)
async def update_os(
    server: Optional[str] = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PlainTextResponse:
    target = _resolve(dispatcher, server)
    dispatcher.submit(Operation.apply_os, target)
    return _accepted(f"OS update started for {target.name}")


@router.post("/update/docker/all", status_code=status.HTTP_202_ACCEPTED)
async def update_docker_all(
    server: Optional[str] = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PlainTextResponse:
    target = _resolve(dispatcher, server)
    dispatcher.submit(Operation.apply_docker, target)
    return _accepted(f"Docker update started for {target.name}")


@router.post("/update/docker/image", status_code=status.HTTP_202_ACCEPTED)
async def update_docker_image(
    server: Optional[str] = None,
    image: Optional[str] = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PlainTextResponse:
    target = _resolve(dispatcher, server)
    if not image or not image.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing image parameter",
        )
    dispatcher.submit(Operation.apply_docker, target, images=[image.strip()])
    return _accepted(f"Docker image {image.strip()} update started for {target.name}")


@router.post("/cleanup/safe", status_code=status.HTTP_202_ACCEPTED)
async def cleanup_safe(
    server: Optional[str] = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PlainTextResponse:
    target = _resolve(dispatcher, server)
    dispatcher.submit(
        Operation.cleanup, target, profile=CleanupProfile.conservative, execute=True,
    )
    return _accepted(f"Safe cleanup started for {target.name}")


@router.post("/cleanup/images/prune-unused", status_code=status.HTTP_202_ACCEPTED)
async def cleanup_prune_unused(
    server: Optional[str] = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PlainTextResponse:
    target = _resolve(dispatcher, server)
    dispatcher.submit(Operation.prune_unused_images, target)
    return _accepted(f"Unused image cleanup started for {target.name}")
