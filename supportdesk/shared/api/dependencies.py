"""
Shared API Dependencies
=======================

Caller identity from request headers and a WebSocket bridge to the
broadcast hub.

Authentication happens in front of this service; the gateway forwards the
verified identity as X-User-* headers.
"""

import asyncio
from typing import Optional

from fastapi import Depends, Header, HTTPException, WebSocket, WebSocketDisconnect, status

from supportdesk.config import BusinessModel, SupportRole
from supportdesk.core import Actor
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.shared.infrastructure.notifications import BroadcastHub

logger = get_logger(__name__)


def _parse_enum(enum_cls, value: Optional[str], header: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header: {value}"
        )


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_business_model: Optional[str] = Header(None),
    x_tenant_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> Actor:
    """Build the calling Actor; 401 without a user id."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )

    return Actor(
        user_id=x_user_id,
        role=_parse_enum(SupportRole, x_user_role, "X-User-Role") or SupportRole.USER,
        business_model=_parse_enum(BusinessModel, x_business_model, "X-Business-Model"),
        tenant_id=x_tenant_id or None,
        email=x_user_email,
    )


async def require_staff(actor: Actor = Depends(get_actor)) -> Actor:
    """Only support staff (any role but USER)."""
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Support staff role required"
        )
    return actor


async def require_platform(actor: Actor = Depends(get_actor)) -> Actor:
    """Only platform-wide roles."""
    if not actor.is_platform:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin role required"
        )
    return actor


def require_scope(actor: Actor) -> BusinessModel:
    """The actor's business model; 400 when the caller sent none."""
    if actor.business_model is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Business-Model header"
        )
    return actor.business_model


async def _answer_pings(websocket: WebSocket) -> None:
    """Read client frames until disconnect, answering "ping"."""
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        return


async def stream_channel(websocket: WebSocket, hub: BroadcastHub, channel: str) -> None:
    """
    Forward every message published on a channel to an accepted WebSocket.

    Returns when the client disconnects.
    """
    async with hub.subscribe(channel) as queue:
        reader = asyncio.create_task(_answer_pings(websocket))
        logger.info("WebSocket subscribed", extra={"channel": channel})
        try:
            while not reader.done():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, reader}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break
                await websocket.send_json(getter.result())
        except WebSocketDisconnect:
            pass
        finally:
            reader.cancel()
            logger.info("WebSocket unsubscribed", extra={"channel": channel})
