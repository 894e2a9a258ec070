"""
Session API Router

Starts and ends gameplay sessions. Starting a session resolves the
player identity for the request, provisions the player record and opens
the player's crop engine.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
import logging

from ..auth.host import RequestCookieStorage
from ..core.errors import IdentityUnavailable
from ..models.schemas import APIResponse
from ..services.crop_engine import CropLifecycleEngine
from ..services.session_manager import session_manager
from .deps import build_resolver, get_current_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/session", tags=["session"])


@router.post("/start", response_model=APIResponse)
async def start_session(request: Request, response: Response):
    """
    Resolve identity (host user, stored token, or a new token) and open the farm.
    Identity failures block entry; the client should retry.
    """
    storage = RequestCookieStorage(request.cookies)

    try:
        resolver = build_resolver(request, storage)
        start = await resolver.start_session()
    except IdentityUnavailable as e:
        logger.error(f"[Session] Identity unavailable: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={**e.to_detail(), "retry": True}
        )

    storage.apply(response)
    engine = await session_manager.open(start)
    identity = start.identity

    return APIResponse(
        success=True,
        message="Created new player" if start.created else "Found existing player",
        data={
            "playerId": identity.player_id,
            "identitySource": identity.source.value,
            "created": start.created,
            "displayName": start.record.display_name,
            "state": engine.get_display_state().model_dump(by_alias=True)
        }
    )


@router.post("/end", response_model=APIResponse)
async def end_session(engine: CropLifecycleEngine = Depends(get_current_engine)):
    """Close the session and stop its stage ticker."""
    synced = engine.synced
    if not synced:
        synced = await engine.sync()
    await session_manager.close(engine.player_id)

    return APIResponse(
        success=True,
        message="Session ended",
        data={"playerId": engine.player_id, "synced": synced}
    )
