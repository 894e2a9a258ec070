from fastapi import HTTPException, Request, status
import logging

from ..auth.host import RequestCookieStorage, request_host
from ..core.errors import (
    FarmError,
    GameplayError,
    IdentityUnavailable,
    PersistenceFailure,
    SessionNotStarted,
)
from ..db.database import get_document_store
from ..services.crop_engine import CropLifecycleEngine
from ..services.identity_resolver import IdentityResolver
from ..services.session_manager import session_manager

logger = logging.getLogger(__name__)


def to_http_exception(error: FarmError) -> HTTPException:
    if isinstance(error, GameplayError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, SessionNotStarted):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, IdentityUnavailable):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=error.to_detail())


def build_resolver(request: Request, storage: RequestCookieStorage) -> IdentityResolver:
    """Resolver for this request. A store that cannot be opened blocks identity."""
    try:
        store = get_document_store()
    except PersistenceFailure as e:
        logger.error(f"[Identity] Document store unavailable: {e.message}")
        raise IdentityUnavailable(f"Document store unavailable: {e.message}") from e
    return IdentityResolver(store, request_host(request), storage)


async def get_current_engine(request: Request) -> CropLifecycleEngine:
    """The open engine for the identity this request carries."""
    try:
        resolver = build_resolver(request, RequestCookieStorage(request.cookies))
        identity = await resolver.lookup_identity()
        if identity is None:
            raise SessionNotStarted("No player identity on this request")
        return session_manager.get(identity.player_id)
    except FarmError as e:
        raise to_http_exception(e)
