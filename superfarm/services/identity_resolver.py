"""
Identity Resolver

Decides which player record a client session may read and mutate.

Precedence (first match wins):
1. Authenticated user from the host embedding environment
2. Anonymous token previously stored in client storage
3. Freshly generated anonymous token, stored with a long expiry

After resolution the player record is provisioned with create-if-absent
semantics, so a record created concurrently by another session is read
back instead of overwritten.
"""
import asyncio
import uuid
from typing import Awaitable, Callable, Optional, Tuple
import logging

from ..auth.host import ClientStorage, HostEnvironment
from ..core.config import settings
from ..core.errors import HostIdentityRejected, IdentityUnavailable, PersistenceFailure
from ..db.database import DocumentStore
from ..models.schemas import (
    Balances,
    HostUser,
    IdentitySource,
    PlayerRecord,
    ResolvedIdentity,
    SessionStart,
)

logger = logging.getLogger(__name__)


def new_anonymous_token() -> str:
    return str(uuid.uuid4())


def is_anonymous_token(token: str) -> bool:
    """True for tokens this resolver could have issued (uuid strings).

    Host player ids are numeric, so a stored value that is not a uuid can
    never address a host player's record.
    """
    try:
        return str(uuid.UUID(token)) == token
    except (ValueError, AttributeError, TypeError):
        return False


class IdentityResolver:
    """Resolves one client session to a player id. One instance per session."""

    def __init__(
        self,
        store: DocumentStore,
        host: HostEnvironment,
        client_storage: ClientStorage,
        cookie_name: Optional[str] = None,
        cookie_max_age: Optional[int] = None,
        lookup_attempts: Optional[int] = None,
        lookup_delay: Optional[float] = None,
        token_factory: Callable[[], str] = new_anonymous_token,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.host = host
        self.client_storage = client_storage
        self.cookie_name = cookie_name or settings.anonymous_cookie_name
        self.cookie_max_age = cookie_max_age or settings.anonymous_cookie_max_age
        self.lookup_attempts = lookup_attempts or settings.host_lookup_attempts
        self.lookup_delay = settings.host_lookup_delay if lookup_delay is None else lookup_delay
        self._token_factory = token_factory
        self._sleep = sleep

        self._identity: Optional[ResolvedIdentity] = None
        self._lock = asyncio.Lock()

    async def resolve_identity(self) -> ResolvedIdentity:
        """Resolve the session's player id. Repeated calls return the same result."""
        async with self._lock:
            if self._identity is None:
                self._identity = await self._resolve(allow_generate=True)
            return self._identity

    async def lookup_identity(self) -> Optional[ResolvedIdentity]:
        """Host identity or stored token only; never generates a token."""
        if self._identity is not None:
            return self._identity
        return await self._resolve(allow_generate=False)

    async def _resolve(self, allow_generate: bool) -> Optional[ResolvedIdentity]:
        host_user = await self._lookup_host()
        if host_user:
            logger.info(f"[Identity] Host user {host_user.id}")
            return ResolvedIdentity(
                player_id=host_user.id,
                source=IdentitySource.HOST_PLATFORM,
                host_user=host_user,
            )

        token = self.client_storage.get(self.cookie_name)
        if token and not is_anonymous_token(token):
            logger.warning(f"[Identity] Ignoring stored token that is not an anonymous id: {token!r}")
            token = None
        if token:
            logger.info(f"[Identity] Using stored anonymous token {token}")
            return ResolvedIdentity(player_id=token, source=IdentitySource.ANONYMOUS)

        if not allow_generate:
            return None

        token = self._token_factory()
        self.client_storage.set(self.cookie_name, token, self.cookie_max_age)
        logger.info(f"[Identity] Created new anonymous token {token}")
        return ResolvedIdentity(player_id=token, source=IdentitySource.ANONYMOUS, generated=True)

    async def _lookup_host(self) -> Optional[HostUser]:
        """
        Poll the host for an authenticated user with exponential backoff.

        Returns None when not embedded, when the host rejects its own data,
        or when the user never became available. Raises IdentityUnavailable
        when every lookup failed with an error, since falling back to an
        anonymous id would fork the player's progress.
        """
        last_error = None
        for attempt in range(self.lookup_attempts):
            if not self.host.embedded:
                return None
            try:
                user = await self.host.lookup()
            except HostIdentityRejected as e:
                logger.warning(f"[Identity] Host identity rejected: {e.message}")
                return None
            except Exception as e:
                logger.warning(f"[Identity] Host lookup {attempt + 1}/{self.lookup_attempts} failed: {e}")
                last_error = e
                user = None
            else:
                last_error = None

            if user:
                return user
            if attempt < self.lookup_attempts - 1:
                await self._sleep(self.lookup_delay * (2 ** attempt))

        if last_error is not None:
            raise IdentityUnavailable(f"Host environment unavailable: {last_error}")
        logger.info("[Identity] Host user not available, falling back to anonymous token")
        return None

    def _default_record(self, identity: ResolvedIdentity) -> PlayerRecord:
        host_user = identity.host_user
        return PlayerRecord(
            player_id=identity.player_id,
            identity_source=identity.source,
            balances=Balances(
                primary=settings.starting_primary,
                secondary=settings.starting_secondary,
            ),
            display_name=host_user.display_name if host_user else None,
            locale=host_user.locale if host_user else None,
        )

    async def provision(self, identity: ResolvedIdentity) -> Tuple[PlayerRecord, bool]:
        """Ensure the player record exists. Returns (record, created)."""
        default = self._default_record(identity)
        try:
            document, created = await asyncio.to_thread(
                self.store.create_if_absent, identity.player_id, default.to_document()
            )
        except PersistenceFailure as e:
            logger.error(f"[Identity] Provisioning {identity.player_id} failed: {e.message}")
            raise IdentityUnavailable(f"Player record unavailable: {e.message}") from e

        if created:
            logger.info(f"[Identity] Created player record {identity.player_id}")
        else:
            logger.info(f"[Identity] Found existing player record {identity.player_id}")
        return PlayerRecord.from_document(identity.player_id, document), created

    async def start_session(self) -> SessionStart:
        identity = await self.resolve_identity()
        record, created = await self.provision(identity)
        return SessionStart(identity=identity, record=record, created=created)
