"""
Collaborators the Identity Resolver queries for one client session:
the host embedding environment and the client's persistent key/value
storage (cookies).
"""
from typing import Dict, Mapping, Optional, Tuple
import logging

from fastapi import Request, Response

from ..core.config import settings
from ..core.errors import HostIdentityRejected
from ..models.schemas import HostUser
from .telegram import validate_init_data, host_user_from_init_data

logger = logging.getLogger(__name__)

INIT_DATA_HEADERS = ("X-Telegram-Init-Data", "Init-Data")


class HostEnvironment:
    """
    The surrounding application that may supply an authenticated user.

    `embedded` is False when the session is not running inside the host at
    all; `lookup()` returns None while the host has not made the user
    available yet and raises HostIdentityRejected for unverifiable data.
    """

    embedded = False

    async def lookup(self) -> Optional[HostUser]:
        return None


class TelegramInitDataHost(HostEnvironment):
    """Host identity carried by a Telegram WebApp initData payload."""

    def __init__(self, init_data: Optional[str], bot_token: str, max_age_seconds: Optional[int] = None):
        self.init_data = (init_data or "").strip()
        self.bot_token = bot_token
        self.max_age_seconds = max_age_seconds
        self.embedded = bool(self.init_data)

    async def lookup(self) -> Optional[HostUser]:
        if not self.embedded:
            return None
        fields = validate_init_data(self.init_data, self.bot_token, self.max_age_seconds)
        user = host_user_from_init_data(fields)
        if user is None:
            raise HostIdentityRejected("init_data carries no user")
        return user


def request_host(request: Request) -> TelegramInitDataHost:
    init_data = next((request.headers[h] for h in INIT_DATA_HEADERS if request.headers.get(h)), None)
    return TelegramInitDataHost(
        init_data,
        bot_token=settings.telegram_bot_token,
        max_age_seconds=settings.init_data_max_age_seconds,
    )


class ClientStorage:
    """Client-side string storage with expiry."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, max_age: int) -> None:
        raise NotImplementedError


class RequestCookieStorage(ClientStorage):
    """Reads cookies from the request; writes are applied to the response."""

    def __init__(self, cookies: Mapping[str, str]):
        self._cookies = dict(cookies)
        self.pending: Dict[str, Tuple[str, int]] = {}

    def get(self, key: str) -> Optional[str]:
        if key in self.pending:
            return self.pending[key][0]
        value = self._cookies.get(key)
        return value.strip() if value and value.strip() else None

    def set(self, key: str, value: str, max_age: int) -> None:
        self.pending[key] = (value, max_age)

    def apply(self, response: Response) -> None:
        for key, (value, max_age) in self.pending.items():
            response.set_cookie(key, value, max_age=max_age, httponly=True, samesite="lax")
            logger.info(f"[Identity] Stored {key} cookie")
