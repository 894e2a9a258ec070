from .host import (
    HostEnvironment,
    TelegramInitDataHost,
    ClientStorage,
    RequestCookieStorage,
    request_host,
)
from .telegram import validate_init_data, host_user_from_init_data, sign_init_data

__all__ = [
    "HostEnvironment",
    "TelegramInitDataHost",
    "ClientStorage",
    "RequestCookieStorage",
    "request_host",
    "validate_init_data",
    "host_user_from_init_data",
    "sign_init_data",
]
