"""
Telegram WebApp initData verification.

The host client passes its signed launch parameters (initData) with each
request. The signature is an HMAC-SHA256 over the sorted key=value lines,
keyed with HMAC("WebAppData", bot_token).
"""
import hashlib
import hmac
import json
import time
from typing import Dict, Optional
from urllib.parse import parse_qsl

from ..core.errors import HostIdentityRejected
from ..models.schemas import HostUser


def _data_check_string(fields: Dict[str, str]) -> str:
    return "\n".join(f"{k}={fields[k]}" for k in sorted(fields.keys()))


def sign_init_data(fields: Dict[str, str], bot_token: str) -> str:
    """Compute the hash Telegram would attach to these fields."""
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    return hmac.new(secret_key, _data_check_string(fields).encode(), hashlib.sha256).hexdigest()


def validate_init_data(
    init_data: str,
    bot_token: str,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> Dict[str, str]:
    """
    Check the initData signature and freshness.

    Returns the decoded fields (user is still a JSON string) or raises
    HostIdentityRejected.
    """
    if not bot_token:
        raise HostIdentityRejected("bot token not configured")
    if not init_data or not init_data.strip():
        raise HostIdentityRejected("missing init_data")

    received_hash = None
    fields = {}
    for k, v in parse_qsl(init_data.strip(), keep_blank_values=True):
        if k == "hash":
            received_hash = v
            continue
        fields[k] = v
    if not received_hash:
        raise HostIdentityRejected("hash not found")

    computed = sign_init_data(fields, bot_token)
    if not hmac.compare_digest(computed, received_hash):
        raise HostIdentityRejected("invalid signature")

    if max_age_seconds:
        try:
            auth_date = int(fields.get("auth_date", "0"))
        except ValueError:
            raise HostIdentityRejected("invalid auth_date")
        current = time.time() if now is None else now
        if current - auth_date > max_age_seconds:
            raise HostIdentityRejected("init_data expired")

    return fields


def host_user_from_init_data(fields: Dict[str, str]) -> Optional[HostUser]:
    """Extract the authenticated user from the user field (JSON)."""
    user_str = fields.get("user")
    if not user_str:
        return None
    try:
        user = json.loads(user_str)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if not isinstance(user, dict) or user.get("id") is None:
        return None

    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p)
    return HostUser(
        id=str(user["id"]),
        display_name=name or user.get("username"),
        locale=user.get("language_code"),
        premium=bool(user.get("is_premium", False)),
    )
