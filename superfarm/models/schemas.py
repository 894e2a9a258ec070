from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Optional, Any, Set
from datetime import datetime, timezone
from enum import Enum
import logging

logger = logging.getLogger(__name__)


class IdentitySource(str, Enum):
    HOST_PLATFORM = "host_platform"
    ANONYMOUS = "anonymous"


class ExchangeDirection(str, Enum):
    PRIMARY_TO_SECONDARY = "primary_to_secondary"
    SECONDARY_TO_PRIMARY = "secondary_to_primary"


class CamelModel(BaseModel):
    """Stored documents use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(populate_by_name=True)


# Economy Models
class Balances(BaseModel):
    primary: int = Field(0, ge=0)
    secondary: int = Field(0, ge=0)


class CropRecord(CamelModel):
    slot: int
    crop_type: str = Field(alias="cropType")
    planted_at: int = Field(alias="plantedAt")  # epoch milliseconds
    stage: int = Field(0, ge=0, le=5)  # display snapshot only


class PlayerRecord(CamelModel):
    player_id: str = Field(alias="playerId")
    identity_source: IdentitySource = Field(alias="identitySource")
    balances: Balances = Balances()
    crops: List[CropRecord] = []
    unlock_flags: Set[str] = Field(default_factory=set, alias="unlockFlags")
    has_onboarded: bool = Field(False, alias="hasOnboarded")
    bonus: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    locale: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )

    @classmethod
    def from_document(cls, player_id: str, document: Dict[str, Any]) -> "PlayerRecord":
        """
        Build a record from a stored document.

        Accepts documents written by the earlier web client (silver/gold,
        hasSelectedCharacter, crops keyed by "type") and coerces loosely
        typed values the same way that client did on load.
        """
        from ..core.config import settings

        data = dict(document)
        data["playerId"] = player_id

        balances = data.get("balances")
        if not isinstance(balances, dict):
            balances = {
                "primary": _as_int(data.get("silver"), settings.starting_primary),
                "secondary": _as_int(data.get("gold"), settings.starting_secondary),
            }
        data["balances"] = {
            "primary": max(0, _as_int(balances.get("primary"), 0)),
            "secondary": max(0, _as_int(balances.get("secondary"), 0)),
        }

        if "hasOnboarded" not in data and "hasSelectedCharacter" in data:
            data["hasOnboarded"] = bool(data["hasSelectedCharacter"])

        if "identitySource" not in data:
            data["identitySource"] = (
                IdentitySource.HOST_PLATFORM if player_id.isdigit() else IdentitySource.ANONYMOUS
            )

        crops = []
        raw_crops = data.get("crops")
        for raw in raw_crops if isinstance(raw_crops, list) else []:
            if not isinstance(raw, dict):
                continue
            crop_type = raw.get("cropType") or raw.get("type")
            planted_at = raw.get("plantedAt")
            slot = raw.get("slot")
            if crop_type is None or planted_at is None or slot is None:
                logger.warning(f"[Store] Skipping malformed crop for {player_id}: {raw}")
                continue
            crops.append({
                "slot": _as_int(slot, 0),
                "cropType": str(crop_type).lower(),
                "plantedAt": _as_int(planted_at, 0),
                # Stored stage is never trusted; the engine recomputes it
                "stage": 0,
            })
        data["crops"] = crops

        flags = data.get("unlockFlags")
        data["unlockFlags"] = set(flags) if isinstance(flags, (list, tuple, set)) else set()

        if data.get("createdAt") is None:
            data.pop("createdAt", None)

        known = set(cls.model_fields) | {f.alias for f in cls.model_fields.values() if f.alias}
        return cls.model_validate({k: v for k, v in data.items() if k in known})

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump(by_alias=True, mode="json")
        document["unlockFlags"] = sorted(self.unlock_flags)
        return document


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return default
    return default


# Identity Models
class HostUser(BaseModel):
    """Authenticated user supplied by the host embedding environment."""

    id: str
    display_name: Optional[str] = None
    locale: Optional[str] = None
    premium: bool = False


class ResolvedIdentity(BaseModel):
    player_id: str
    source: IdentitySource
    host_user: Optional[HostUser] = None
    generated: bool = False


class SessionStart(BaseModel):
    identity: ResolvedIdentity
    record: PlayerRecord
    created: bool = False


# Display Models
class SlotView(CamelModel):
    slot: int
    pool: str
    locked: bool = False
    crop_type: Optional[str] = Field(None, alias="cropType")
    planted_at: Optional[int] = Field(None, alias="plantedAt")
    stage: Optional[int] = None
    ready: bool = False
    remaining_ms: Optional[int] = Field(None, alias="remainingMs")
    remaining_label: Optional[str] = Field(None, alias="remainingLabel")


class DisplayState(CamelModel):
    player_id: str = Field(alias="playerId")
    balances: Balances
    slots: List[SlotView]
    unlock_flags: List[str] = Field(alias="unlockFlags")
    has_onboarded: bool = Field(alias="hasOnboarded")
    bonus: Optional[str] = None
    synced: bool = True
    now: int


# API Response Models
class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None

