"""
Error taxonomy for the farm core.

Gameplay errors are expected and leave state untouched. Identity and
persistence errors come from the collaborators (host, document store).
"""


class FarmError(Exception):
    """Base class for every error raised by the farm core."""

    code = "farm_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


# Gameplay errors
class GameplayError(FarmError):
    code = "gameplay_error"


class SlotOccupied(GameplayError):
    code = "slot_occupied"


class InsufficientFunds(GameplayError):
    code = "insufficient_funds"


class PoolLocked(GameplayError):
    code = "pool_locked"


class NoCropAtSlot(GameplayError):
    code = "no_crop_at_slot"


class NotReady(GameplayError):
    code = "not_ready"


class UnknownSlot(GameplayError):
    code = "unknown_slot"


class UnknownCrop(GameplayError):
    code = "unknown_crop"


class CropLocked(GameplayError):
    code = "crop_locked"


class UnknownUnlock(GameplayError):
    code = "unknown_unlock"


class UnknownBonus(GameplayError):
    code = "unknown_bonus"


class AlreadyOnboarded(GameplayError):
    code = "already_onboarded"


class InvalidAmount(GameplayError):
    code = "invalid_amount"


# Identity errors
class IdentityUnavailable(FarmError):
    """Session start cannot proceed; the caller must retry resolution."""

    code = "identity_unavailable"


class HostIdentityRejected(FarmError):
    """Host data was present but failed verification."""

    code = "host_identity_rejected"


class SessionNotStarted(FarmError):
    code = "session_not_started"


# Storage errors
class PersistenceFailure(FarmError):
    code = "persistence_failure"
