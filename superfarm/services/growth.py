"""
Crop growth arithmetic.

Every function here is pure: stages, durations, rewards and slot pools are
derived from the static tables and the arguments only. The stage of a crop
is never read from storage; it is always recomputed from plantedAt,
cropType and the current time.
"""
from typing import Dict, Any, Optional

from ..config.game_constants import (
    CROPS,
    STAGE_COUNT,
    HARVESTABLE_STAGE,
    DEFAULT_POOL,
    PREMIUM_POOL,
    DEFAULT_SLOT_BASE,
    DEFAULT_SLOT_COUNT,
    PREMIUM_SLOT_BASE,
    PREMIUM_SLOT_COUNT,
    SPEED_BONUS_FACTOR,
    MORE_FARMS_FACTOR,
    HIGHER_PRICE_FACTOR,
)
from ..core.errors import UnknownCrop


def crop_info(crop_type: str) -> Dict[str, Any]:
    info = CROPS.get(crop_type)
    if info is None:
        raise UnknownCrop(f"Unknown crop type: {crop_type}")
    return info


def growth_duration(crop_type: str, bonus: Optional[str] = None) -> int:
    """Milliseconds from planting to the harvestable stage."""
    duration = crop_info(crop_type)["growth_ms"]
    if bonus == "speed":
        duration = int(duration * SPEED_BONUS_FACTOR)
    return duration


def harvest_reward(crop_type: str, bonus: Optional[str] = None) -> int:
    reward = crop_info(crop_type)["reward"]
    if bonus == "higher_price":
        reward = int(reward * HIGHER_PRICE_FACTOR)
    return reward


def compute_stage(planted_at: int, duration: int, now: int) -> int:
    """
    Growth stage 0..5 for a crop planted at `planted_at` (ms).

    Each of the five growing stages covers a fifth of the duration; once the
    full duration has elapsed the crop stays at the harvestable stage.
    Integer arithmetic keeps the stage boundaries exact.
    """
    elapsed = now - planted_at
    if elapsed <= 0:
        return 0
    if elapsed >= duration:
        return HARVESTABLE_STAGE
    return min(HARVESTABLE_STAGE, (STAGE_COUNT * elapsed) // duration)


def crop_stage(planted_at: int, crop_type: str, now: int, bonus: Optional[str] = None) -> int:
    return compute_stage(planted_at, growth_duration(crop_type, bonus), now)


def remaining_ms(planted_at: int, crop_type: str, now: int, bonus: Optional[str] = None) -> int:
    return max(0, planted_at + growth_duration(crop_type, bonus) - now)


def format_remaining(remaining: int) -> str:
    if remaining <= 0:
        return "Ready!"
    minutes = remaining // 60000
    seconds = (remaining % 60000) // 1000
    return f"{minutes}:{seconds:02d}"


# Slot pools
def slot_pool(slot: int) -> str:
    """Pool a slot belongs to, derived from the slot value alone."""
    return PREMIUM_POOL if slot >= PREMIUM_SLOT_BASE else DEFAULT_POOL


def pool_base(pool: str) -> int:
    return PREMIUM_SLOT_BASE if pool == PREMIUM_POOL else DEFAULT_SLOT_BASE


def pool_size(pool: str, bonus: Optional[str] = None) -> int:
    if pool == PREMIUM_POOL:
        return PREMIUM_SLOT_COUNT
    if bonus == "more_farms":
        return int(DEFAULT_SLOT_COUNT * MORE_FARMS_FACTOR)
    return DEFAULT_SLOT_COUNT


def is_valid_slot(slot: int, bonus: Optional[str] = None) -> bool:
    pool = slot_pool(slot)
    base = pool_base(pool)
    return base <= slot < base + pool_size(pool, bonus)
