"""
Farm API Endpoints

Gameplay calls for the open session of the requesting player. Gameplay
errors come back as 400 with a {code, message} detail and never change
state; a failed save does not fail the call (see `synced`).
"""

from fastapi import APIRouter, Depends, Query
import logging

from ..config.game_constants import BONUSES, CROPS, UNLOCKS
from ..core.errors import FarmError
from ..models.schemas import APIResponse, ExchangeDirection
from ..services.crop_engine import CropLifecycleEngine
from .deps import get_current_engine, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/farm",
    tags=["farm"]
)


@router.get("/state", response_model=APIResponse)
async def get_farm_state(engine: CropLifecycleEngine = Depends(get_current_engine)):
    """Every slot with its derived stage and remaining/ready status."""
    return APIResponse(
        success=True,
        message="Farm state retrieved",
        data=engine.get_display_state().model_dump(by_alias=True)
    )


@router.get("/catalog", response_model=APIResponse)
async def get_catalog():
    """Crops, research unlocks and onboarding bonuses (public)."""
    return APIResponse(
        success=True,
        message="Catalog retrieved",
        data={
            "crops": [
                {
                    "id": crop_id,
                    "name": crop["name"],
                    "seedCost": crop["seed_cost"],
                    "reward": crop["reward"],
                    "growthMs": crop["growth_ms"],
                    "requires": crop["requires"],
                }
                for crop_id, crop in CROPS.items()
            ],
            "unlocks": [{"id": unlock_id, **item} for unlock_id, item in UNLOCKS.items()],
            "bonuses": [{"id": bonus_id, **bonus} for bonus_id, bonus in BONUSES.items()],
        }
    )


@router.post("/plant", response_model=APIResponse)
async def plant_crop(
    slot: int,
    crop_type: str = "wheat",
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """Plant a crop in an empty slot."""
    try:
        crop = await engine.plant(slot, crop_type)
    except FarmError as e:
        logger.info(f"[Farm] Plant rejected for {engine.player_id}: {e.code}")
        raise to_http_exception(e)

    return APIResponse(
        success=True,
        message=f"Planted {crop_type} in slot {slot}",
        data={
            "crop": crop.model_dump(by_alias=True),
            "balances": engine.balances.model_dump(),
            "synced": engine.synced
        }
    )


@router.post("/harvest", response_model=APIResponse)
async def harvest_crop(
    slot: int,
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """Harvest a mature crop and credit its reward."""
    try:
        reward = await engine.harvest(slot)
    except FarmError as e:
        logger.info(f"[Farm] Harvest rejected for {engine.player_id}: {e.code}")
        raise to_http_exception(e)

    return APIResponse(
        success=True,
        message=f"Harvested slot {slot}",
        data={
            "credited": reward,
            "balances": engine.balances.model_dump(),
            "synced": engine.synced
        }
    )


@router.post("/unlock", response_model=APIResponse)
async def unlock_item(
    unlock_id: str,
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """Buy a research unlock (idempotent)."""
    try:
        newly_unlocked = await engine.unlock(unlock_id)
    except FarmError as e:
        raise to_http_exception(e)

    return APIResponse(
        success=True,
        message="Unlocked" if newly_unlocked else "Already unlocked",
        data={
            "unlocked": newly_unlocked,
            "unlockFlags": sorted(engine.unlock_flags),
            "balances": engine.balances.model_dump(),
            "synced": engine.synced
        }
    )


@router.post("/onboard", response_model=APIResponse)
async def complete_onboarding(
    bonus: str,
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """One-time bonus selection."""
    try:
        await engine.complete_onboarding(bonus)
    except FarmError as e:
        raise to_http_exception(e)

    return APIResponse(
        success=True,
        message=f"Bonus {bonus} selected",
        data={"bonus": engine.bonus, "hasOnboarded": engine.has_onboarded, "synced": engine.synced}
    )


@router.post("/exchange", response_model=APIResponse)
async def exchange_currency(
    direction: ExchangeDirection,
    amount: int,
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """Convert between primary and secondary currency."""
    try:
        balances = await engine.exchange(direction, amount)
    except FarmError as e:
        raise to_http_exception(e)

    return APIResponse(
        success=True,
        message="Exchange complete",
        data={"balances": balances.model_dump(), "synced": engine.synced}
    )


@router.get("/logs", response_model=APIResponse)
async def get_logs(
    limit: int = Query(50, ge=1, le=500),
    engine: CropLifecycleEngine = Depends(get_current_engine)
):
    """Recent human-readable status messages for this session."""
    return APIResponse(
        success=True,
        message="Logs retrieved",
        data={"logs": engine.events.recent(limit)}
    )
