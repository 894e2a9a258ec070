"""
Crop Lifecycle Engine

Owns the crop set and balances of one active session:
- Derives each crop's stage from elapsed wall-clock time (never stored as truth)
- Plant / harvest with slot-occupancy and balance invariants
- Research unlocks, the one-time onboarding bonus and currency exchange
- Merge-writes the economy sub-document after every state change

All state mutations happen synchronously before the first await, so the
event loop serializes operations within a session. Writes are
last-writer-wins across sessions.
"""
import asyncio
import time
from typing import Callable, Dict, List, Optional
import logging

from ..config.game_constants import (
    BONUSES,
    CROPS,
    DEFAULT_POOL,
    EXCHANGE_RATE,
    HARVESTABLE_STAGE,
    PREMIUM_POOL,
    PREMIUM_UNLOCK,
    UNLOCKS,
)
from ..core.errors import (
    AlreadyOnboarded,
    CropLocked,
    InsufficientFunds,
    InvalidAmount,
    NoCropAtSlot,
    NotReady,
    PersistenceFailure,
    PoolLocked,
    SessionNotStarted,
    SlotOccupied,
    UnknownBonus,
    UnknownSlot,
    UnknownUnlock,
)
from ..db.database import DocumentStore
from ..models.schemas import (
    Balances,
    CropRecord,
    DisplayState,
    ExchangeDirection,
    PlayerRecord,
    SlotView,
)
from .event_log import EventLog
from . import growth

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class CropLifecycleEngine:
    """In-memory crop and currency state for one player session."""

    def __init__(
        self,
        record: PlayerRecord,
        store: DocumentStore,
        clock: Callable[[], int] = now_ms,
        event_log: Optional[EventLog] = None,
    ):
        self.player_id = record.player_id
        self._store = store
        self._clock = clock
        self.events = event_log or EventLog()

        self.balances = record.balances.model_copy()
        self.unlock_flags = set(record.unlock_flags)
        self.has_onboarded = record.has_onboarded
        self.bonus = record.bonus

        self._crops: Dict[int, CropRecord] = {}
        for crop in record.crops:
            if crop.crop_type not in CROPS:
                logger.warning(
                    f"[Farm] Dropping crop with unknown type {crop.crop_type!r} "
                    f"at slot {crop.slot} for {self.player_id}"
                )
                continue
            if crop.slot in self._crops:
                logger.warning(f"[Farm] Duplicate crop at slot {crop.slot} for {self.player_id}, keeping first")
                continue
            self._crops[crop.slot] = crop.model_copy()

        self.synced = True
        self.closed = False
        self._write_lock = asyncio.Lock()

        self.tick()

    # Derived state
    @property
    def crops(self) -> List[CropRecord]:
        return [self._crops[slot].model_copy() for slot in sorted(self._crops)]

    def get_crop(self, slot: int) -> Optional[CropRecord]:
        crop = self._crops.get(slot)
        return crop.model_copy() if crop else None

    def stage_of(self, crop: CropRecord, now: Optional[int] = None) -> int:
        now = self._clock() if now is None else now
        return growth.crop_stage(crop.planted_at, crop.crop_type, now, self.bonus)

    def tick(self, now: Optional[int] = None) -> None:
        """Recompute the display stage of every crop. Never persists, never fails."""
        if self.closed:
            return
        now = self._clock() if now is None else now
        for crop in self._crops.values():
            crop.stage = self.stage_of(crop, now)

    def get_display_state(self, now: Optional[int] = None) -> DisplayState:
        now = self._clock() if now is None else now
        self.tick(now)

        slots = []
        for pool in (DEFAULT_POOL, PREMIUM_POOL):
            base = growth.pool_base(pool)
            slots.extend(range(base, base + growth.pool_size(pool, self.bonus)))
        # Crops left at slots outside the current pools stay visible
        slots.extend(slot for slot in self._crops if slot not in slots)

        views = []
        for slot in sorted(slots):
            pool = growth.slot_pool(slot)
            view = SlotView(slot=slot, pool=pool, locked=self._pool_locked(pool))
            crop = self._crops.get(slot)
            if crop:
                remaining = growth.remaining_ms(crop.planted_at, crop.crop_type, now, self.bonus)
                view.crop_type = crop.crop_type
                view.planted_at = crop.planted_at
                view.stage = crop.stage
                view.ready = crop.stage == HARVESTABLE_STAGE
                view.remaining_ms = remaining
                view.remaining_label = growth.format_remaining(remaining)
            views.append(view)

        return DisplayState(
            player_id=self.player_id,
            balances=self.balances.model_copy(),
            slots=views,
            unlock_flags=sorted(self.unlock_flags),
            has_onboarded=self.has_onboarded,
            bonus=self.bonus,
            synced=self.synced,
            now=now,
        )

    def _pool_locked(self, pool: str) -> bool:
        return pool == PREMIUM_POOL and PREMIUM_UNLOCK not in self.unlock_flags

    def _ensure_open(self):
        if self.closed:
            raise SessionNotStarted("Session has ended")

    # Crop operations
    async def plant(self, slot: int, crop_type: str) -> CropRecord:
        self._ensure_open()
        info = growth.crop_info(crop_type)

        if not growth.is_valid_slot(slot, self.bonus):
            raise UnknownSlot(f"Slot {slot} is not a planting position")
        if slot in self._crops:
            raise SlotOccupied(f"Slot {slot} is already planted")
        if self._pool_locked(growth.slot_pool(slot)):
            raise PoolLocked(f"Slot {slot} is in the locked premium field")
        if info["requires"] and info["requires"] not in self.unlock_flags:
            raise CropLocked(f"{info['name']} needs the {info['requires']} unlock")

        cost = info["seed_cost"]
        if self.balances.primary < cost:
            raise InsufficientFunds(
                f"Planting {info['name']} costs {cost}, balance is {self.balances.primary}"
            )

        crop = CropRecord(slot=slot, crop_type=crop_type, planted_at=self._clock(), stage=0)
        self.balances.primary -= cost
        self._crops[slot] = crop
        self.events.add(f"Planted {info['name']} in slot {slot} (-{cost})")

        await self._persist("plant")
        return crop.model_copy()

    async def harvest(self, slot: int) -> int:
        self._ensure_open()
        crop = self._crops.get(slot)
        if crop is None:
            raise NoCropAtSlot(f"Nothing is planted in slot {slot}")

        stage = self.stage_of(crop)
        if stage < HARVESTABLE_STAGE:
            raise NotReady(f"Crop in slot {slot} is at stage {stage}")

        reward = growth.harvest_reward(crop.crop_type, self.bonus)
        del self._crops[slot]
        self.balances.primary += reward
        self.events.add(f"Harvested {crop.crop_type} from slot {slot} (+{reward})")

        await self._persist("harvest")
        return reward

    # Research, onboarding and exchange
    async def unlock(self, unlock_id: str) -> bool:
        """Buy a research unlock. Returns False if it was already unlocked."""
        self._ensure_open()
        item = UNLOCKS.get(unlock_id)
        if item is None:
            raise UnknownUnlock(f"Unknown unlock: {unlock_id}")
        if unlock_id in self.unlock_flags:
            return False

        currency = item["currency"]
        balance = getattr(self.balances, currency)
        if balance < item["cost"]:
            raise InsufficientFunds(f"{item['name']} costs {item['cost']} {currency}, balance is {balance}")

        setattr(self.balances, currency, balance - item["cost"])
        self.unlock_flags.add(unlock_id)
        self.events.add(f"Unlocked {item['name']} (-{item['cost']} {currency})")

        await self._persist("unlock")
        return True

    async def complete_onboarding(self, bonus: str) -> None:
        self._ensure_open()
        if self.has_onboarded:
            raise AlreadyOnboarded("Bonus already selected")
        if bonus not in BONUSES:
            raise UnknownBonus(f"Unknown bonus: {bonus}")

        self.bonus = bonus
        self.has_onboarded = True
        self.tick()
        self.events.add(f"Selected bonus: {BONUSES[bonus]['name']}")

        await self._persist("onboarding")

    async def exchange(self, direction: ExchangeDirection, amount: int) -> Balances:
        self._ensure_open()
        direction = ExchangeDirection(direction)
        if amount <= 0:
            raise InvalidAmount("Amount must be positive")

        if direction == ExchangeDirection.PRIMARY_TO_SECONDARY:
            if amount % EXCHANGE_RATE:
                raise InvalidAmount(f"Amount must be a multiple of {EXCHANGE_RATE}")
            if self.balances.primary < amount:
                raise InsufficientFunds(f"Need {amount} primary, balance is {self.balances.primary}")
            self.balances.primary -= amount
            self.balances.secondary += amount // EXCHANGE_RATE
        else:
            if self.balances.secondary < amount:
                raise InsufficientFunds(f"Need {amount} secondary, balance is {self.balances.secondary}")
            self.balances.secondary -= amount
            self.balances.primary += amount * EXCHANGE_RATE

        self.events.add(f"Exchanged {amount} ({direction.value})")

        await self._persist("exchange")
        return self.balances.model_copy()

    # Persistence
    def economy_document(self) -> Dict:
        """The sub-document this engine owns inside the player record."""
        return {
            "balances": self.balances.model_dump(),
            "crops": [crop.model_dump(by_alias=True) for crop in self.crops],
            "unlockFlags": sorted(self.unlock_flags),
            "hasOnboarded": self.has_onboarded,
            "bonus": self.bonus,
        }

    async def _persist(self, reason: str) -> bool:
        """
        Merge-write the economy sub-document.

        A failure keeps the in-memory mutation; the engine stays unsynced
        until a later write succeeds.
        """
        async with self._write_lock:
            document = self.economy_document()
            try:
                await asyncio.to_thread(self._store.set, self.player_id, document, True)
            except PersistenceFailure as e:
                self.synced = False
                self.events.add(f"Save after {reason} failed: {e.message}", "WARNING")
                return False

            if not self.synced:
                self.events.add("Progress saved")
            self.synced = True
            return True

    async def sync(self) -> bool:
        """Write the current state even if nothing changed."""
        return await self._persist("sync")

    def close(self) -> None:
        self.closed = True
