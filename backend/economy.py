"""
Progression Simulation Engine

This module implements the tick engine, the player command controller, and
the Economy coordinator that owns one session's state.

All state transitions are deterministic: the same state and the same command
sequence always produce the same result. Every mutation goes through
TickEngine or ActionController, each of which re-resolves the funding stage
after touching Fund. Economy saves a full snapshot after each mutation.

Command failures are ordinary outcomes, not exceptions: they come back as an
ActionResult with an ActionError and a WARN line in the console log.
"""

import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from catalog import (
    FUNDING_STAGES,
    SECTORS,
    UNIT_CATALOG,
    FundingStage,
    Sector,
    UnitDefinition,
    unit_cost,
)
from config import CONFIG, SimulationConfig
from event_log import EventLog, LogTag, format_number
from persistence import CorruptSnapshotError, decode_snapshot, encode_snapshot
from state import (
    EconomyState,
    can_ipo,
    competitor_growth,
    current_stage,
    growth_bonus,
    market_share,
    prestige_bonus,
    production_rate,
    resolve_sector_index,
    resolve_stage_index,
    revenue_per_user,
    sector_statuses,
)

logger = logging.getLogger(__name__)


class ActionError(str, Enum):
    INSUFFICIENT_USERS = "InsufficientUsers"
    NOT_UNLOCKED = "NotUnlocked"
    INSUFFICIENT_FUND = "InsufficientFund"
    IPO_REQUIREMENTS_NOT_MET = "IPORequirementsNotMet"
    UNKNOWN_UNIT = "UnknownUnit"
    CORRUPT_SNAPSHOT = "CorruptSnapshot"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a player command."""
    ok: bool
    message: str
    error: Optional[ActionError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error.value if self.error else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class TickResult:
    """What a single tick changed."""
    users_gained: float
    fund_gained: float
    competitor_gained: float
    stage_advanced: bool


def refresh_stage(
    state: EconomyState,
    log: EventLog,
    stages: Sequence[FundingStage] = FUNDING_STAGES,
) -> bool:
    """
    Re-derive the funding stage after a Fund change.

    The stored index always tracks Fund, so a purchase that dips Fund below a
    threshold drops the tier too. Only reaching a higher tier logs a
    milestone line; recomputing the same or a lower tier logs nothing.

    Returns:
        True if the stage advanced
    """
    previous = state.stage_index
    resolved = resolve_stage_index(state.fund, stages)
    state.stage_index = resolved
    if resolved <= previous:
        return False

    stage = stages[resolved]
    log.append(
        LogTag.FUND,
        f"Funding milestone reached → {stage.name} (bonus x{stage.bonus:.2f}).",
    )
    return True


class TickEngine:
    """Applies one second of passive production and competitor growth."""

    def __init__(
        self,
        log: EventLog,
        units: Sequence[UnitDefinition] = UNIT_CATALOG,
        stages: Sequence[FundingStage] = FUNDING_STAGES,
        config: SimulationConfig = CONFIG,
    ):
        self.log = log
        self.units = units
        self.stages = stages
        self.config = config

    def advance(self, state: EconomyState) -> TickResult:
        rate = production_rate(state, self.units, self.stages, self.config.progression)

        users_gained = 0.0
        fund_gained = 0.0
        if rate > 0:
            users_gained = rate
            fund_gained = rate * revenue_per_user(state, self.config.progression)
            state.users += users_gained
            state.fund += fund_gained

        # Competitor grows every tick, using the stage in force when the tick started
        competitor_gained = competitor_growth(state, self.config.competitor)
        state.competitor_users += competitor_gained

        advanced = refresh_stage(state, self.log, self.stages)
        return TickResult(users_gained, fund_gained, competitor_gained, advanced)


class ActionController:
    """
    Validates and applies discrete player commands.

    Each command logs exactly one line: a tagged success line, or a WARN line
    when validation fails (in which case state is untouched).
    """

    def __init__(
        self,
        log: EventLog,
        units: Sequence[UnitDefinition] = UNIT_CATALOG,
        stages: Sequence[FundingStage] = FUNDING_STAGES,
        config: SimulationConfig = CONFIG,
    ):
        self.log = log
        self.units = units
        self.unit_lookup: Dict[str, UnitDefinition] = {u.unit_id: u for u in units}
        self.stages = stages
        self.config = config

    def _fail(self, error: ActionError, message: str) -> ActionResult:
        self.log.append(LogTag.WARN, message)
        return ActionResult(ok=False, message=message, error=error)

    def _succeed(self, tag: LogTag, message: str) -> ActionResult:
        self.log.append(tag, message)
        return ActionResult(ok=True, message=message)

    def unit_cost(self, state: EconomyState, unit_id: str) -> int:
        return unit_cost(self.unit_lookup[unit_id], state.owned(unit_id))

    def manual_post(self, state: EconomyState) -> ActionResult:
        progression = self.config.progression
        gained = progression.manual_post_users * growth_bonus(state, self.stages, progression)
        state.users += gained
        state.fund += gained * revenue_per_user(state, progression)

        result = self._succeed(
            LogTag.POST,
            f"Baseposting hits. +{gained:.0f} users (total: {state.users:.0f}).",
        )
        refresh_stage(state, self.log, self.stages)
        return result

    def pitch_investors(self, state: EconomyState) -> ActionResult:
        progression = self.config.progression
        if state.users < progression.pitch_min_users:
            return self._fail(
                ActionError.INSUFFICIENT_USERS,
                f"Investors want to see at least {progression.pitch_min_users:.0f} users "
                f"before listening to your pitch.",
            )

        multiplier = progression.pitch_user_fraction * growth_bonus(state, self.stages, progression)
        raised = state.users * multiplier * revenue_per_user(state, progression)
        state.fund += raised

        result = self._succeed(
            LogTag.FUND,
            f"You pitch investors with {format_number(state.users)} users. "
            f"Raised ~{format_number(raised)} Fund.",
        )
        refresh_stage(state, self.log, self.stages)
        return result

    def purchase_unit(self, state: EconomyState, unit_id: str) -> ActionResult:
        unit = self.unit_lookup.get(unit_id)
        if unit is None:
            return self._fail(ActionError.UNKNOWN_UNIT, f"Unknown Base App unit {unit_id!r}.")

        # Unlock is checked before price: a locked unit reports the unlock gate
        if state.fund < unit.unlock_threshold:
            return self._fail(
                ActionError.NOT_UNLOCKED,
                f"{unit.name} unlocks at {format_number(unit.unlock_threshold)} Fund. Keep building.",
            )

        cost = unit_cost(unit, state.owned(unit_id))
        if state.fund < cost:
            return self._fail(
                ActionError.INSUFFICIENT_FUND,
                f"Not enough Fund to expand {unit.name}. Need {format_number(cost)} Fund.",
            )

        state.fund = max(0.0, state.fund - cost)
        state.units[unit_id] = state.owned(unit_id) + 1

        result = self._succeed(
            LogTag.APP,
            f"{unit.name} hired/launched. +{unit.base_production_rate:g} users/sec "
            f"(total units: {state.units[unit_id]}).",
        )
        refresh_stage(state, self.log, self.stages)
        return result

    def prestige_reset(self, state: EconomyState) -> ActionResult:
        progression = self.config.progression
        if not can_ipo(state, progression):
            return self._fail(
                ActionError.IPO_REQUIREMENTS_NOT_MET,
                f"IPO requires at least {progression.ipo_min_users:,.0f} users and "
                f"{progression.ipo_min_fund:,.0f} Fund. Keep building.",
            )

        competitor = self.config.competitor
        state.prestige_level += 1
        state.users = 0.0
        state.fund = 0.0
        for unit_id in state.units:
            state.units[unit_id] = 0
        state.stage_index = 0
        # Competitor is rescaled, not reset
        state.competitor_users = state.competitor_users * competitor.ipo_retention + competitor.ipo_boost

        return self._succeed(
            LogTag.RESET,
            f"IPO complete. Founder prestige increased to level {state.prestige_level}. "
            f"All apps reset, but your Base App grows faster forever.",
        )


class Economy:
    """
    Owns one play session: state, engines, log sink and snapshot store.

    This is the command surface the host calls. It is not thread-safe; the
    host must serialize ticks and commands (the server does this by running
    both on one event loop).
    """

    def __init__(
        self,
        state: Optional[EconomyState] = None,
        log: Optional[EventLog] = None,
        store=None,
        units: Sequence[UnitDefinition] = UNIT_CATALOG,
        stages: Sequence[FundingStage] = FUNDING_STAGES,
        sectors: Sequence[Sector] = SECTORS,
        config: SimulationConfig = CONFIG,
    ):
        """
        Args:
            state: Starting state (fresh defaults if omitted)
            log: Console log sink (a new one with boot lines if omitted)
            store: Snapshot store with load()/save(payload); None disables saving
            units, stages, sectors: Static tables
            config: Simulation configuration
        """
        self.state = state if state is not None else EconomyState(
            units={u.unit_id: 0 for u in units},
            competitor_users=config.competitor.initial_users,
        )
        self.log = log if log is not None else EventLog.with_boot_messages(max_entries=config.log.max_entries)
        self.store = store
        self.units = units
        self.stages = stages
        self.sectors = sectors
        self.config = config

        self.tick_engine = TickEngine(self.log, units, stages, config)
        self.actions = ActionController(self.log, units, stages, config)
        self.current_tick = 0
        # Outcome of Economy.load; None when no snapshot was involved
        self.load_result: Optional[ActionResult] = None

    @classmethod
    def load(
        cls,
        store,
        log: Optional[EventLog] = None,
        units: Sequence[UnitDefinition] = UNIT_CATALOG,
        stages: Sequence[FundingStage] = FUNDING_STAGES,
        sectors: Sequence[Sector] = SECTORS,
        config: SimulationConfig = CONFIG,
    ) -> "Economy":
        """
        Start a session from the store's snapshot, or from defaults.

        A corrupt snapshot is discarded with a WARN line and recorded on
        economy.load_result. A reload never logs a stage milestone, even when
        the saved Fund is past a threshold.
        """
        if log is None:
            log = EventLog.with_boot_messages(max_entries=config.log.max_entries)

        state = None
        load_result = None
        try:
            payload = store.load()
            if payload is not None:
                state = decode_snapshot(payload, units, stages)
        except CorruptSnapshotError as e:
            logger.warning(f"Discarding saved session: {e}")
            message = "Saved session could not be read. Starting a fresh Base App."
            log.append(LogTag.WARN, message)
            load_result = ActionResult(ok=False, message=message, error=ActionError.CORRUPT_SNAPSHOT)
            state = None

        economy = cls(state=state, log=log, store=store, units=units, stages=stages,
                      sectors=sectors, config=config)
        if state is not None:
            # Stage follows saved Fund, quietly
            state.stage_index = resolve_stage_index(state.fund, stages)
            message = "Previous Base App session loaded."
            log.append(LogTag.SYSTEM, message)
            load_result = ActionResult(ok=True, message=message)
        economy.load_result = load_result
        return economy

    @property
    def load_error(self) -> Optional[ActionError]:
        if self.load_result is None:
            return None
        return self.load_result.error

    # ---------- Command surface ----------

    def tick(self) -> TickResult:
        result = self.tick_engine.advance(self.state)
        self.current_tick += 1
        self.persist()
        return result

    def manual_post(self) -> ActionResult:
        return self._run(self.actions.manual_post)

    def pitch_investors(self) -> ActionResult:
        return self._run(self.actions.pitch_investors)

    def purchase_unit(self, unit_id: str) -> ActionResult:
        return self._run(self.actions.purchase_unit, unit_id)

    def prestige_reset(self) -> ActionResult:
        return self._run(self.actions.prestige_reset)

    def _run(self, command, *args) -> ActionResult:
        result = command(self.state, *args)
        if result.ok:
            self.persist()
        return result

    # ---------- Persistence ----------

    def persist(self) -> None:
        """Best-effort save of the full snapshot. Failures are logged, never raised."""
        if self.store is None:
            return
        try:
            self.store.save(encode_snapshot(self.state, self.units))
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Snapshot save failed: {e}")

    # ---------- Read-only views ----------

    def unit_cost(self, unit_id: str) -> int:
        return self.actions.unit_cost(self.state, unit_id)

    def sector_index(self) -> int:
        return resolve_sector_index(self.state.fund, self.state.prestige_level, self.sectors)

    def view(self) -> Dict[str, Any]:
        """Consistent read-only snapshot of state plus every derived readout."""
        state = self.state
        progression = self.config.progression
        stage = current_stage(state, self.stages)
        sector_idx = self.sector_index()

        units_view = []
        for u in self.units:
            owned = state.owned(u.unit_id)
            cost = unit_cost(u, owned)
            unlocked = state.fund >= u.unlock_threshold
            affordable = unlocked and state.fund >= cost
            units_view.append({
                "id": u.unit_id,
                "name": u.name,
                "role": u.role,
                "ownedCount": owned,
                "cost": cost,
                "usersPerSec": u.base_production_rate,
                "unlockFund": u.unlock_threshold,
                "unlocked": unlocked,
                "affordable": affordable,
                "status": "ok" if affordable else ("no" if unlocked else "locked"),
            })

        statuses = sector_statuses(sector_idx, self.sectors)
        sectors_view = [
            {
                "id": s.sector_id,
                "name": s.name,
                "description": s.description,
                "requirementFund": s.requirement_fund,
                "requirementPrestige": s.requirement_prestige,
                "status": statuses[i],
            }
            for i, s in enumerate(self.sectors)
        ]

        return {
            "tick": self.current_tick,
            "users": state.users,
            "fund": state.fund,
            "usersPerSec": production_rate(state, self.units, self.stages, progression),
            "marketShare": market_share(state),
            "competitorUsers": state.competitor_users,
            "stage": {
                "index": state.stage_index,
                "id": stage.stage_id,
                "name": stage.name,
                "bonus": stage.bonus,
            },
            "prestigeLevel": state.prestige_level,
            "prestigeBonus": prestige_bonus(state.prestige_level, progression),
            "growthBonus": growth_bonus(state, self.stages, progression),
            "revenuePerUser": revenue_per_user(state, progression),
            "canIpo": can_ipo(state, progression),
            "units": units_view,
            "sector": {
                "index": sector_idx,
                "id": self.sectors[sector_idx].sector_id,
                "name": self.sectors[sector_idx].name,
                "total": len(self.sectors),
            },
            "sectors": sectors_view,
            "load": self.load_result.to_dict() if self.load_result else None,
            "logs": self.log.lines,
        }
