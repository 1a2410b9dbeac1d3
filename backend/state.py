"""
Economy State and Derived Values

EconomyState is the single mutable record of a play session. Everything
else the UI shows (growth bonus, revenue per user, users/sec, market share,
current sector) is derived from it on demand by the pure functions below and
is never stored, so nothing can go stale.

Only TickEngine and ActionController (economy.py) mutate EconomyState.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from catalog import FUNDING_STAGES, SECTORS, UNIT_CATALOG, FundingStage, Sector, UnitDefinition
from config import CONFIG, CompetitorConfig, ProgressionConfig


def default_unit_counts(units: Sequence[UnitDefinition] = UNIT_CATALOG) -> Dict[str, int]:
    """Owned counts for a fresh catalog (every unit at zero)."""
    return {u.unit_id: 0 for u in units}


def _initial_competitor_users() -> float:
    return CONFIG.competitor.initial_users


@dataclass(slots=True)
class EconomyState:
    """
    Mutable simulation state.

    Invariants (checked on construction, preserved by the engine):
    - users, fund, competitor_users >= 0
    - owned counts are non-negative integers
    - stage_index and prestige_level are non-negative integers
    """

    users: float = 0.0
    fund: float = 0.0
    units: Dict[str, int] = field(default_factory=default_unit_counts)
    stage_index: int = 0
    prestige_level: int = 0
    competitor_users: float = field(default_factory=_initial_competitor_users)

    def __post_init__(self):
        if self.users < 0:
            raise ValueError(f"users cannot be negative, got {self.users}")
        if self.fund < 0:
            raise ValueError(f"fund cannot be negative, got {self.fund}")
        if self.competitor_users < 0:
            raise ValueError(f"competitor_users cannot be negative, got {self.competitor_users}")
        if self.stage_index < 0:
            raise ValueError(f"stage_index cannot be negative, got {self.stage_index}")
        if self.prestige_level < 0:
            raise ValueError(f"prestige_level cannot be negative, got {self.prestige_level}")
        for unit_id, count in self.units.items():
            if count < 0:
                raise ValueError(f"owned count for {unit_id} cannot be negative, got {count}")

    def owned(self, unit_id: str) -> int:
        return self.units.get(unit_id, 0)

    def copy(self) -> "EconomyState":
        """Detached copy for readers that must not observe later mutations."""
        return EconomyState(
            users=self.users,
            fund=self.fund,
            units=dict(self.units),
            stage_index=self.stage_index,
            prestige_level=self.prestige_level,
            competitor_users=self.competitor_users,
        )


# ---- Growth multiplier ----

def prestige_bonus(prestige_level: int, config: ProgressionConfig = CONFIG.progression) -> float:
    return 1.0 + prestige_level * config.prestige_bonus_per_level


def current_stage(state: EconomyState, stages: Sequence[FundingStage] = FUNDING_STAGES) -> FundingStage:
    return stages[state.stage_index]


def growth_bonus(
    state: EconomyState,
    stages: Sequence[FundingStage] = FUNDING_STAGES,
    config: ProgressionConfig = CONFIG.progression,
) -> float:
    """Stage bonus times prestige bonus. Applies to every production and manual yield."""
    return current_stage(state, stages).bonus * prestige_bonus(state.prestige_level, config)


def revenue_per_user(state: EconomyState, config: ProgressionConfig = CONFIG.progression) -> float:
    """Fund earned for each newly gained user."""
    return config.base_revenue_per_user * prestige_bonus(state.prestige_level, config)


def base_production_rate(state: EconomyState, units: Sequence[UnitDefinition] = UNIT_CATALOG) -> float:
    """Sum of owned * per-unit rate, before the growth bonus."""
    if not units:
        return 0.0
    counts = np.array([state.owned(u.unit_id) for u in units], dtype=np.float64)
    rates = np.array([u.base_production_rate for u in units], dtype=np.float64)
    return float(np.dot(counts, rates))


def production_rate(
    state: EconomyState,
    units: Sequence[UnitDefinition] = UNIT_CATALOG,
    stages: Sequence[FundingStage] = FUNDING_STAGES,
    config: ProgressionConfig = CONFIG.progression,
) -> float:
    """Users gained per tick from owned units."""
    return base_production_rate(state, units) * growth_bonus(state, stages, config)


def competitor_growth(state: EconomyState, config: CompetitorConfig = CONFIG.competitor) -> float:
    """Competitor users added every tick. Grows with the player's stage and prestige."""
    return (
        config.base_growth
        + state.stage_index * config.growth_per_stage
        + state.prestige_level * config.growth_per_prestige
    )


def market_share(state: EconomyState) -> float:
    """Player share of all users in the market, as a percentage."""
    total = state.users + state.competitor_users
    if total <= 0:
        return 0.0
    return state.users / total * 100.0


def can_ipo(state: EconomyState, config: ProgressionConfig = CONFIG.progression) -> bool:
    return state.fund >= config.ipo_min_fund and state.users >= config.ipo_min_users


# ---- Resolvers ----

def resolve_stage_index(fund: float, stages: Sequence[FundingStage] = FUNDING_STAGES) -> int:
    """Highest stage whose min_fund is met, scanning from the top down."""
    for index in range(len(stages) - 1, -1, -1):
        if fund >= stages[index].min_fund:
            return index
    return 0


def resolve_sector_index(
    fund: float,
    prestige_level: int,
    sectors: Sequence[Sector] = SECTORS,
) -> int:
    """
    Current narrative sector.

    Walks the table in order and keeps the last sector whose Fund and prestige
    requirements are both met. With non-monotonic requirement pairs this can
    land below a sector met earlier in the walk.
    """
    index = 0
    for i, sector in enumerate(sectors):
        if fund >= sector.requirement_fund and prestige_level >= sector.requirement_prestige:
            index = i
    return index


def sector_statuses(sector_index: int, sectors: Sequence[Sector] = SECTORS) -> List[str]:
    statuses = []
    for i in range(len(sectors)):
        if i < sector_index:
            statuses.append("completed")
        elif i == sector_index:
            statuses.append("active")
        else:
            statuses.append("locked")
    return statuses
