"""
Static Progression Tables

Defines the three immutable tables the engine reads from:

- UNIT_CATALOG: purchasable production units (owned counts live on EconomyState)
- FUNDING_STAGES: Fund thresholds that unlock a production multiplier
- SECTORS: cosmetic narrative milestones keyed on Fund and prestige

Tables are validated on import so a bad edit fails loudly instead of
producing a silently broken cost curve.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

UNIT_ROLES = ("creator", "developer", "miniapp", "ai")


@dataclass(frozen=True, slots=True)
class UnitDefinition:
    """
    A purchasable production unit.

    Price of the n-th copy is round(base_cost * scaling ** owned). The role
    is a display grouping only and never feeds a formula.
    """

    unit_id: str
    name: str
    role: str
    base_cost: float
    scaling: float  # price multiplier per owned copy, > 1
    base_production_rate: float  # users/sec per copy before growth bonus
    unlock_threshold: float = 0.0  # Fund needed before the unit can be bought

    def __post_init__(self):
        if self.role not in UNIT_ROLES:
            raise ValueError(f"role must be one of {UNIT_ROLES}, got {self.role!r}")
        if self.base_cost <= 0:
            raise ValueError(f"base_cost must be positive, got {self.base_cost}")
        if self.scaling <= 1.0:
            raise ValueError(f"scaling must be > 1, got {self.scaling}")
        # Each step must add at least one whole Fund, otherwise rounding can flatten the curve
        if self.base_cost * (self.scaling - 1.0) < 1.0:
            raise ValueError(
                f"base_cost * (scaling - 1) must be >= 1 for {self.unit_id}, "
                f"got {self.base_cost * (self.scaling - 1.0):.3f}"
            )
        if self.base_production_rate < 0:
            raise ValueError(f"base_production_rate cannot be negative, got {self.base_production_rate}")
        if self.unlock_threshold < 0:
            raise ValueError(f"unlock_threshold cannot be negative, got {self.unlock_threshold}")

    def cost(self, owned_count: int) -> int:
        """Price of the next copy given how many are already owned."""
        return unit_cost(self, owned_count)


@dataclass(frozen=True, slots=True)
class FundingStage:
    """A Fund threshold tier with its production multiplier."""

    stage_id: str
    name: str
    min_fund: float
    bonus: float


@dataclass(frozen=True, slots=True)
class Sector:
    """Narrative progress marker. Purely cosmetic."""

    sector_id: str
    name: str
    description: str
    requirement_fund: float
    requirement_prestige: int


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def unit_cost(unit: UnitDefinition, owned_count: int) -> int:
    if owned_count < 0:
        raise ValueError(f"owned_count cannot be negative, got {owned_count}")
    return round_half_up(unit.base_cost * math.pow(unit.scaling, owned_count))


def validate_stage_table(stages: Sequence[FundingStage]) -> None:
    """Stages must start at 0 Fund, ascend strictly, and never lower the bonus."""
    if not stages:
        raise ValueError("funding stage table cannot be empty")
    if stages[0].min_fund != 0:
        raise ValueError(f"lowest funding stage must start at 0 Fund, got {stages[0].min_fund}")
    previous: Optional[FundingStage] = None
    for stage in stages:
        if stage.bonus < 1.0:
            raise ValueError(f"stage {stage.stage_id} bonus must be >= 1, got {stage.bonus}")
        if previous is not None:
            if stage.min_fund <= previous.min_fund:
                raise ValueError(f"stage {stage.stage_id} min_fund must ascend strictly")
            if stage.bonus < previous.bonus:
                raise ValueError(f"stage {stage.stage_id} bonus must not decrease")
        previous = stage


def validate_sector_table(sectors: Sequence[Sector]) -> None:
    if not sectors:
        raise ValueError("sector table cannot be empty")
    for sector in sectors:
        if sector.requirement_fund < 0:
            raise ValueError(f"sector {sector.sector_id} requirement_fund cannot be negative")
        if sector.requirement_prestige < 0:
            raise ValueError(f"sector {sector.sector_id} requirement_prestige cannot be negative")


def validate_unit_catalog(units: Sequence[UnitDefinition]) -> None:
    seen = set()
    for unit in units:
        if unit.unit_id in seen:
            raise ValueError(f"duplicate unit id {unit.unit_id!r}")
        seen.add(unit.unit_id)


# ---- Default tables ----

FUNDING_STAGES: List[FundingStage] = [
    FundingStage("boot", "Bootstrapped", 0, 1.0),
    FundingStage("seed", "Seed Round", 1000, 1.2),
    FundingStage("seriesA", "Series A", 10000, 1.5),
    FundingStage("seriesB", "Series B", 100000, 2.0),
    FundingStage("unicorn", "Unicorn", 1000000, 3.0),
]

UNIT_CATALOG: List[UnitDefinition] = [
    UnitDefinition(
        unit_id="creator_junior",
        name="Creator Studio",
        role="creator",
        base_cost=40,
        scaling=1.12,
        base_production_rate=5,
        unlock_threshold=0,
    ),
    UnitDefinition(
        unit_id="dev_core",
        name="Developer Hub",
        role="developer",
        base_cost=300,
        scaling=1.15,
        base_production_rate=15,
        unlock_threshold=200,
    ),
    UnitDefinition(
        unit_id="miniapp_lab",
        name="Miniapp Factory",
        role="miniapp",
        base_cost=1200,
        scaling=1.17,
        base_production_rate=60,
        unlock_threshold=800,
    ),
    UnitDefinition(
        unit_id="ai_agent_swarm",
        name="AI Agent Lab",
        role="ai",
        base_cost=6000,
        scaling=1.2,
        base_production_rate=250,
        unlock_threshold=4000,
    ),
]

SECTORS: List[Sector] = [
    Sector(
        "local",
        "Base Community",
        "Start posting on Base. Find your first 1,000 believers.",
        0,
        0,
    ),
    Sector(
        "launchpad",
        "Startup Launch Pad",
        "Secure early funding and launch your first Base App.",
        1000,
        0,
    ),
    Sector(
        "network",
        "Base Network Expansion",
        "Multiple apps, thousands of users, devs joining daily.",
        10000,
        0,
    ),
    Sector(
        "empire",
        "Business Empire",
        "You're a category leader. Everything runs on your stack.",
        50000,
        1,
    ),
    Sector(
        "global",
        "Global Everything App",
        "IPO done. You compete with legacy giants worldwide.",
        200000,
        2,
    ),
    Sector(
        "universal",
        "Universal Baseverse",
        "Your app is the interface for the entire universe.",
        1000000,
        3,
    ),
]

validate_unit_catalog(UNIT_CATALOG)
validate_stage_table(FUNDING_STAGES)
validate_sector_table(SECTORS)

UNIT_LOOKUP: Dict[str, UnitDefinition] = {u.unit_id: u for u in UNIT_CATALOG}


def get_unit(unit_id: str) -> Optional[UnitDefinition]:
    return UNIT_LOOKUP.get(unit_id)
