"""
Simulation Configuration

Centralizes all tunable parameters for the progression simulation.
Formula constants, competitor growth, log capacity, persistence location
and tick cadence all live here instead of inside the engine code.

A handful of values can be overridden from the environment (or a .env file):
    UNIBASE_SAVE_DB       sqlite file holding the save snapshot
    UNIBASE_SAVE_KEY      key the snapshot is stored under
    UNIBASE_TICK_SECONDS  wall-clock seconds per simulation tick
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


@dataclass
class TimeConfig:
    """Time-related constants."""
    tick_seconds: float = field(
        default_factory=lambda: float(os.getenv("UNIBASE_TICK_SECONDS", "1.0"))
    )  # One tick = one second of wall time


@dataclass
class ProgressionConfig:
    """Player-side formula constants."""

    # Growth multiplier
    prestige_bonus_per_level: float = 0.5  # +50% growth per IPO
    base_revenue_per_user: float = 0.2  # Fund earned per user gained

    # Manual posting
    manual_post_users: float = 8.0

    # Pitching investors
    pitch_min_users: float = 10.0
    pitch_user_fraction: float = 0.05  # 5% of users, scaled by stage + prestige

    # IPO / prestige reset
    ipo_min_fund: float = 50000.0
    ipo_min_users: float = 5000.0


@dataclass
class CompetitorConfig:
    """Legacy-app competitor growth parameters."""
    initial_users: float = 2000.0
    base_growth: float = 15.0
    growth_per_stage: float = 10.0
    growth_per_prestige: float = 5.0

    # On IPO the competitor keeps part of its base and gets a fresh push
    ipo_retention: float = 0.6
    ipo_boost: float = 5000.0


@dataclass
class LogConfig:
    """Console log sink settings."""
    max_entries: int = 160
    time_format: str = "%H:%M:%S"


@dataclass
class PersistenceConfig:
    """Where the save snapshot lives."""
    db_path: str = field(default_factory=lambda: os.getenv("UNIBASE_SAVE_DB", "unibase_save.db"))
    save_key: str = field(default_factory=lambda: os.getenv("UNIBASE_SAVE_KEY", "universal_base_app_save_v2"))


@dataclass
class ServerConfig:
    """Host loop settings."""
    autostart: bool = False  # Start ticking as soon as a client connects


@dataclass
class SimulationConfig:
    """Master configuration for the entire simulation."""

    # Sub-configurations
    time: TimeConfig = field(default_factory=TimeConfig)
    progression: ProgressionConfig = field(default_factory=ProgressionConfig)
    competitor: CompetitorConfig = field(default_factory=CompetitorConfig)
    log: LogConfig = field(default_factory=LogConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def __post_init__(self):
        """Validation and derived values."""
        # Validate time parameters
        if self.time.tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")

        # Validate formula constants
        if self.progression.prestige_bonus_per_level < 0:
            raise ValueError("prestige_bonus_per_level cannot be negative")
        if self.progression.base_revenue_per_user < 0:
            raise ValueError("base_revenue_per_user cannot be negative")
        if self.progression.manual_post_users <= 0:
            raise ValueError("manual_post_users must be positive")
        if not (0.0 <= self.progression.pitch_user_fraction <= 1.0):
            raise ValueError("pitch_user_fraction must be in [0, 1]")

        # Competitor
        if self.competitor.initial_users < 0:
            raise ValueError("competitor initial_users cannot be negative")
        if not (0.0 <= self.competitor.ipo_retention <= 1.0):
            raise ValueError("competitor ipo_retention must be in [0, 1]")

        if self.log.max_entries <= 0:
            raise ValueError("log max_entries must be positive")


# Global configuration instance
CONFIG = SimulationConfig()
