"""
Save Snapshot Persistence

Load/save contract for the session snapshot:

    {users, fund, units: [{id, ownedCount}], stageIndex, prestigeLevel, competitorUsers}

- Missing fields fall back to their initial values.
- A payload that cannot be parsed or validated is a CorruptSnapshotError;
  the caller discards it and starts fresh.
- Saves overwrite the whole snapshot under a single key.

Stores only move opaque JSON strings around; encoding and validation live in
encode_snapshot / decode_snapshot.
"""

import json
import logging
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from catalog import FUNDING_STAGES, UNIT_CATALOG, FundingStage, UnitDefinition
from config import CONFIG
from state import EconomyState, default_unit_counts

logger = logging.getLogger(__name__)


class CorruptSnapshotError(ValueError):
    """Persisted snapshot could not be parsed or failed validation."""


# ---------- Snapshot Models ----------

class UnitCountModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    # Older saves stored whole unit objects with a "count" field
    owned_count: int = Field(
        0,
        ge=0,
        validation_alias=AliasChoices("ownedCount", "count", "owned_count"),
        serialization_alias="ownedCount",
    )


class SnapshotModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, allow_inf_nan=False)

    users: float = Field(0.0, ge=0)
    fund: float = Field(0.0, ge=0)
    units: Optional[List[UnitCountModel]] = None
    stage_index: int = Field(0, ge=0, alias="stageIndex")
    prestige_level: int = Field(0, ge=0, alias="prestigeLevel")
    competitor_users: float = Field(
        default_factory=lambda: CONFIG.competitor.initial_users,
        ge=0,
        alias="competitorUsers",
    )


def encode_snapshot(state: EconomyState, units: Sequence[UnitDefinition] = UNIT_CATALOG) -> str:
    """Serialize the full state. Units are written in catalog order."""
    model = SnapshotModel(
        users=state.users,
        fund=state.fund,
        units=[UnitCountModel(id=u.unit_id, owned_count=state.owned(u.unit_id)) for u in units],
        stage_index=state.stage_index,
        prestige_level=state.prestige_level,
        competitor_users=state.competitor_users,
    )
    return json.dumps(model.model_dump(by_alias=True))


def decode_snapshot(
    payload: str,
    units: Sequence[UnitDefinition] = UNIT_CATALOG,
    stages: Sequence[FundingStage] = FUNDING_STAGES,
) -> EconomyState:
    """
    Rebuild an EconomyState from a stored payload.

    Raises:
        CorruptSnapshotError: payload is not JSON, not an object, or fails validation
    """
    try:
        data = json.loads(payload)
    except (TypeError, json.JSONDecodeError) as e:
        raise CorruptSnapshotError(f"snapshot is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CorruptSnapshotError(f"snapshot must be a JSON object, got {type(data).__name__}")

    # null behaves like a missing field
    data = {k: v for k, v in data.items() if v is not None}

    try:
        model = SnapshotModel.model_validate(data)
    except ValidationError as e:
        raise CorruptSnapshotError(f"snapshot failed validation: {e}") from e

    if model.stage_index >= len(stages):
        raise CorruptSnapshotError(
            f"stageIndex {model.stage_index} is outside the {len(stages)}-stage table"
        )

    counts = default_unit_counts(units)
    for entry in model.units or []:
        # Units no longer in the catalog are dropped
        if entry.id in counts:
            counts[entry.id] = entry.owned_count

    return EconomyState(
        users=model.users,
        fund=model.fund,
        units=counts,
        stage_index=model.stage_index,
        prestige_level=model.prestige_level,
        competitor_users=model.competitor_users,
    )


# ---------- Stores ----------

class MemorySnapshotStore:
    """Keeps the last saved payload in memory. Used by tests and throwaway sessions."""

    def __init__(self, payload: Optional[str] = None):
        self.payload = payload
        self.save_count = 0

    def load(self) -> Optional[str]:
        return self.payload

    def save(self, payload: str) -> None:
        self.payload = payload
        self.save_count += 1

    def clear(self) -> None:
        self.payload = None


class SqliteSnapshotStore:
    """
    Keyed snapshot storage in a local sqlite file.

    An unopenable file never raises from the constructor: reads report it as
    CorruptSnapshotError and writes raise sqlite3.Error for the caller's
    best-effort save path.
    """

    def __init__(
        self,
        db_path: str = CONFIG.persistence.db_path,
        save_key: str = CONFIG.persistence.save_key,
    ):
        self.db_path = db_path
        self.save_key = save_key
        self.available = self.init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    @staticmethod
    def _create_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                save_key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    def init_db(self) -> bool:
        """Create the table. Returns False (and logs) if the file cannot be opened."""
        conn = None
        try:
            conn = self._connect()
            self._create_table(conn)
            conn.commit()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Save store {self.db_path} unavailable: {e}")
            return False
        finally:
            if conn:
                conn.close()

    def load(self) -> Optional[str]:
        conn = None
        try:
            conn = self._connect()
            row = conn.execute(
                "SELECT payload FROM snapshots WHERE save_key = ?", (self.save_key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise CorruptSnapshotError(f"could not read snapshot: {e}") from e
        finally:
            if conn:
                conn.close()
        return row[0] if row else None

    def save(self, payload: str) -> None:
        conn = None
        try:
            conn = self._connect()
            self._create_table(conn)
            conn.execute("""
                INSERT INTO snapshots (save_key, payload, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(save_key) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
            """, (self.save_key, payload))
            conn.commit()
        finally:
            if conn:
                conn.close()

    def clear(self) -> None:
        conn = None
        try:
            conn = self._connect()
            conn.execute("DELETE FROM snapshots WHERE save_key = ?", (self.save_key,))
            conn.commit()
        finally:
            if conn:
                conn.close()


class BackgroundSnapshotWriter:
    """
    Fire-and-forget wrapper around another store.

    Saves are queued on a single worker thread so they land in order and the
    simulation loop never waits on disk. A failed write is logged and dropped.
    """

    def __init__(self, store):
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapshot-writer")
        self._last: Optional[Future] = None
        self.closed = False

    def load(self) -> Optional[str]:
        return self.store.load()

    def save(self, payload: str) -> None:
        future = self._executor.submit(self.store.save, payload)
        future.add_done_callback(self._report_failure)
        self._last = future

    @staticmethod
    def _report_failure(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.warning(f"Snapshot save failed: {error}")

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued save has been attempted."""
        if self._last is not None:
            # Single worker: once the last save finishes, all earlier ones have too
            self._last.exception(timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.closed = True

    def clear(self) -> None:
        self.flush()
        self.store.clear()
