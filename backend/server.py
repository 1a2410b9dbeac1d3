import asyncio
import json
import logging
import sys
import os

# Add current directory to path so we can import backend modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from contextlib import asynccontextmanager
from typing import Any, Dict, Literal, Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import CONFIG, SimulationConfig
from economy import Economy
from persistence import BackgroundSnapshotWriter, SqliteSnapshotStore

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Stop ticking and drain queued saves before the process exits
    manager.shutdown()


app = FastAPI(title="Universal Base App Simulation", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CommandMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command: Literal["START", "STOP", "STATE", "POST", "PITCH", "BUY", "IPO"]
    unit_id: Optional[str] = Field(None, alias="unitId")


class SimulationManager:
    """
    Hosts one Economy and the periodic tick task.

    Ticks and commands both run on the event loop and neither awaits while
    mutating, so they can never interleave.
    """

    def __init__(self, store=None, config: SimulationConfig = CONFIG):
        self.economy: Optional[Economy] = None
        self.store = store
        self.config = config
        self.is_running = False
        self.active_websocket: Optional[WebSocket] = None
        self._task: Optional[asyncio.Task] = None

    def initialize(self):
        if self.store is None:
            persistence = self.config.persistence
            logger.info(f"Opening save store {persistence.db_path} (key {persistence.save_key})")
            self.store = BackgroundSnapshotWriter(
                SqliteSnapshotStore(persistence.db_path, persistence.save_key)
            )
        self.economy = Economy.load(self.store, config=self.config)
        logger.info("Economy initialized")

    def ensure_economy(self) -> Economy:
        if self.economy is None:
            self.initialize()
        return self.economy

    def start(self) -> bool:
        """Start ticking. Returns False if already running."""
        self.ensure_economy()
        if self.is_running and self._task is not None and not self._task.done():
            return False
        self.is_running = True
        self._task = asyncio.get_running_loop().create_task(self.run_loop())
        return True

    def stop(self) -> bool:
        """Stop ticking. Returns False if already stopped."""
        was_running = self.is_running
        self.is_running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        return was_running

    async def run_loop(self):
        logger.info("Starting simulation loop")
        loop = asyncio.get_running_loop()
        try:
            while self.is_running:
                start_time = loop.time()

                # Run one step
                result = self.economy.tick()

                if self.active_websocket:
                    await self.active_websocket.send_json({
                        "type": "TICK",
                        "stageAdvanced": result.stage_advanced,
                        "state": self.economy.view(),
                    })

                # Throttle to the configured cadence
                elapsed = loop.time() - start_time
                await asyncio.sleep(max(0.0, self.config.time.tick_seconds - elapsed))
        except asyncio.CancelledError:
            logger.info("Simulation loop stopped")
            raise
        except Exception as e:
            logger.error(f"Simulation loop error: {e}")
            self.is_running = False
            if self.active_websocket:
                await self.active_websocket.send_json({"type": "ERROR", "error": str(e)})

    def handle_command(self, message: CommandMessage) -> Dict[str, Any]:
        economy = self.ensure_economy()
        command = message.command

        if command == "START":
            return {"type": "STARTED", "changed": self.start()}
        if command == "STOP":
            return {"type": "STOPPED", "changed": self.stop()}
        if command == "STATE":
            return {"type": "STATE", "state": economy.view()}

        if command == "POST":
            result = economy.manual_post()
        elif command == "PITCH":
            result = economy.pitch_investors()
        elif command == "BUY":
            if not message.unit_id:
                return {"type": "ERROR", "error": "BUY requires unitId"}
            result = economy.purchase_unit(message.unit_id)
        else:
            result = economy.prestige_reset()

        return {"type": "RESULT", "command": command, "result": result.to_dict(), "state": economy.view()}

    def shutdown(self):
        self.stop()
        if isinstance(self.store, BackgroundSnapshotWriter):
            self.store.close()


manager = SimulationManager()


@app.get("/api/state")
async def latest_state():
    """Most recent state view."""
    return manager.ensure_economy().view()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager.ensure_economy()
    manager.active_websocket = websocket
    logger.info("WebSocket connected")

    await websocket.send_json({"type": "STATE", "state": manager.economy.view()})
    if manager.config.server.autostart:
        manager.start()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = CommandMessage.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                await websocket.send_json({"type": "ERROR", "error": f"Bad command: {e}"})
                continue

            await websocket.send_json(manager.handle_command(message))

    except WebSocketDisconnect:
        manager.stop()
        manager.active_websocket = None
        logger.info("Client disconnected")
