"""
Tests for the websocket host

Tests cover:
- Command handling over the websocket
- Malformed command messages
- REST state endpoint
- Tick task start/stop idempotency
- App shutdown and unavailable save stores
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

import server
from config import PersistenceConfig, SimulationConfig, TimeConfig
from persistence import BackgroundSnapshotWriter, MemorySnapshotStore


@pytest.fixture
def client(monkeypatch):
    fresh = server.SimulationManager(store=MemorySnapshotStore())
    monkeypatch.setattr(server, "manager", fresh)
    return TestClient(server.app)


class TestWebsocketCommands:
    """Player commands through /ws"""

    def test_connect_sends_initial_state(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()
            assert message["type"] == "STATE"
            assert message["state"]["fund"] == 0
            assert message["state"]["competitorUsers"] == 2000
            assert message["state"]["load"] is None

    def test_post_command(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "POST"})
            reply = ws.receive_json()

            assert reply["type"] == "RESULT"
            assert reply["result"]["ok"] is True
            assert reply["state"]["users"] == 8

    def test_buy_without_fund_fails(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "BUY", "unitId": "creator_junior"})
            reply = ws.receive_json()

            assert reply["result"]["ok"] is False
            assert reply["result"]["error"] == "InsufficientFund"
            assert "[WARN]" in reply["state"]["logs"][-1]

    def test_buy_requires_unit_id(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "BUY"})
            assert ws.receive_json()["type"] == "ERROR"

    def test_bad_messages_get_error_reply(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "ERROR"
            ws.send_json({"command": "LAUNCH_ROCKET"})
            assert ws.receive_json()["type"] == "ERROR"

            # Connection stays usable
            ws.send_json({"command": "STATE"})
            assert ws.receive_json()["type"] == "STATE"

    def test_ipo_command_reports_requirements(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "IPO"})
            reply = ws.receive_json()
            assert reply["result"]["error"] == "IPORequirementsNotMet"


class TestRestState:
    """GET /api/state"""

    def test_state_endpoint(self, client):
        response = client.get("/api/state")
        assert response.status_code == 200
        body = response.json()
        assert body["stage"]["id"] == "boot"
        assert len(body["units"]) == 4


class TestTickTask:
    """Periodic tick lifecycle"""

    def test_start_and_stop_are_idempotent(self):
        config = SimulationConfig(time=TimeConfig(tick_seconds=0.01))
        store = MemorySnapshotStore()
        manager = server.SimulationManager(store=store, config=config)

        async def scenario():
            assert manager.start() is True
            assert manager.start() is False
            await asyncio.sleep(0.1)
            assert manager.stop() is True
            assert manager.stop() is False
            await asyncio.sleep(0)

        asyncio.run(scenario())

        assert manager.economy.current_tick >= 1
        assert store.save_count == manager.economy.current_tick
        # Competitor grew once per tick
        assert manager.economy.state.competitor_users == 2000 + 15 * manager.economy.current_tick

    def test_ticks_stop_after_stop(self):
        config = SimulationConfig(time=TimeConfig(tick_seconds=0.01))
        manager = server.SimulationManager(store=MemorySnapshotStore(), config=config)

        async def scenario():
            manager.start()
            await asyncio.sleep(0.05)
            manager.stop()
            await asyncio.sleep(0)
            frozen = manager.economy.current_tick
            await asyncio.sleep(0.05)
            return frozen

        frozen = asyncio.run(scenario())
        assert manager.economy.current_tick == frozen


class TestLifecycle:
    """App shutdown and save store failures"""

    def test_shutdown_drains_background_writer(self, monkeypatch):
        store = BackgroundSnapshotWriter(MemorySnapshotStore())
        monkeypatch.setattr(server, "manager", server.SimulationManager(store=store))

        with TestClient(server.app) as c:
            with c.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_json({"command": "POST"})
                ws.receive_json()

        assert store.closed is True
        assert store.store.save_count == 1

    def test_unopenable_save_path_still_serves(self, monkeypatch, tmp_path):
        config = SimulationConfig(
            persistence=PersistenceConfig(db_path=str(tmp_path / "missing" / "save.db"), save_key="slot")
        )
        monkeypatch.setattr(server, "manager", server.SimulationManager(config=config))

        with TestClient(server.app) as c:
            response = c.get("/api/state")

        assert response.status_code == 200
        body = response.json()
        assert body["fund"] == 0
        assert body["load"]["error"] == "CorruptSnapshot"
