"""Tests for the simulation manager and settings."""

import numpy as np
import pytest

from config.settings import Settings, SimulationConfig
from mind.memory import MemoryRecord
from mind.personality import Personality
from mind.simulation import SimulationManager, SimulationState
from mind.stimuli import Stimulus

START_MS = 1_700_000_000_000.0


@pytest.fixture
def manager():
    """A manager that steps only on demand."""
    return SimulationManager(config=SimulationConfig(max_workers=2, ms_per_step=1000, maintenance_interval=2))


def populate(manager, count=3):
    for i in range(count):
        manager.create_agent(Personality(f"npc{i}", traits={"curiosity": 0.8}), rng=np.random.default_rng(i))


class TestAgents:
    """Tests for managing the agent population."""

    def test_add_and_remove(self, manager):
        """Test adding and removing agents."""
        populate(manager, 2)

        assert set(manager.agents) == {"npc0", "npc1"}
        assert manager.remove_agent("npc0").name == "npc0"
        assert manager.remove_agent("npc0") is None

    def test_duplicate_names_rejected(self, manager):
        """Test that agent names are unique."""
        populate(manager, 1)

        with pytest.raises(ValueError):
            manager.create_agent(Personality("npc0"))

    def test_agents_run_on_game_time(self, manager):
        """Test that agents created by the manager use its clock."""
        populate(manager, 1)
        manager.game_time = START_MS

        memory_id = manager.agents["npc0"].remember("Saw the mayor")

        assert manager.agents["npc0"].memory.get(memory_id).timestamp == START_MS


class TestLifecycle:
    """Tests for starting, pausing and stopping."""

    @pytest.mark.asyncio
    async def test_step_requires_start(self, manager):
        """Test that stepping a stopped simulation fails."""
        with pytest.raises(RuntimeError):
            await manager.step_once()

    @pytest.mark.asyncio
    async def test_start_pause_resume_stop(self, manager):
        """Test the state machine."""
        events = []
        manager.add_update_callback(lambda event: events.append(event["type"]))

        simulation_id = await manager.start(simulation_name="Village", start_time=START_MS, run_loop=False)
        assert simulation_id.startswith("sim_")
        assert manager.state == SimulationState.RUNNING

        await manager.pause()
        assert manager.state == SimulationState.PAUSED
        await manager.resume()
        assert manager.state == SimulationState.RUNNING
        await manager.stop()
        assert manager.state == SimulationState.STOPPED

        assert events == ["simulation_started", "simulation_paused", "simulation_resumed", "simulation_stopped"]

    @pytest.mark.asyncio
    async def test_lifecycle_events_summarize_agents(self, manager):
        """Test that pause and resume events describe every agent."""
        events = []
        manager.add_update_callback(events.append)
        populate(manager, 2)
        manager.agents["npc1"].perceive(Stimulus(type="song", urgency="information"))

        await manager.start(start_time=START_MS, run_loop=False)
        try:
            await manager.pause()
            await manager.pause()
        finally:
            await manager.stop()

        paused = [e for e in events if e["type"] == "simulation_paused"]
        assert len(paused) == 1
        assert paused[0]["game_time"] == START_MS
        assert paused[0]["agents"]["npc0"] == {"awareness": 1.0, "focus": None, "pending_stimuli": 0}
        assert paused[0]["agents"]["npc1"]["pending_stimuli"] == 1

    @pytest.mark.asyncio
    async def test_start_with_personalities(self, manager):
        """Test that agents can be created on start."""
        await manager.start([Personality("ann"), Personality("bob")], start_time=START_MS, run_loop=False)
        try:
            assert set(manager.get_state()["agents"]) == {"ann", "bob"}
        finally:
            await manager.stop()

    def test_set_speed(self, manager):
        """Test that speed is clamped."""
        manager.set_speed(100)
        assert manager.speed == 10.0
        manager.set_speed(0)
        assert manager.speed == 0.1


class TestStep:
    """Tests for stepping the simulation."""

    @pytest.mark.asyncio
    async def test_step_ticks_every_agent(self, manager):
        """Test that one step advances time and ticks all agents."""
        populate(manager)
        await manager.start(start_time=START_MS, run_loop=False)
        try:
            update = await manager.step_once()
        finally:
            await manager.stop()

        assert update["step"] == 1
        assert update["game_time"] == START_MS + 1000
        assert set(update["agents"]) == {"npc0", "npc1", "npc2"}
        for agent in manager.agents.values():
            assert agent.controller.last_update == START_MS + 1000

    @pytest.mark.asyncio
    async def test_stimuli_are_processed(self, manager):
        """Test that perceived stimuli reach the agent's tick."""
        populate(manager, 1)
        manager.agents["npc0"].perceive(Stimulus(type="attack", urgency="threat", emotional={"fear": 0.9}))
        await manager.start(start_time=START_MS, run_loop=False)
        try:
            update = await manager.step_once()
        finally:
            await manager.stop()

        assert update["agents"]["npc0"]["focus"] == "attack"

    @pytest.mark.asyncio
    async def test_failing_agent_is_isolated(self, manager, monkeypatch):
        """Test that one agent's failure does not stop the others."""
        populate(manager, 2)

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(manager.agents["npc0"], "tick", explode)
        await manager.start(start_time=START_MS, run_loop=False)
        try:
            update = await manager.step_once()
        finally:
            await manager.stop()

        assert update["agents"]["npc0"] == {"error": "boom"}
        assert "behaviors" in update["agents"]["npc1"]

    @pytest.mark.asyncio
    async def test_maintenance_runs_on_interval(self, manager):
        """Test that forgetting and consolidation sweep every few steps."""
        populate(manager, 1)
        agent = manager.agents["npc0"]
        manager.game_time = START_MS
        faint = agent.memory.store(MemoryRecord(content="faint", importance=0.0, strength=0.05))
        await manager.start(run_loop=False)
        try:
            first = await manager.step_once()
            second = await manager.step_once()
        finally:
            await manager.stop()

        assert first["maintenance"] is None
        assert second["maintenance"]["npc0"]["forgotten"] == 1
        assert faint not in agent.memory

    @pytest.mark.asyncio
    async def test_callbacks_receive_steps(self, manager):
        """Test that update callbacks see every step and failures are contained."""
        steps = []
        manager.add_update_callback(lambda event: steps.append(event.get("step")))
        manager.add_update_callback(lambda event: 1 / 0)
        populate(manager, 1)

        await manager.start(start_time=START_MS, run_loop=False)
        try:
            await manager.step_once()
            await manager.step_once()
        finally:
            await manager.stop()

        assert 1 in steps and 2 in steps

    @pytest.mark.asyncio
    async def test_get_state(self, manager):
        """Test the state summary."""
        populate(manager, 1)
        await manager.start(simulation_name="Village", start_time=START_MS, run_loop=False)
        try:
            await manager.step_once()
            state = manager.get_state()
        finally:
            await manager.stop()

        assert state["simulation_name"] == "Village"
        assert state["step"] == 1
        assert state["agents"]["npc0"]["name"] == "npc0"


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        """Test default tunables."""
        settings = Settings()

        assert settings.memory.forgetting_rate == 0.001
        assert settings.emergence.emergence_threshold == 0.5
        assert settings.attention.attention_span == 7

    def test_environment_overrides(self, monkeypatch):
        """Test nested overrides from environment variables."""
        monkeypatch.setenv("NPC_MEMORY__FORGETTING_RATE", "0.002")
        monkeypatch.setenv("NPC_LOG_LEVEL", "WARNING")

        settings = Settings()

        assert settings.memory.forgetting_rate == 0.002
        assert settings.log_level == "WARNING"
