"""
Simulation Manager - coordinates NPC cognition ticks.

This module provides the SimulationManager class that owns the agents,
advances game time and runs every agent's tick in parallel on a worker
pool. A step finishes only when every agent has finished its tick, so
agents always observe each other's state from the same step.
"""

import asyncio
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable

import numpy as np

from config.settings import SimulationConfig, get_settings
from mind.agent import Agent
from mind.personality import Personality
from mind.utils import now_ms

logger = logging.getLogger(__name__)


class SimulationState(str, Enum):
    """Possible states of the simulation."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class SimulationManager:
    """
    Manager for a population of NPC agents.

    Handles:
    - Starting/stopping/pausing the simulation
    - Adding and removing agents
    - Running agent ticks concurrently with a per-step barrier
    - Periodic memory maintenance (forgetting and consolidation)
    - Notifying dialogue/animation collaborators through callbacks
    """

    def __init__(self, config: SimulationConfig | None = None) -> None:
        self.config = config or get_settings().simulation
        self.state = SimulationState.STOPPED
        self.agents: dict[str, Agent] = {}
        self.step = 0
        self.speed = self.config.speed  # Steps per second
        self.game_time: float = now_ms()

        self.simulation_id: str | None = None
        self.simulation_name: str | None = None

        # Callbacks for state changes
        self._on_update: list[Callable[[dict[str, Any]], None]] = []
        self._loop_task: asyncio.Task | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._cancel = threading.Event()

    def clock(self) -> float:
        """Current game time in epoch milliseconds."""
        return self.game_time

    def add_update_callback(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Add a callback to be called on state updates."""
        self._on_update.append(callback)

    def remove_update_callback(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Remove an update callback."""
        if callback in self._on_update:
            self._on_update.remove(callback)

    # Agents

    def create_agent(self, personality: Personality, rng: np.random.Generator | None = None) -> Agent:
        """Create an agent that runs on game time and add it to the simulation."""
        agent = Agent(personality, rng=rng, clock=self.clock)
        self.add_agent(agent)
        return agent

    def add_agent(self, agent: Agent) -> None:
        if agent.name in self.agents:
            raise ValueError(f"Agent '{agent.name}' already exists")
        self.agents[agent.name] = agent
        logger.info(f"Added agent {agent.name}")

    def remove_agent(self, name: str) -> Agent | None:
        agent = self.agents.pop(name, None)
        if agent is not None:
            logger.info(f"Removed agent {name}")
        return agent

    # Lifecycle

    async def start(
        self,
        personalities: list[Personality] | None = None,
        simulation_name: str | None = None,
        start_time: float | None = None,
        run_loop: bool = True,
    ) -> str:
        """
        Start a new simulation.

        Args:
            personalities: Agents to create in addition to those already added.
            simulation_name: Optional name for this simulation.
            start_time: Starting game time in epoch milliseconds.
            run_loop: Whether to run steps in the background; when False,
                steps only happen through ``step_once``.

        Returns:
            Simulation ID.
        """
        if self.state != SimulationState.STOPPED:
            await self.stop()

        self.simulation_id = f"sim_{uuid.uuid4().hex[:8]}"
        self.simulation_name = simulation_name or f"Simulation {self.simulation_id}"

        for personality in personalities or []:
            self.create_agent(personality)

        if start_time is not None:
            self.game_time = start_time
        self.step = 0

        self._cancel.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="npc-tick",
        )
        self.state = SimulationState.RUNNING

        if run_loop:
            self._loop_task = asyncio.create_task(self._run_loop())

        await self._broadcast(self._lifecycle_event("simulation_started"))

        logger.info(f"Started simulation {self.simulation_id} with {len(self.agents)} agents")
        return self.simulation_id

    async def stop(self) -> None:
        """
        Stop the simulation.

        Ticks still running on the pool see the cancel flag before their
        write-back stage and hand their stimuli back to the agent's inbox.
        """
        self._cancel.set()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        self.state = SimulationState.STOPPED
        await self._broadcast(self._lifecycle_event("simulation_stopped"))
        logger.info(f"Stopped simulation {self.simulation_id} after {self.step} steps")

    async def pause(self) -> None:
        """Hold the background loop; agents keep their inboxes until resumed."""
        await self._transition(SimulationState.RUNNING, SimulationState.PAUSED, "simulation_paused")

    async def resume(self) -> None:
        await self._transition(SimulationState.PAUSED, SimulationState.RUNNING, "simulation_resumed")

    async def _transition(self, expected: SimulationState, target: SimulationState, event_type: str) -> None:
        if self.state != expected:
            return
        self.state = target
        await self._broadcast(self._lifecycle_event(event_type))
        logger.info(f"Simulation {self.simulation_id} {target.value} at step {self.step}")

    def _lifecycle_event(self, event_type: str) -> dict[str, Any]:
        """Event payload with a short summary of every agent."""
        return {
            "type": event_type,
            "simulation_id": self.simulation_id,
            "step": self.step,
            "game_time": self.game_time,
            "agents": {name: _summary(agent) for name, agent in self.agents.items()},
        }

    async def step_once(self) -> dict[str, Any]:
        """
        Advance by exactly one step, whether or not the background loop runs.

        Raises:
            RuntimeError: If the simulation has not been started.
        """
        if self.state == SimulationState.STOPPED:
            raise RuntimeError("Simulation is not started")
        return await self._execute_step()

    async def _run_loop(self) -> None:
        """Step every ``1 / speed`` seconds of wall time while not stopped."""
        logger.info(f"Tick loop for {self.simulation_id} started")
        while self.state != SimulationState.STOPPED:
            if self.state == SimulationState.RUNNING:
                try:
                    await self._execute_step()
                except Exception as e:
                    logger.error(f"Step {self.step} failed: {e}", exc_info=True)
            await asyncio.sleep(1.0 / self.speed)
        logger.info(f"Tick loop for {self.simulation_id} ended")

    async def _execute_step(self) -> dict[str, Any]:
        """Advance game time, tick every agent in parallel and wait for all of them."""
        self.step += 1
        self.game_time += self.config.ms_per_step
        now = self.game_time

        names = list(self.agents)
        results = await asyncio.gather(
            *(self._run_in_pool(self._process_agent, self.agents[name], now) for name in names),
            return_exceptions=True,
        )

        agent_updates: dict[str, dict[str, Any]] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Error processing agent {name}: {result}", exc_info=result)
                agent_updates[name] = {"error": str(result)}
            else:
                agent_updates[name] = result

        maintenance = None
        if self.config.maintenance_interval and self.step % self.config.maintenance_interval == 0:
            maintenance = await self.run_maintenance(now)

        state_update = {
            "type": "step",
            "step": self.step,
            "game_time": now,
            "agents": agent_updates,
            "maintenance": maintenance,
        }

        await self._broadcast(state_update)

        return state_update

    async def _run_in_pool(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _process_agent(self, agent: Agent, now: float) -> dict[str, Any]:
        """Run one agent's tick. Called on a worker thread."""
        result = agent.tick(now=now, cancel=self._cancel)
        if result is None:
            return {"cancelled": True}
        return {
            "focus": result.focus.stimulus.type if result.focus else None,
            "attention_level": result.attention_level,
            "awareness": result.awareness,
            "behaviors": [b.to_dict() for b in result.behaviors],
        }

    async def run_maintenance(self, now: float | None = None) -> dict[str, dict[str, int]]:
        """
        Run forgetting and consolidation sweeps for every agent in parallel.

        Returns:
            Per agent, the number of forgotten and consolidated memories.
        """
        now = self.game_time if now is None else now
        names = list(self.agents)
        results = await asyncio.gather(
            *(self._run_in_pool(self._maintain_agent, self.agents[name], now) for name in names),
            return_exceptions=True,
        )

        report: dict[str, dict[str, int]] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Error maintaining agent {name}: {result}", exc_info=result)
                continue
            report[name] = result

        logger.info(
            f"Maintenance at step {self.step}: "
            f"forgot {sum(r['forgotten'] for r in report.values())}, "
            f"consolidated {sum(r['consolidated'] for r in report.values())}"
        )
        return report

    def _maintain_agent(self, agent: Agent, now: float) -> dict[str, int]:
        forgotten = agent.memory.process_forgetting(now)
        consolidated = agent.memory.process_consolidation()
        return {"forgotten": len(forgotten), "consolidated": consolidated}

    async def _broadcast(self, event: dict[str, Any]) -> None:
        """Call every registered callback with an event."""
        for callback in self._on_update:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in update callback: {e}")

    def get_state(self) -> dict[str, Any]:
        """Get the current simulation state."""
        return {
            "simulation_id": self.simulation_id,
            "simulation_name": self.simulation_name,
            "state": self.state.value,
            "step": self.step,
            "game_time": self.game_time,
            "speed": self.speed,
            "agents": {name: agent.get_state() for name, agent in self.agents.items()},
        }

    def set_speed(self, speed: float) -> None:
        """Set the simulation speed (steps per second)."""
        self.speed = max(0.1, min(10.0, speed))


_manager: SimulationManager | None = None


def get_simulation_manager() -> SimulationManager:
    """Get the global simulation manager instance."""
    global _manager
    if _manager is None:
        _manager = SimulationManager()
    return _manager


def _summary(agent: Agent) -> dict[str, Any]:
    state = agent.get_state()
    return {key: state[key] for key in ("awareness", "focus", "pending_stimuli")}
