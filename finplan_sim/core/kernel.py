"""Kernel client interface and lifecycle.

The orchestrator talks to a ``SimulationKernel``; it never imports an
engine directly. ``KernelHandle`` owns the one long-lived kernel instance:
it builds it exactly once, records whether that worked, and hands it out
to request handlers.
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional, Union

from finplan_sim.core import monte_carlo
from finplan_sim.core.errors import EngineUnavailableError, ReplayUnavailableError
from finplan_sim.core.packet.compiler import SimulationInput

logger = logging.getLogger(__name__)

KernelResult = Union[dict, str]


class SimulationKernel(ABC):
    """Compute kernel consumed by the orchestrator.

    Results may be returned as dicts or as JSON strings.
    """

    name = "kernel"

    @abstractmethod
    def run_monte_carlo(self, sim_input: SimulationInput, n_paths: int) -> KernelResult:
        """Run ``n_paths`` paths and return percentile statistics plus an exemplar path."""

    def run_deterministic_replay(self, sim_input: SimulationInput) -> KernelResult:
        """Replay the single path seeded by ``sim_input.config['randomSeed']``."""
        raise ReplayUnavailableError(f"{self.name} has no single-path replay entry point")


class LocalKernel(SimulationKernel):
    """In-process numpy engine."""

    name = "local-numpy"

    def __init__(self, market: Optional[monte_carlo.MarketAssumptions] = None):
        self.market = market or monte_carlo.MarketAssumptions()

    def run_monte_carlo(self, sim_input: SimulationInput, n_paths: int) -> dict:
        return monte_carlo.simulate_plan(sim_input.to_dict(), n_paths, self.market)

    def run_deterministic_replay(self, sim_input: SimulationInput) -> dict:
        return monte_carlo.replay_path(sim_input.to_dict(), self.market)


class KernelState(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class KernelHandle:
    """One-time, observable kernel initialization.

    ``initialize()`` runs the factory at most once, even when called from
    several threads; later calls return the same outcome. A failed
    initialization is recorded rather than raised so the service can keep
    answering health checks.
    """

    def __init__(self, factory: Callable[[], SimulationKernel] = LocalKernel):
        self._factory = factory
        self._lock = threading.Lock()
        self._kernel: Optional[SimulationKernel] = None
        self._state = KernelState.PENDING
        self._error: Optional[BaseException] = None

    @property
    def state(self) -> KernelState:
        return self._state

    @property
    def loaded(self) -> bool:
        return self._kernel is not None

    @property
    def ready(self) -> bool:
        return self._state is KernelState.READY

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def initialize(self) -> bool:
        with self._lock:
            if self._state is not KernelState.PENDING:
                return self.ready
            try:
                logger.info("Initializing simulation kernel")
                self._kernel = self._factory()
                self._state = KernelState.READY
                logger.info("Simulation kernel ready: %s", getattr(self._kernel, "name", "?"))
            except Exception as e:
                self._error = e
                self._state = KernelState.FAILED
                logger.exception("Kernel initialization failed")
            return self.ready

    def get(self) -> SimulationKernel:
        if self._kernel is None:
            details = str(self._error) if self._error else None
            raise EngineUnavailableError(details)
        return self._kernel

    def health(self) -> dict[str, Any]:
        return {
            "engineLoaded": self.loaded,
            "engineReady": self.ready,
            "error": str(self._error) if self._error else None,
        }
