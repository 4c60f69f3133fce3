"""Two-phase simulation orchestration.

    MC_RUN  --(summary verbosity)-------------------------------> DONE
    MC_RUN  --(exemplar seed)--> REPLAY --(ok / soft failure)--> DONE
    MC_RUN  --(no exemplar seed, soft failure)-----------------> DONE
    (pathSeed given) ----------> REPLAY -----------------------> DONE

Replay always runs in the same stochastic mode as the Monte Carlo paths,
with only the seed pinned; any other mode would not reproduce the exemplar.
Replay problems never fail the request: the Monte Carlo statistics are
returned with a ``traceNote`` instead.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from finplan_sim.core.errors import (
    KernelComputationError,
    KernelPanicError,
    KernelParseError,
    ReplayUnavailableError,
    SimulationServiceError,
)
from finplan_sim.core.kernel import SimulationKernel
from finplan_sim.core.packet.compiler import SimulationInput
from finplan_sim.core.packet.params import SimulationParams
from finplan_sim.core.stats import (
    ExemplarPathRef,
    MCStatistics,
    extract_mc_statistics,
    find_exemplar,
    locate_statistics,
    validate_statistics,
)
from finplan_sim.core.tiers import BlockedOutput
from finplan_sim.core.trace import (
    extract_annual_snapshots,
    extract_first_month_events,
    extract_trace_data,
)

logger = logging.getLogger(__name__)

NO_SEED_NOTE = "No exemplarPath seed available for replay"
NO_SEED_WORKAROUND = "Run with explicit pathSeed parameter or check MC paths > 0"
REPLAY_FAILED_WORKAROUND = "Re-run with pathSeed set to this seed for a full trace"


class Phase(Enum):
    MC_RUN = "MC_RUN"
    REPLAY = "REPLAY"
    DONE = "DONE"


@dataclass(frozen=True)
class TraceNote:
    message: str
    workaround: str
    exemplar_path_seed: Optional[int] = None

    def to_dict(self) -> dict:
        note = {"message": self.message}
        if self.exemplar_path_seed is not None:
            note["exemplarPathSeed"] = self.exemplar_path_seed
        note["workaround"] = self.workaround
        return note


@dataclass
class SimulationOutcome:
    """Everything the orchestrator learned about one request."""

    params: SimulationParams
    payload: Optional[dict] = None
    mc: Optional[MCStatistics] = None
    exemplar: Optional[ExemplarPathRef] = None
    replay_seed: Optional[int] = None
    replay: Optional[dict] = None
    trace_note: Optional[TraceNote] = None
    phases: List[Phase] = field(default_factory=list)

    @property
    def replay_mode(self) -> bool:
        return self.params.replay_mode

    @property
    def base_seed(self) -> int:
        return self.params.path_seed if self.replay_mode else self.params.seed

    @property
    def paths_run(self) -> int:
        return 1 if self.replay_mode else self.params.mc_paths


def parse_kernel_result(result: Any, what: str) -> dict:
    """Kernel results may be dicts or JSON strings."""
    if isinstance(result, str):
        try:
            result = json.loads(result)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse %s result: %s", what, e)
            raise KernelParseError(str(e)) from e
    if not isinstance(result, dict):
        raise KernelParseError(f"{what} returned {type(result).__name__}, expected an object")
    return result


class SimulationOrchestrator:
    """Runs the MC_RUN / REPLAY / DONE state machine against one kernel."""

    def __init__(self, kernel: SimulationKernel):
        self.kernel = kernel

    def run(self, params: SimulationParams, sim_input: SimulationInput) -> SimulationOutcome:
        outcome = SimulationOutcome(params=params)

        if params.replay_mode:
            logger.info("Direct replay mode: pathSeed=%s", params.path_seed)
            outcome.replay_seed = params.path_seed
        else:
            self._run_monte_carlo(outcome, sim_input)
            if params.verbosity == "summary":
                return self._done(outcome)
            if outcome.replay_seed is None:
                logger.warning("No seed available for replay, returning MC results only")
                outcome.trace_note = TraceNote(NO_SEED_NOTE, NO_SEED_WORKAROUND)
                return self._done(outcome)

        self._replay(outcome, sim_input)
        return self._done(outcome)

    def _run_monte_carlo(self, outcome: SimulationOutcome, sim_input: SimulationInput):
        outcome.phases.append(Phase.MC_RUN)
        params = outcome.params
        logger.info("Running Monte Carlo: seed=%s, paths=%d", params.seed, params.mc_paths)
        try:
            raw = self.kernel.run_monte_carlo(sim_input, params.mc_paths)
        except SimulationServiceError:
            raise
        except Exception as e:
            logger.exception("Kernel execution error")
            raise KernelPanicError(str(e)) from e

        payload = parse_kernel_result(raw, "Monte Carlo")
        if payload.get("error"):
            logger.error("Kernel returned error: %s", payload["error"])
            raise KernelComputationError(str(payload["error"]))

        outcome.payload = payload
        outcome.mc = extract_mc_statistics(payload)
        outcome.exemplar = (outcome.mc.exemplar_path if outcome.mc else None) or \
            find_exemplar(payload, locate_statistics(payload))
        outcome.replay_seed = outcome.exemplar.path_seed if outcome.exemplar else None

        missing = validate_statistics(outcome.mc)
        if missing:
            logger.warning("Statistics missing fields: %s", ", ".join(missing))

    def _replay(self, outcome: SimulationOutcome, sim_input: SimulationInput):
        outcome.phases.append(Phase.REPLAY)
        seed = outcome.replay_seed
        replay_input = sim_input.for_replay(seed)
        logger.info(
            "Replaying path: simulationMode=%s, randomSeed=%s",
            replay_input.simulation_mode, replay_input.random_seed,
        )

        error = None
        try:
            result = parse_kernel_result(
                self.kernel.run_deterministic_replay(replay_input), "replay"
            )
            if result.get("success"):
                outcome.replay = result
            else:
                error = result.get("error") or "Unknown trace error"
        except ReplayUnavailableError as e:
            error = e.message
        except Exception as e:
            logger.warning("Trace replay failed: %s", e)
            error = str(e)

        if error is not None:
            outcome.trace_note = TraceNote(
                f"Trace replay failed: {error}", REPLAY_FAILED_WORKAROUND, seed
            )

    @staticmethod
    def _done(outcome: SimulationOutcome) -> SimulationOutcome:
        outcome.phases.append(Phase.DONE)
        return outcome


def build_response(outcome: SimulationOutcome, blocked_outputs: List[BlockedOutput],
                   started_at: float) -> dict:
    """Turn an outcome into the /simulate response body."""
    params = outcome.params
    response = {
        "success": True,
        "payload": outcome.payload,
        "mc": outcome.mc.to_dict() if outcome.mc else None,
        "exemplarPath": outcome.exemplar.to_dict() if outcome.exemplar else None,
        "blockedOutputs": [b.to_dict() for b in blocked_outputs],
        "baseSeed": outcome.base_seed,
        "pathsRun": outcome.paths_run,
        "elapsedMs": int((time.monotonic() - started_at) * 1000),
        "replayMode": outcome.replay_mode,
    }

    if outcome.replay is not None:
        if params.verbosity in ("annual", "trace"):
            response["annualSnapshots"] = extract_annual_snapshots(
                outcome.replay, params.start_year, params.current_age
            )
            response["firstMonthEvents"] = extract_first_month_events(
                outcome.replay, params.current_age
            )
        if params.verbosity == "trace":
            response["trace"] = extract_trace_data(outcome.replay, outcome.replay_seed).to_dict()

    if outcome.trace_note is not None:
        response["traceNote"] = outcome.trace_note.to_dict()
    return response
