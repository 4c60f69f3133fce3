"""
Tests for the MC_RUN / REPLAY / DONE orchestration.
"""
import json
import time

import pytest

from finplan_sim.core.errors import (
    KernelComputationError,
    KernelPanicError,
    KernelParseError,
)
from finplan_sim.core.kernel import LocalKernel, SimulationKernel
from finplan_sim.core.orchestrator import Phase, SimulationOrchestrator, build_response
from finplan_sim.core.packet import compile_simulation_input, extract_params
from finplan_sim.core.tiers import blocked_outputs_for

MC_PAYLOAD = {
    "planProjection": {"summary": {"portfolioStats": {
        "p50FinalValue": 750_000.0,
        "successRate": 0.9,
        "exemplarPath": {"pathSeed": 31337, "pathIndex": 4, "terminalWealth": 749_000.0},
    }}},
}

REPLAY_RESULT = {
    "success": True,
    "simulationMode": "stochastic",
    "seed": 31337,
    "finalNetWorth": 749_000.0,
    "yearlyData": [{"year": 2025, "age": 60, "startNetWorth": 1000, "investmentGrowth": 50}],
    "eventTrace": [{"monthOffset": 0, "eventName": "Rent", "eventType": "EXPENSE", "amount": 10}],
    "monthlySnapshots": [{"monthOffset": 0, "netWorth": 1000}],
    "realizedPathVariables": [{"monthOffset": 0, "bndReturn": 0.001}],
}


class FakeKernel(SimulationKernel):
    """Records calls and returns canned results."""

    def __init__(self, mc=None, replay=None, mc_error=None, replay_error=None):
        self.mc = MC_PAYLOAD if mc is None else mc
        self.replay = REPLAY_RESULT if replay is None else replay
        self.mc_error = mc_error
        self.replay_error = replay_error
        self.mc_calls = []
        self.replay_calls = []

    def run_monte_carlo(self, sim_input, n_paths):
        self.mc_calls.append((sim_input, n_paths))
        if self.mc_error:
            raise self.mc_error
        return self.mc

    def run_deterministic_replay(self, sim_input):
        self.replay_calls.append(sim_input)
        if self.replay_error:
            raise self.replay_error
        return self.replay


class NoReplayKernel(FakeKernel):
    run_deterministic_replay = SimulationKernel.run_deterministic_replay


def run(kernel, **fields):
    request = {"seed": 42, "startYear": 2025, "investableAssets": 1_000_000,
               "annualSpending": 40_000, "currentAge": 60}
    request.update(fields)
    params = extract_params(request)
    outcome = SimulationOrchestrator(kernel).run(params, compile_simulation_input(params))
    return outcome, build_response(outcome, blocked_outputs_for(params.data_tier), time.monotonic())


@pytest.mark.unit
class TestScenarios:
    def test_explicit_path_seed_skips_monte_carlo(self):
        kernel = FakeKernel()
        outcome, response = run(kernel, pathSeed=777, mcPaths=500)
        assert kernel.mc_calls == []
        assert len(kernel.replay_calls) == 1
        assert kernel.replay_calls[0].random_seed == 777
        assert response["replayMode"] is True
        assert response["pathsRun"] == 1
        assert response["baseSeed"] == 777
        assert response["mc"] is None
        assert outcome.phases == [Phase.REPLAY, Phase.DONE]

    def test_summary_verbosity_never_replays(self):
        kernel = FakeKernel()
        outcome, response = run(kernel, mcPaths=50, verbosity="summary")
        assert len(kernel.mc_calls) == 1
        assert kernel.mc_calls[0][1] == 50
        assert kernel.replay_calls == []
        for key in ("annualSnapshots", "trace", "firstMonthEvents", "traceNote"):
            assert key not in response
        assert response["pathsRun"] == 50
        assert response["baseSeed"] == 42
        assert response["replayMode"] is False
        assert outcome.phases == [Phase.MC_RUN, Phase.DONE]

    def test_missing_exemplar_is_soft_failure(self):
        kernel = FakeKernel(mc={"mc": {"p50FinalValue": 1.0, "successRate": 0.5}})
        outcome, response = run(kernel)
        assert kernel.replay_calls == []
        assert response["success"] is True
        assert response["mc"]["successRate"] == 0.5
        assert response["mc"]["everBreachProbability"] == 0.5
        assert "No exemplarPath seed" in response["traceNote"]["message"]
        assert "pathSeed" in response["traceNote"]["workaround"]
        assert outcome.phases == [Phase.MC_RUN, Phase.DONE]

    def test_zero_paths_cannot_replay(self):
        outcome, response = run(LocalKernel(), mcPaths=0)
        assert "traceNote" in response
        assert "annualSnapshots" not in response


@pytest.mark.unit
class TestReplayContract:
    """Replay pins the exemplar seed and keeps the Monte Carlo mode."""

    def test_replay_uses_exemplar_seed_and_stochastic_mode(self):
        kernel = FakeKernel()
        run(kernel)
        (mc_input, _), = kernel.mc_calls
        (replay_input,) = kernel.replay_calls
        assert replay_input.config["randomSeed"] == 31337
        assert replay_input.config["simulationMode"] == "stochastic"
        assert replay_input.config["simulationMode"] == mc_input.config["simulationMode"]

    def test_reference_kernel_reproduces_exemplar(self):
        _, response = run(LocalKernel(), mcPaths=40, horizonMonths=60, verbosity="trace")
        exemplar = response["exemplarPath"]
        assert response["trace"]["seed"] == exemplar["pathSeed"]
        assert response["trace"]["finalNetWorth"] == pytest.approx(exemplar["terminalWealth"], rel=1e-9)


@pytest.mark.unit
class TestReplayFailures:
    def test_replay_exception(self):
        kernel = FakeKernel(replay_error=RuntimeError("index out of range"))
        outcome, response = run(kernel)
        assert response["success"] is True
        assert response["mc"]["finalNetWorthP50"] == 750_000.0
        note = response["traceNote"]
        assert note["message"] == "Trace replay failed: index out of range"
        assert note["exemplarPathSeed"] == 31337
        assert "annualSnapshots" not in response

    def test_replay_reports_failure(self):
        kernel = FakeKernel(replay={"success": False, "error": "bad input"})
        _, response = run(kernel)
        assert response["traceNote"]["message"] == "Trace replay failed: bad input"

    def test_replay_unavailable(self):
        _, response = run(NoReplayKernel())
        assert response["traceNote"]["message"].startswith("Trace replay failed:")
        assert response["traceNote"]["exemplarPathSeed"] == 31337


@pytest.mark.unit
class TestKernelErrors:
    def test_kernel_exception_is_panic(self):
        with pytest.raises(KernelPanicError) as exc:
            run(FakeKernel(mc_error=RuntimeError("boom")))
        assert exc.value.code == "ENGINE_PANIC"
        assert exc.value.details == "boom"

    def test_error_field(self):
        with pytest.raises(KernelComputationError) as exc:
            run(FakeKernel(mc={"error": "negative horizon"}))
        assert exc.value.code == "SIMULATION_ERROR"
        assert exc.value.message == "negative horizon"

    def test_unparsable_string(self):
        with pytest.raises(KernelParseError) as exc:
            run(FakeKernel(mc="{not json"))
        assert exc.value.code == "PARSE_ERROR"

    def test_unreadable_statistics(self):
        with pytest.raises(KernelParseError) as exc:
            run(FakeKernel(mc={"mc": {"successRate": "n/a", "p50FinalValue": 1.0}}))
        assert exc.value.code == "PARSE_ERROR"
        assert exc.value.http_status == 500

    def test_negative_success_rate(self):
        with pytest.raises(KernelParseError):
            run(FakeKernel(mc={"mc": {"successRate": -0.25, "p50FinalValue": 1.0}}))

    def test_unreadable_exemplar_seed(self):
        kernel = FakeKernel(mc={"mc": {"successRate": 0.5, "exemplarPath": {"pathSeed": "x"}}})
        with pytest.raises(KernelParseError):
            run(kernel)
        assert kernel.replay_calls == []

    def test_json_string_accepted(self):
        _, response = run(FakeKernel(mc=json.dumps(MC_PAYLOAD), replay=json.dumps(REPLAY_RESULT)))
        assert response["exemplarPath"]["pathSeed"] == 31337
        assert response["annualSnapshots"][0]["returnPct"] == 5.0


@pytest.mark.unit
class TestResponse:
    def test_annual_verbosity(self):
        _, response = run(FakeKernel())
        assert response["annualSnapshots"][0]["year"] == 2025
        assert response["firstMonthEvents"] == {60: [{"n": "Rent", "t": "EXPENSE", "d": 10, "cb": 0, "ca": 0}]}
        assert "trace" not in response
        assert "traceNote" not in response

    def test_trace_verbosity(self):
        _, response = run(FakeKernel(), verbosity="trace")
        trace = response["trace"]
        assert trace["monthCount"] == 1
        assert trace["marketReturns"][0]["bondReturn"] == 0.001

    def test_blocked_outputs_follow_tier(self):
        _, bronze = run(FakeKernel())
        _, gold = run(FakeKernel(), dataTier="gold")
        assert len(bronze["blockedOutputs"]) == 3
        assert gold["blockedOutputs"] == []

    def test_elapsed_ms(self):
        _, response = run(FakeKernel())
        assert response["elapsedMs"] >= 0
