"""
HTTP service.

Endpoints:
- POST /simulate  body {"packetBuildRequest": {...}}
- GET  /health

Each request runs normalize -> compile -> orchestrate -> extract to
completion. Errors become {success: false, error, code, details?} bodies;
an unexpected exception fails only its own request.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from finplan_sim.config import ServiceConfig
from finplan_sim.core.errors import MissingInputError, SimulationServiceError
from finplan_sim.core.kernel import KernelHandle
from finplan_sim.core.orchestrator import SimulationOrchestrator, build_response
from finplan_sim.core.packet import compile_simulation_input, extract_params
from finplan_sim.core.tiers import blocked_outputs_for, load_tier_policy

logger = logging.getLogger(__name__)


def create_app(config: Optional[ServiceConfig] = None,
               kernel_handle: Optional[KernelHandle] = None) -> Flask:
    config = config or ServiceConfig()
    handle = kernel_handle or KernelHandle()
    tier_policy = load_tier_policy(config.tier_policy_path)
    if config.default_tier not in tier_policy["tiers"]:
        raise ValueError(
            f"default_tier {config.default_tier!r} is not defined in the tier policy "
            f"({', '.join(tier_policy['tiers'])})"
        )

    app = Flask(__name__)
    app.json.sort_keys = False
    CORS(app, origins="*", methods=["GET", "POST", "OPTIONS"])
    app.config["SERVICE_CONFIG"] = config
    app.extensions["kernel_handle"] = handle

    @app.errorhandler(SimulationServiceError)
    def handle_service_error(error: SimulationServiceError):
        log = logger.warning if error.http_status < 500 else logger.error
        log("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Simulation endpoint error")
        return jsonify({"success": False, "error": str(error), "code": "INTERNAL_ERROR"}), 500

    @app.get("/health")
    def health():
        state = handle.health()
        status = {
            "status": "ok" if state["engineLoaded"] else "degraded",
            "engineLoaded": state["engineLoaded"],
            "engineReady": state["engineReady"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if state["error"]:
            status["status"] = "error"
            status["error"] = state["error"]
        return jsonify(status), 200 if state["engineLoaded"] else 503

    @app.post("/simulate")
    def simulate():
        started = time.monotonic()
        kernel = handle.get()

        body = request.get_json(silent=True) or {}
        packet_request = body.get("packetBuildRequest") if isinstance(body, dict) else None
        if not packet_request:
            raise MissingInputError(
                "packetBuildRequest", "Missing packetBuildRequest in request body"
            )

        params = extract_params(packet_request, max_mc_paths=config.max_mc_paths)
        logger.info("Running simulation: %s", params.summary())
        if params.tax_config.enabled:
            logger.info(
                "taxConfig: %.0f%% effective rate (%s, %s)",
                params.tax_config.effective_rate * 100,
                params.tax_config.filing_status, params.tax_config.state,
            )

        sim_input = compile_simulation_input(params)
        outcome = SimulationOrchestrator(kernel).run(params, sim_input)
        blocked = blocked_outputs_for(params.data_tier, tier_policy, config.default_tier)
        response = build_response(outcome, blocked, started)

        logger.info(
            "Simulation complete in %dms (%s)", response["elapsedMs"],
            " -> ".join(p.value for p in outcome.phases),
        )
        return jsonify(response)

    return app
