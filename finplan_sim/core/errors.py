"""Error taxonomy for the simulation service.

Every error the request pipeline raises on purpose derives from
``SimulationServiceError`` and knows its wire ``code`` and HTTP status.
"""

from typing import Any, Dict, Optional


class SimulationServiceError(Exception):
    """Base class for errors that map onto an HTTP error body."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


# Validation (400) ----------------------------------------------------------

class MissingInputError(SimulationServiceError):
    """A required request field is absent."""

    code = "MISSING_INPUT"
    http_status = 400

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} is required", {"field": field})
        self.field = field


class InvalidInputError(SimulationServiceError):
    """A request field is present but malformed or out of range."""

    code = "INVALID_INPUT"
    http_status = 400

    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})
        self.field = field


class ConflictingInputError(InvalidInputError):
    """Two request fields cannot both be honored."""

    code = "CONFLICTING_INPUT"


# Resource availability (503) ------------------------------------------------

class EngineUnavailableError(SimulationServiceError):
    """The compute kernel is not loaded (yet, or at all)."""

    code = "SERVICE_UNAVAILABLE"
    http_status = 503

    def __init__(self, details: Optional[str] = None):
        super().__init__("Simulation engine not initialized", details or "Service starting up")


# Kernel failures (500) ------------------------------------------------------

class KernelError(SimulationServiceError):
    code = "KERNEL_ERROR"
    http_status = 500


class KernelPanicError(KernelError):
    """The kernel raised while running the Monte Carlo phase."""

    code = "ENGINE_PANIC"

    def __init__(self, details: str):
        super().__init__("Simulation engine failed", details)


class KernelComputationError(KernelError):
    """The kernel completed but reported an error in its result."""

    code = "SIMULATION_ERROR"


class KernelParseError(KernelError):
    """The kernel returned output that is not valid JSON."""

    code = "PARSE_ERROR"

    def __init__(self, details: str):
        super().__init__("Failed to parse engine result", details)


class ReplayUnavailableError(KernelError):
    """The kernel has no deterministic single-path entry point."""

    code = "REPLAY_UNAVAILABLE"
