# finplan_sim/config.py
"""Service configuration, read from the environment."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from finplan_sim.core.packet.params import MAX_MC_PATHS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServiceConfig:
    host: str = "0.0.0.0"
    port: int = 3002
    log_dir: str = "logs"
    log_level: str = "INFO"
    tier_policy_path: Optional[str] = None
    default_tier: str = "bronze"
    max_mc_paths: int = MAX_MC_PATHS

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        # checked against the loaded tier policy when the app is built
        if not self.default_tier:
            raise ValueError("default_tier must be a non-empty tier name")
        if not 0 < self.max_mc_paths <= MAX_MC_PATHS:
            raise ValueError(f"max_mc_paths must be in 1..{MAX_MC_PATHS}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        env = os.environ if env is None else env
        return cls(
            host=env.get("FINPLAN_HOST", "0.0.0.0"),
            port=int(env.get("PORT", "3002")),
            log_dir=env.get("FINPLAN_LOG_DIR", "logs"),
            log_level=env.get("FINPLAN_LOG_LEVEL", "INFO").upper(),
            tier_policy_path=env.get("FINPLAN_TIER_POLICY") or None,
            default_tier=env.get("FINPLAN_DEFAULT_TIER", "bronze"),
            max_mc_paths=int(env.get("FINPLAN_MAX_MC_PATHS", str(MAX_MC_PATHS))),
        )
