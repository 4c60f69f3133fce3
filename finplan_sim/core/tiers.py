"""Data-tier policy: which outputs each tier may not see.

The built-in policy can be replaced by a JSON file with the same shape::

    {"defaultTier": "bronze",
     "tiers": {"bronze": {"blockedOutputs": [{"outputName": ..., "reason": ...,
                                              "unlockPath": [...]}]}}}
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

_TAX = {
    "outputName": "Tax Impact Analysis",
    "reason": "Requires filing status and income detail",
    "unlockPath": ["Add filing status", "Add income breakdown"],
}
_HEALTHCARE = {
    "outputName": "Healthcare Cost Projection",
    "reason": "Requires coverage and health status detail",
    "unlockPath": ["Add current coverage", "Add expected retirement coverage"],
}
_SENSITIVITY = {
    "outputName": "Sensitivity Analysis",
    "reason": "Requires a complete profile",
    "unlockPath": ["Complete the silver tier profile"],
}

BUILTIN_TIER_POLICY = {
    "defaultTier": "bronze",
    "tiers": {
        "bronze": {"blockedOutputs": [_TAX, _HEALTHCARE, _SENSITIVITY]},
        "silver": {"blockedOutputs": [_HEALTHCARE]},
        "gold": {"blockedOutputs": []},
    },
}


@dataclass(frozen=True)
class BlockedOutput:
    output_name: str
    reason: str
    unlock_path: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "BlockedOutput":
        return cls(
            output_name=data["outputName"],
            reason=data.get("reason", ""),
            unlock_path=list(data.get("unlockPath") or []),
        )

    def to_dict(self) -> dict:
        return {
            "outputName": self.output_name,
            "reason": self.reason,
            "unlockPath": list(self.unlock_path),
        }


def load_tier_policy(path: Optional[str] = None) -> dict:
    """Built-in policy, or the JSON file at ``path`` when given."""
    if not path:
        return BUILTIN_TIER_POLICY
    policy = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(policy.get("tiers"), dict):
        raise ValueError(f"Tier policy {path} has no 'tiers' table")
    logger.info("Loaded tier policy from %s (%d tiers)", path, len(policy["tiers"]))
    return policy


def blocked_outputs_for(tier: str, policy: Optional[dict] = None,
                        default_tier: Optional[str] = None) -> List[BlockedOutput]:
    policy = policy or BUILTIN_TIER_POLICY
    tiers = policy["tiers"]
    config = tiers.get(tier)
    if config is None:
        fallback = default_tier or policy.get("defaultTier")
        logger.warning("Unknown tier %r, using %r", tier, fallback)
        config = tiers.get(fallback)
    if config is None:
        return []
    return [BlockedOutput.from_dict(item) for item in config.get("blockedOutputs") or []]
