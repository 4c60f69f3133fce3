"""Monte Carlo statistics extraction and normalization.

Kernels report statistics in several shapes (a dedicated ``mc`` block, a
``monteCarloResults`` block, nested under
``planProjection.summary.portfolioStats`` or flat on the payload) and under
their own names. ``extract_mc_statistics`` finds the block and maps it onto
one canonical schema through ``fields.STATISTICS_FIELDS``.

``everBreachProbability`` is always derived as ``1 - successRate`` using
``is None`` checks, so a real success rate of 0 is kept.
"""

import logging
import re
from dataclasses import dataclass, fields as dataclass_fields
from typing import Any, Dict, List, Mapping, Optional, Union

from finplan_sim.core.errors import KernelParseError
from finplan_sim.core.fields import (
    EXEMPLAR_FIELDS,
    STATISTICS_FIELDS,
    dig,
    pick,
    remap,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "mc-stats/v1"
DEFAULT_SELECTION_CRITERION = "median_terminal_wealth"
REQUIRED_FIELDS = ("everBreachProbability", "finalNetWorthP50", "successRate")
COUNT_FIELDS = ("breachedPathCount", "numberOfRuns", "baseSeed")

_PORTFOLIO_STATS_PATH = ("planProjection", "summary", "portfolioStats")


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@dataclass(frozen=True)
class ExemplarPathRef:
    """Identifies the one Monte Carlo path eligible for replay."""

    path_seed: int
    path_index: Optional[int] = None
    selection_criterion: str = DEFAULT_SELECTION_CRITERION
    terminal_wealth: Optional[float] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["ExemplarPathRef"]:
        if not isinstance(raw, Mapping):
            return None
        values = remap(raw, EXEMPLAR_FIELDS, default=None)
        if values["pathSeed"] is None:
            return None
        try:
            return cls(
                path_seed=int(values["pathSeed"]),
                path_index=None if values["pathIndex"] is None else int(values["pathIndex"]),
                selection_criterion=values["selectionCriterion"] or DEFAULT_SELECTION_CRITERION,
                terminal_wealth=(None if values["terminalWealth"] is None
                                 else float(values["terminalWealth"])),
            )
        except (TypeError, ValueError) as e:
            raise KernelParseError(f"Malformed exemplarPath: {e}") from e

    def to_dict(self) -> dict:
        return {
            "pathSeed": self.path_seed,
            "pathIndex": self.path_index,
            "selectionCriterion": self.selection_criterion,
            "terminalWealth": self.terminal_wealth,
        }


@dataclass(frozen=True)
class MCStatistics:
    """Canonical Monte Carlo statistics. Fields are None when not reported."""

    final_net_worth_p5: Optional[float] = None
    final_net_worth_p10: Optional[float] = None
    final_net_worth_p25: Optional[float] = None
    final_net_worth_p50: Optional[float] = None
    final_net_worth_p75: Optional[float] = None
    final_net_worth_p90: Optional[float] = None
    final_net_worth_p95: Optional[float] = None
    min_cash_p5: Optional[float] = None
    min_cash_p50: Optional[float] = None
    min_cash_p95: Optional[float] = None
    runway_p5: Optional[float] = None
    runway_p50: Optional[float] = None
    runway_p95: Optional[float] = None
    success_rate: Optional[float] = None
    ever_breach_probability: Optional[float] = None
    breached_path_count: Optional[int] = None
    number_of_runs: Optional[int] = None
    base_seed: Optional[int] = None
    exemplar_path: Optional[ExemplarPathRef] = None
    schema_version: str = SCHEMA_VERSION

    def __post_init__(self):
        s, b = self.success_rate, self.ever_breach_probability
        if (s is None) != (b is None):
            raise ValueError("successRate and everBreachProbability must both be set or both be None")
        if s is not None and b != 1.0 - s:
            raise ValueError(f"everBreachProbability {b} != 1 - successRate {s}")

    @classmethod
    def from_canonical(cls, values: Mapping[str, Any],
                       exemplar: Optional[ExemplarPathRef] = None) -> "MCStatistics":
        success = _fraction(values.get("successRate"))
        breach = _fraction(values.get("everBreachProbability"))
        if success is None and breach is not None:
            success = 1.0 - breach
        kwargs = {_snake(name): _coerce(name, values.get(name)) for name in STATISTICS_FIELDS}
        kwargs["success_rate"] = success
        kwargs["ever_breach_probability"] = None if success is None else 1.0 - success
        return cls(exemplar_path=exemplar, **kwargs)

    def to_dict(self) -> dict:
        record = {}
        for f in dataclass_fields(self):
            value = getattr(self, f.name)
            if isinstance(value, ExemplarPathRef):
                value = value.to_dict()
            record[_camel(f.name)] = value
        return record


def _coerce(name: str, value: Any):
    if value is None:
        return None
    return int(value) if name in COUNT_FIELDS else float(value)


def _fraction(value: Any) -> Optional[float]:
    """Success rates reported as percentages (e.g. 85) become fractions."""
    if value is None:
        return None
    value = float(value)
    if value > 1:
        value /= 100
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"probability out of range: {value:g}")
    return value


def locate_statistics(payload: Any) -> Optional[Mapping]:
    """Find the raw statistics block in a kernel payload, or None."""
    if not isinstance(payload, Mapping):
        return None
    for key in ("mc", "monteCarloResults"):
        if isinstance(payload.get(key), Mapping):
            return payload[key]

    stats = dig(payload, _PORTFOLIO_STATS_PATH)
    if isinstance(stats, Mapping):
        summary = dig(payload, _PORTFOLIO_STATS_PATH[:-1])
        merged = {k: v for k, v in summary.items() if k != "portfolioStats"}
        merged.update(stats)
        return merged

    known = {alias for aliases in STATISTICS_FIELDS.values() for alias in aliases}
    if known.intersection(payload):
        return payload
    return None


def find_exemplar(payload: Any, stats_block: Optional[Mapping] = None) -> Optional[ExemplarPathRef]:
    """Exemplar from the statistics block, else from the portfolio stats path."""
    raw = pick(stats_block, "exemplarPath", "ExemplarPath")
    if raw is None:
        raw = dig(payload, _PORTFOLIO_STATS_PATH + ("exemplarPath",))
    return ExemplarPathRef.from_raw(raw)


def extract_mc_statistics(payload: Any) -> Optional[MCStatistics]:
    """Normalize any supported payload shape; None when no statistics exist."""
    raw = locate_statistics(payload)
    if raw is None:
        logger.warning("No Monte Carlo statistics found in kernel payload")
        return None
    values = remap(raw, STATISTICS_FIELDS, default=None)
    exemplar = find_exemplar(payload, raw)
    try:
        return MCStatistics.from_canonical(values, exemplar)
    except (TypeError, ValueError) as e:
        logger.error("Malformed Monte Carlo statistics: %s", e)
        raise KernelParseError(f"Malformed statistics: {e}") from e


def validate_statistics(stats: Union[MCStatistics, Mapping, None]) -> List[str]:
    """Names of the minimum viable statistics that are missing."""
    if stats is None:
        return list(REQUIRED_FIELDS)
    record: Dict[str, Any] = stats.to_dict() if isinstance(stats, MCStatistics) else dict(stats)
    return [name for name in REQUIRED_FIELDS if record.get(name) is None]
