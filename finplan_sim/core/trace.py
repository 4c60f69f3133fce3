"""Trace extraction from one replayed path.

Three views of a replay result:
- annual snapshots: one row per simulated year with a return percentage
- first-month digest: per displayed age, January's events (or the first
  month that has events when January has none), in a compact form
- full trace: the month ledger, event log and realized market returns
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from finplan_sim.core.fields import (
    EVENT_FIELDS,
    MARKET_RETURN_FIELDS,
    MONTH_FIELDS,
    REPLAY_COLLECTIONS,
    YEARLY_FIELDS,
    pick,
    remap,
)


def _collection(result: Mapping, name: str) -> List[Mapping]:
    return pick(result, *REPLAY_COLLECTIONS[name], default=None) or []


def _age_key(age):
    return int(age) if float(age).is_integer() else age


def extract_annual_snapshots(result: Mapping, start_year: int, start_age: float) -> List[dict]:
    snapshots = []
    for index, raw in enumerate(_collection(result, "yearlyData")):
        row = remap(raw, YEARLY_FIELDS)
        start = row["startBalance"]
        pct = row["investmentGrowth"] / start * 100 if start > 0 else 0.0
        row["year"] = row["year"] or start_year + index
        row["age"] = row["age"] or start_age + index
        row["returnPct"] = round(pct, 1)
        snapshots.append(row)
    return snapshots


def _compact(entry: Mapping) -> dict:
    return {
        "n": pick(entry, "eventName", "EventName", default=""),
        "t": pick(entry, "eventType", "EventType", default=""),
        "d": int(round(pick(entry, "amount", "Amount", default=0))),
        "cb": int(round(pick(entry, "cashBefore", "CashBefore", default=0))),
        "ca": int(round(pick(entry, "cashAfter", "CashAfter", default=0))),
    }


def extract_first_month_events(result: Mapping, start_age: float) -> Dict[Any, List[dict]]:
    """Map age -> compact events of the first month shown for that year."""
    by_age: Dict[Any, List[dict]] = {}
    fallback: Dict[Any, tuple] = {}

    for entry in _collection(result, "eventTrace"):
        month = pick(entry, "monthOffset", "MonthOffset", default=0)
        year_offset, month_in_year = divmod(int(month), 12)
        age = _age_key(start_age + year_offset)
        event = _compact(entry)

        if month_in_year == 0:
            by_age.setdefault(age, []).append(event)
        elif age not in fallback:
            fallback[age] = (month_in_year, [event])
        elif fallback[age][0] == month_in_year:
            fallback[age][1].append(event)

    for age, (_, events) in fallback.items():
        by_age.setdefault(age, events)
    return by_age


_STRING_FIELDS = {"id", "name", "type", "description", "monthString"}


def _translate(raw: Mapping, table) -> dict:
    record = remap(raw, table, default=None)
    for key, value in record.items():
        if value is None:
            record[key] = "" if key in _STRING_FIELDS else 0
    return record


@dataclass
class TraceData:
    """Full ledger of one replayed path."""

    months: List[dict] = field(default_factory=list)
    events: List[dict] = field(default_factory=list)
    market_returns: List[dict] = field(default_factory=list)
    simulation_mode: str = "stochastic"
    seed: Optional[int] = None
    final_net_worth: float = 0.0

    @property
    def month_count(self) -> int:
        return len(self.months)

    @property
    def event_count(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict:
        return {
            "months": self.months,
            "events": self.events,
            "marketReturns": self.market_returns,
            "monthCount": self.month_count,
            "eventCount": self.event_count,
            "simulationMode": self.simulation_mode,
            "seed": self.seed,
            "finalNetWorth": self.final_net_worth,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Month ledger indexed by month, joined with that month's market returns."""
        df = pd.DataFrame(self.months, columns=list(MONTH_FIELDS) + ["eventIds"])
        if self.market_returns:
            returns = pd.DataFrame(self.market_returns).drop(columns=["monthString"])
            df = df.merge(returns, on="month", how="left")
        return df.set_index("month")


def extract_trace_data(result: Mapping, seed: Optional[int] = None) -> TraceData:
    months = []
    for raw in _collection(result, "monthlySnapshots"):
        month = _translate(raw, MONTH_FIELDS)
        month["eventIds"] = list(pick(raw, "eventIds", "EventIds", default=[]))
        months.append(month)

    return TraceData(
        months=months,
        events=[_translate(raw, EVENT_FIELDS) for raw in _collection(result, "eventTrace")],
        market_returns=[
            _translate(raw, MARKET_RETURN_FIELDS)
            for raw in _collection(result, "realizedPathVariables")
        ],
        simulation_mode=pick(result, "simulationMode", "SimulationMode", default="stochastic"),
        seed=pick(result, "seed", "Seed", default=seed),
        final_net_worth=pick(result, "finalNetWorth", "FinalNetWorth", default=0),
    )
