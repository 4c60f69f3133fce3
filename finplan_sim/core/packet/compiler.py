"""Simulation-input compiler.

Assembles the record the kernel consumes from normalized parameters:
initial accounts, the event timeline, the stochastic config, strategy
settings, the cash strategy and the tax config.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from finplan_sim.core.packet.accounts import (
    AccountHoldings,
    build_accounts,
    build_strategy_settings,
)
from finplan_sim.core.packet.events import FinancialEvent
from finplan_sim.core.packet.params import CashReserve, SimulationParams
from finplan_sim.core.packet.timeline import build_events

logger = logging.getLogger(__name__)

# Monte Carlo paths always run in this mode; replay must use it too.
MC_SIMULATION_MODE = "stochastic"
DEFAULT_RESERVE_MONTHS = 6


@dataclass(frozen=True)
class SimulationInput:
    """Compiled kernel input. Treat as read-only once built."""

    initial_accounts: AccountHoldings
    events: List[FinancialEvent]
    config: Dict[str, Any]
    months_to_run: int
    initial_age: float
    start_year: int
    withdrawal_strategy: str
    strategy_settings: Dict[str, Any]
    cash_strategy: Dict[str, Any]
    tax_config: Optional[Dict[str, Any]] = None
    goals: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def simulation_mode(self) -> str:
        return self.config.get("simulationMode", MC_SIMULATION_MODE)

    @property
    def random_seed(self) -> Optional[int]:
        return self.config.get("randomSeed")

    def for_replay(self, path_seed: int) -> "SimulationInput":
        """Copy for single-path replay: same stochastic mode, seed pinned."""
        config = copy.deepcopy(self.config)
        config["simulationMode"] = MC_SIMULATION_MODE
        config["randomSeed"] = path_seed
        return SimulationInput(
            initial_accounts=self.initial_accounts,
            events=self.events,
            config=config,
            months_to_run=self.months_to_run,
            initial_age=self.initial_age,
            start_year=self.start_year,
            withdrawal_strategy=self.withdrawal_strategy,
            strategy_settings=self.strategy_settings,
            cash_strategy=self.cash_strategy,
            tax_config=self.tax_config,
            goals=self.goals,
        )

    def to_dict(self) -> dict:
        record = {
            "initialAccounts": self.initial_accounts.to_dict(),
            "events": [e.to_dict() for e in self.events],
            "config": copy.deepcopy(self.config),
            "monthsToRun": self.months_to_run,
            "initialAge": self.initial_age,
            "startYear": self.start_year,
            "withdrawalStrategy": self.withdrawal_strategy,
            "goals": list(self.goals),
            "strategySettings": copy.deepcopy(self.strategy_settings),
            "cashStrategy": dict(self.cash_strategy),
        }
        if self.tax_config is not None:
            record["taxConfig"] = dict(self.tax_config)
        return record


def build_stochastic_config(params: SimulationParams) -> dict:
    return {
        "simulationMode": MC_SIMULATION_MODE,
        "randomSeed": params.seed,
        "cashFloor": params.annual_spending / 2,
        "liteMode": False,
    }


def build_cash_strategy(reserve: Optional[CashReserve]) -> dict:
    strategy = {
        "targetReserveMonths": DEFAULT_RESERVE_MONTHS,
        "targetReserveAmount": 0,
        "autoInvestExcess": False,
        "autoSellForShortfall": True,
        "noAutoLiquidate": False,
    }
    if reserve is None:
        return strategy
    if reserve.target_amount is not None:
        strategy["targetReserveMonths"] = 0
        strategy["targetReserveAmount"] = reserve.target_amount
    elif reserve.target_months is not None:
        strategy["targetReserveMonths"] = reserve.target_months
    strategy["autoInvestExcess"] = reserve.auto_invest_excess
    return strategy


def compile_simulation_input(params: SimulationParams) -> SimulationInput:
    custom = params.asset_allocation.custom_allocations if params.asset_allocation else None
    accounts = build_accounts(
        params.investable_assets,
        params.account_buckets,
        params.concentration,
        params.stock_ratio,
        custom,
    )
    events = build_events(params)

    sim_input = SimulationInput(
        initial_accounts=accounts,
        events=events,
        config=build_stochastic_config(params),
        months_to_run=params.horizon_months,
        initial_age=params.current_age,
        start_year=params.start_year,
        withdrawal_strategy=params.withdrawal_strategy,
        strategy_settings=build_strategy_settings(
            params.asset_allocation, params.stock_ratio, params.rebalancing
        ),
        cash_strategy=build_cash_strategy(params.cash_reserve),
        tax_config=params.tax_config.to_kernel(),
    )
    logger.info(
        "Compiled simulation input: %d events, %d months, $%.0f initial",
        len(events), params.horizon_months, accounts.total_value,
    )
    return sim_input
