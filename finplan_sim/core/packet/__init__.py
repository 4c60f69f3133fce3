"""
Packet compiler - turns a packet build request into kernel input.

Stages:
- params: normalize the request into SimulationParams (defaults, validation)
- accounts: split investable assets into bucketed holdings
- events: the FinancialEvent variants handed to the kernel
- timeline: expand regimes and option blocks into horizon-clamped events
- compiler: assemble the SimulationInput record
"""

from .params import SimulationParams, extract_params
from .accounts import (
    Account,
    AccountHoldings,
    Holding,
    build_accounts,
    build_strategy_settings,
    concentration_amounts,
)
from .events import (
    ContributionEvent,
    DriverKey,
    EventType,
    ExpenseEvent,
    FinancialEvent,
    IncomeEvent,
    OneTimeEvent,
    RothConversionEvent,
    SocialSecurityEvent,
)
from .timeline import Regime, build_events, order_debts, plan_regimes
from .compiler import (
    MC_SIMULATION_MODE,
    SimulationInput,
    build_cash_strategy,
    build_stochastic_config,
    compile_simulation_input,
)

__version__ = "1.0.0"
__all__ = [
    # Params
    "SimulationParams",
    "extract_params",
    # Accounts
    "Account",
    "AccountHoldings",
    "Holding",
    "build_accounts",
    "build_strategy_settings",
    "concentration_amounts",
    # Events
    "ContributionEvent",
    "DriverKey",
    "EventType",
    "ExpenseEvent",
    "FinancialEvent",
    "IncomeEvent",
    "OneTimeEvent",
    "RothConversionEvent",
    "SocialSecurityEvent",
    # Timeline
    "Regime",
    "build_events",
    "order_debts",
    "plan_regimes",
    # Compiler
    "MC_SIMULATION_MODE",
    "SimulationInput",
    "build_cash_strategy",
    "build_stochastic_config",
    "compile_simulation_input",
]
