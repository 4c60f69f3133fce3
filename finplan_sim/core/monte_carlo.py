# finplan_sim/core/monte_carlo.py
"""
Vectorized Monte Carlo engine over a compiled simulation input.

Inputs (the kernel record produced by SimulationInput.to_dict()):
- initialAccounts: cash plus taxable / tax_deferred / roth / hsa holdings
- events: monthly and one-time events with end offsets in metadata
- config: simulationMode ('stochastic' | 'deterministic'), randomSeed, cashFloor
- monthsToRun, initialAge, startYear
- withdrawalStrategy: TAX_EFFICIENT | PROPORTIONAL | ROTH_FIRST
- strategySettings: target allocation and rebalancing rules
- cashStrategy: reserve target, auto-invest / auto-sell switches
- taxConfig: optional flat effective rate

Model:
- Monthly returns are correlated normals per asset class; leveraged SPY is
  2x domestic stocks less a borrowing cost. 'deterministic' mode uses the
  mean return with zero variance.
- Every path draws its returns from its own generator seeded with a path
  seed derived from the base seed, so replaying one path seed reproduces
  that path exactly.
- Each month: grow holdings, apply events, rebalance when due, top the
  cash balance back up to the cash floor by selling in withdrawal order.
  A path is breached the first month cash stays negative after selling.

Outputs:
- simulate_plan: portfolio stats (terminal wealth / min cash / runway
  percentiles, success rate, exemplar path at the median terminal wealth)
- replay_path: month snapshots, event trace, realized returns, yearly data

This engine is a reference implementation for running the service on its
own; it makes no claim to be a complete financial model.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

ASSET_CLASSES = (
    "stocks",
    "international_stocks",
    "bonds",
    "cash",
    "leveraged_spy",
    "individual_stock",
)
STOCKS, INTL, BONDS, CASH, LEVERAGED, SINGLE = range(len(ASSET_CLASSES))
# Classes the rebalancer manages; the concentrated position is left alone
MANAGED = slice(0, SINGLE)
EQUITY = (STOCKS, INTL, LEVERAGED)

ACCOUNTS = ("taxable", "tax_deferred", "roth", "hsa")
TAXABLE, TAX_DEFERRED, ROTH, HSA = range(len(ACCOUNTS))

WITHDRAWAL_ORDERS = {
    "TAX_EFFICIENT": (TAXABLE, TAX_DEFERRED, ROTH, HSA),
    "ROTH_FIRST": (ROTH, TAXABLE, TAX_DEFERRED, HSA),
    "PROPORTIONAL": None,
}

# Drawn classes, in order: stocks, intl, bonds, cash, individual stock
DRAWN = (STOCKS, INTL, BONDS, CASH, SINGLE)
DEFAULT_CORRELATION = np.array([
    [1.00, 0.75, 0.10, 0.00, 0.60],
    [0.75, 1.00, 0.10, 0.00, 0.45],
    [0.10, 0.10, 1.00, 0.20, 0.05],
    [0.00, 0.00, 0.20, 1.00, 0.00],
    [0.60, 0.45, 0.05, 0.00, 1.00],
])

LEVERAGE = 2.0
LEVERAGE_COST = 0.01        # annual borrowing drag on the leveraged sleeve
SS_TAXABLE_SHARE = 0.85
GLIDE_YEARS = 10
GLIDE_EQUITY_CUT = 0.4      # equity share removed by retirement age
BATCH_SIZE = 1000

SELECTION_CRITERION = "median_terminal_wealth"
FINAL_VALUE_PERCENTILES = (5, 10, 25, 50, 75, 90, 95)
TAIL_PERCENTILES = (5, 50, 95)


@dataclass
class MarketAssumptions:
    """Annual arithmetic means / volatilities for the drawn classes."""

    mu: np.ndarray = field(default_factory=lambda: np.array([0.07, 0.065, 0.035, 0.02, 0.08]))
    sigma: np.ndarray = field(default_factory=lambda: np.array([0.16, 0.18, 0.06, 0.01, 0.35]))
    correlation: np.ndarray = field(default_factory=lambda: DEFAULT_CORRELATION.copy())
    inflation: float = 0.025

    def __post_init__(self):
        n = len(DRAWN)
        if self.mu.shape != (n,) or self.sigma.shape != (n,):
            raise ValueError(f"mu and sigma must have {n} entries")
        if self.correlation.shape != (n, n):
            raise ValueError(f"correlation must be {n}x{n}")

    @property
    def monthly_inflation(self) -> float:
        return (1.0 + self.inflation) ** (1.0 / 12) - 1.0

    def draw_returns(self, path_seed: int, months: int, stochastic: bool = True) -> np.ndarray:
        """Monthly returns for one path, shape (months, len(ASSET_CLASSES))."""
        mu = self.mu / 12
        if stochastic:
            rng = np.random.default_rng(_entropy(path_seed))
            z = rng.standard_normal((months, len(DRAWN)))
            chol = np.linalg.cholesky(self.correlation)
            drawn = mu + (z @ chol.T) * (self.sigma / np.sqrt(12))
        else:
            drawn = np.tile(mu, (months, 1))

        returns = np.zeros((months, len(ASSET_CLASSES)))
        returns[:, DRAWN] = drawn
        returns[:, LEVERAGED] = LEVERAGE * returns[:, STOCKS] - LEVERAGE_COST / 12
        return returns


def _entropy(seed: int) -> List[int]:
    # SeedSequence only accepts non-negative entropy; the sign word keeps -s and s apart
    seed = int(seed)
    return [0 if seed >= 0 else 1, abs(seed)]


def derive_path_seeds(base_seed: int, n_paths: int) -> np.ndarray:
    """One 32-bit seed per path, reproducible from the base seed."""
    if n_paths <= 0:
        return np.zeros(0, dtype=np.uint32)
    return np.random.SeedSequence(_entropy(base_seed)).generate_state(n_paths, dtype=np.uint32)


@dataclass
class PlanInputs:
    """Kernel record parsed into arrays."""

    months: int
    start_year: int
    initial_age: float
    cash: float
    holdings: np.ndarray            # (accounts, classes)
    events: List[dict]
    seed: int
    stochastic: bool = True
    withdrawal_strategy: str = "TAX_EFFICIENT"
    cash_floor: float = 0.0
    target_weights: np.ndarray = field(default_factory=lambda: _weights({"stocks": 0.7, "bonds": 0.3}))
    glide_path: bool = False
    retirement_age: float = 65
    rebalance_method: str = "threshold"
    rebalance_threshold: float = 0.05
    rebalance_frequency: str = "quarterly"
    auto_sell: bool = True
    auto_invest_excess: bool = False
    reserve_months: float = 6
    reserve_amount: float = 0.0
    tax_rate: float = 0.0

    @classmethod
    def from_record(cls, record: dict) -> "PlanInputs":
        accounts = record.get("initialAccounts") or {}
        holdings = np.zeros((len(ACCOUNTS), len(ASSET_CLASSES)))
        for a, name in enumerate(ACCOUNTS):
            account = accounts.get(name) or {}
            for holding in account.get("holdings") or []:
                asset_class = holding.get("assetClass")
                if asset_class not in ASSET_CLASSES:
                    raise ValueError(f"Unknown asset class: {asset_class}")
                holdings[a, ASSET_CLASSES.index(asset_class)] += holding["currentMarketValueTotal"]

        config = record.get("config") or {}
        mode = config.get("simulationMode", "stochastic")
        if mode not in ("stochastic", "deterministic"):
            raise ValueError(f"Unknown simulationMode: {mode}")
        strategy = record.get("withdrawalStrategy") or "TAX_EFFICIENT"
        if strategy not in WITHDRAWAL_ORDERS:
            raise ValueError(f"Unknown withdrawalStrategy: {strategy}")
        for event in record.get("events") or []:
            if event.get("type") not in EVENT_HANDLERS:
                raise ValueError(f"Unsupported event type: {event.get('type')}")

        settings = record.get("strategySettings") or {}
        allocation = settings.get("assetAllocation") or {}
        rebalancing = settings.get("rebalancing") or {}
        cash_strategy = record.get("cashStrategy") or {}
        tax = record.get("taxConfig") or {}

        return cls(
            months=int(record["monthsToRun"]),
            start_year=int(record["startYear"]),
            initial_age=float(record.get("initialAge", 30)),
            cash=float(accounts.get("cash", 0.0)),
            holdings=holdings,
            events=list(record.get("events") or []),
            seed=int(config.get("randomSeed", 0)),
            stochastic=mode == "stochastic",
            withdrawal_strategy=strategy,
            cash_floor=float(config.get("cashFloor", 0.0)),
            target_weights=_weights(allocation.get("allocations") or {"stocks": 0.7, "bonds": 0.3}),
            glide_path=allocation.get("strategyType") == "glide_path",
            retirement_age=float(allocation.get("targetRetirementAge", 65)),
            rebalance_method=rebalancing.get("method", "threshold"),
            rebalance_threshold=float(rebalancing.get("thresholdPercentage", 0.05)),
            rebalance_frequency=rebalancing.get("frequency", "quarterly"),
            auto_sell=bool(cash_strategy.get("autoSellForShortfall", True))
            and not cash_strategy.get("noAutoLiquidate", False),
            auto_invest_excess=bool(cash_strategy.get("autoInvestExcess", False)),
            reserve_months=float(cash_strategy.get("targetReserveMonths", 6)),
            reserve_amount=float(cash_strategy.get("targetReserveAmount", 0)),
            tax_rate=float(tax.get("effectiveRate", 0.0)) if tax.get("enabled") else 0.0,
        )

    def age_at(self, month: int) -> float:
        return self.initial_age + month / 12

    def weights_at(self, month: int) -> np.ndarray:
        if not self.glide_path:
            return self.target_weights
        return glide_weights(self.target_weights, self.age_at(month), self.retirement_age)

    def rebalance_due(self, month: int) -> bool:
        if self.rebalance_frequency == "monthly":
            return True
        if self.rebalance_frequency == "annually":
            return month % 12 == 11
        return month % 3 == 2


def _weights(allocations: Dict[str, float]) -> np.ndarray:
    w = np.zeros(len(ASSET_CLASSES))
    for asset_class, share in allocations.items():
        if asset_class not in ASSET_CLASSES:
            raise ValueError(f"Unknown asset class in allocation: {asset_class}")
        w[ASSET_CLASSES.index(asset_class)] = share
    w[SINGLE] = 0.0
    total = w.sum()
    if total <= 0:
        raise ValueError("Target allocation is empty")
    return w / total


def glide_weights(base: np.ndarray, age: float, retirement_age: float) -> np.ndarray:
    """Shift equity into bonds linearly over the decade before retirement."""
    start = retirement_age - GLIDE_YEARS
    if age <= start:
        return base
    progress = min(1.0, (age - start) / GLIDE_YEARS)
    w = base.copy()
    cut = w[list(EQUITY)] * GLIDE_EQUITY_CUT * progress
    w[list(EQUITY)] -= cut
    w[BONDS] += cut.sum()
    return w


def event_schedule(event: dict, months: int, inflation: float) -> np.ndarray:
    """Nominal amount of ``event`` in every month of the horizon."""
    amounts = np.zeros(months)
    start = int(event["monthOffset"])
    if start >= months:
        return amounts
    if event.get("frequency") == "one-time":
        amounts[start] = event["amount"]
        return amounts

    meta = event.get("metadata") or {}
    end = meta.get("endDateOffset")
    last = months - 1 if end is None else min(int(end), months - 1)
    if last < start:
        return amounts
    idx = np.arange(start, last + 1)

    growth = meta.get("annualGrowthRate")
    if growth is not None:
        factor = (1.0 + growth) ** (idx / 12)
    elif meta.get("applyInflation") or meta.get("isColaAdjusted"):
        base = start if meta.get("inflationBase") == "event_start" else 0
        factor = (1.0 + inflation) ** ((idx - base) / 12)
    else:
        factor = 1.0
    amounts[idx] = event["amount"] * factor
    return amounts


class PathState:
    """Balances for a batch of paths, vectorized over the first axis."""

    def __init__(self, plan: PlanInputs, n: int):
        self.plan = plan
        self.cash = np.full(n, plan.cash, dtype=float)
        self.holdings = np.repeat(plan.holdings[None, :, :], n, axis=0)
        self.reset_tallies()

    def reset_tallies(self):
        n = len(self.cash)
        self.income = np.zeros(n)
        self.expenses = np.zeros(n)
        self.contributions = np.zeros(n)
        self.withdrawals = np.zeros(n)

    def account_totals(self) -> np.ndarray:
        return self.holdings.sum(axis=2)

    def net_worth(self) -> np.ndarray:
        return self.cash + self.holdings.sum(axis=(1, 2))

    def grow(self, returns: np.ndarray) -> np.ndarray:
        """Apply one month of returns (shape (n, classes)); return the gain."""
        before = self.holdings.sum(axis=(1, 2))
        self.holdings *= 1.0 + returns[:, None, :]
        return self.holdings.sum(axis=(1, 2)) - before

    def deposit(self, account: int, amount, weights: np.ndarray):
        self.holdings[:, account, :] += np.asarray(amount)[..., None] * weights

    def sell_fraction(self, account: int, fraction: np.ndarray):
        self.holdings[:, account, :] *= (1.0 - fraction)[:, None]

    def rebalance(self, weights: np.ndarray, threshold: Optional[float] = None):
        managed = self.holdings[:, :, MANAGED]
        totals = managed.sum(axis=2)
        target = totals[:, :, None] * weights[None, None, MANAGED]
        if threshold is None:
            self.holdings[:, :, MANAGED] = target
            return
        current = np.divide(managed, totals[:, :, None],
                            out=np.zeros_like(managed), where=totals[:, :, None] > 0)
        drift = np.abs(current - weights[None, None, MANAGED]).max(axis=2)
        due = (drift > threshold) & (totals > 0)
        self.holdings[:, :, MANAGED] = np.where(due[:, :, None], target, managed)

    def liquidate(self, need: np.ndarray) -> np.ndarray:
        """Raise ``need`` (after tax) into cash; return the gross amount sold."""
        rate = self.plan.tax_rate
        keep = np.ones(len(ACCOUNTS))
        keep[TAX_DEFERRED] = 1.0 - rate
        order = WITHDRAWAL_ORDERS[self.plan.withdrawal_strategy]
        sold = np.zeros_like(need)

        if order is None:
            totals = self.account_totals()
            net_available = (totals * keep).sum(axis=1)
            fraction = np.minimum(1.0, np.divide(need, net_available,
                                                 out=np.zeros_like(need), where=net_available > 0))
            sold = fraction * totals.sum(axis=1)
            self.holdings *= (1.0 - fraction)[:, None, None]
            self.cash += fraction * net_available
            return sold

        remaining = need.copy()
        for account in order:
            if keep[account] <= 0:
                continue
            available = self.holdings[:, account, :].sum(axis=1)
            gross = np.minimum(available, np.maximum(remaining, 0.0) / keep[account])
            fraction = np.divide(gross, available, out=np.zeros_like(gross), where=available > 0)
            self.sell_fraction(account, fraction)
            self.cash += gross * keep[account]
            remaining -= gross * keep[account]
            sold += gross
        return sold


# ---------------------------------------------------------------------------
# Event effects (amount is the nominal amount for the current month)
# ---------------------------------------------------------------------------

def _income(state: PathState, event: dict, amount: float, month: int):
    taxed = event.get("taxProfile", "ordinary_income") != "tax_free"
    state.cash += amount * (1.0 - state.plan.tax_rate if taxed else 1.0)
    state.income += amount


def _social_security(state: PathState, event: dict, amount: float, month: int):
    state.cash += amount * (1.0 - SS_TAXABLE_SHARE * state.plan.tax_rate)
    state.income += amount


def _expense(state: PathState, event: dict, amount: float, month: int):
    state.cash -= amount
    state.expenses += amount


def _one_time(state: PathState, event: dict, amount: float, month: int):
    if amount < 0:
        _expense(state, event, -amount, month)
    else:
        _income(state, {"taxProfile": event.get("taxProfile") or "tax_free"}, amount, month)


def _contribution(state: PathState, event: dict, amount: float, month: int):
    target = event.get("targetAccountType", "tax_deferred")
    if target not in ACCOUNTS:
        raise ValueError(f"Unknown contribution target: {target}")
    meta = event.get("metadata") or {}
    if not meta.get("employerFunded"):
        pre_tax = event.get("taxTreatment") == "pre_tax"
        state.cash -= amount * (1.0 - state.plan.tax_rate if pre_tax else 1.0)
    state.deposit(ACCOUNTS.index(target), amount, state.plan.weights_at(month))
    state.contributions += amount


def _roth_conversion(state: PathState, event: dict, amount: float, month: int):
    available = state.holdings[:, TAX_DEFERRED, :].sum(axis=1)
    moved = np.minimum(amount, available)
    fraction = np.divide(moved, available, out=np.zeros_like(moved), where=available > 0)
    transfer = state.holdings[:, TAX_DEFERRED, :] * fraction[:, None]
    state.holdings[:, TAX_DEFERRED, :] -= transfer
    state.holdings[:, ROTH, :] += transfer
    state.cash -= moved * state.plan.tax_rate


EVENT_HANDLERS = {
    "INCOME": _income,
    "SOCIAL_SECURITY_INCOME": _social_security,
    "EXPENSE": _expense,
    "ONE_TIME_EVENT": _one_time,
    "ACCOUNT_CONTRIBUTION": _contribution,
    "ROTH_CONVERSION": _roth_conversion,
}


@dataclass
class PathResults:
    net_worth: np.ndarray           # (n, months)
    cash: np.ndarray                # (n, months)
    breach_month: np.ndarray        # (n,), months when never breached
    snapshots: List[dict] = field(default_factory=list)
    event_trace: List[dict] = field(default_factory=list)
    realized: List[dict] = field(default_factory=list)

    @property
    def terminal_wealth(self) -> np.ndarray:
        return self.net_worth[:, -1]

    @property
    def breached(self) -> np.ndarray:
        return self.breach_month < self.net_worth.shape[1]


def run_paths(plan: PlanInputs, path_seeds, market: Optional[MarketAssumptions] = None,
              trace: bool = False) -> PathResults:
    """Simulate one batch of paths. ``trace`` records ledgers for path 0."""
    market = market or MarketAssumptions()
    T = plan.months
    n = len(path_seeds)

    R = np.stack([market.draw_returns(s, T, plan.stochastic) for s in path_seeds])
    schedules = [event_schedule(e, T, market.inflation) for e in plan.events]

    state = PathState(plan, n)
    NW = np.zeros((n, T))
    C = np.zeros((n, T))
    breach_month = np.full(n, T, dtype=int)
    results = PathResults(NW, C, breach_month)

    for t in range(T):
        state.reset_tallies()
        start_worth = state.net_worth()
        growth = state.grow(R[:, t, :])
        active_ids = []

        for event, schedule in zip(plan.events, schedules):
            amount = schedule[t]
            if amount == 0:
                continue
            cash_before, worth_before = state.cash.copy(), state.net_worth()
            EVENT_HANDLERS[event["type"]](state, event, amount, t)
            active_ids.append(event["id"])
            if trace:
                results.event_trace.append({
                    "monthOffset": t,
                    "eventId": event["id"],
                    "eventName": event.get("description") or event["id"],
                    "eventType": event["type"],
                    "amount": float(amount),
                    "description": event.get("description", ""),
                    "netWorthBefore": float(worth_before[0]),
                    "netWorthAfter": float(state.net_worth()[0]),
                    "cashBefore": float(cash_before[0]),
                    "cashAfter": float(state.cash[0]),
                })

        weights = plan.weights_at(t)
        if plan.rebalance_due(t):
            threshold = plan.rebalance_threshold if plan.rebalance_method == "threshold" else None
            state.rebalance(weights, threshold)

        if plan.auto_invest_excess:
            monthly_spend = state.expenses
            reserve = plan.reserve_amount or plan.reserve_months * monthly_spend
            excess = np.maximum(state.cash - np.maximum(reserve, plan.cash_floor), 0.0)
            state.cash -= excess
            state.deposit(TAXABLE, excess, weights)

        if plan.auto_sell:
            need = np.maximum(plan.cash_floor - state.cash, 0.0)
            if need.any():
                state.withdrawals += state.liquidate(need)

        newly = (state.cash < 0) & (breach_month == T)
        breach_month[newly] = t
        NW[:, t] = state.net_worth()
        C[:, t] = state.cash

        if trace:
            results.snapshots.append(_snapshot(plan, state, t, start_worth[0], growth[0], active_ids))
            results.realized.append(_realized(plan, market, R[0, t], t, start_worth[0], growth[0]))

    return results


def _snapshot(plan: PlanInputs, state: PathState, t: int, start_worth: float,
              growth: float, event_ids: List[str]) -> dict:
    totals = state.account_totals()[0]
    return {
        "monthOffset": t,
        "calendarYear": plan.start_year + t // 12,
        "calendarMonth": t % 12 + 1,
        "age": int(plan.age_at(t)),
        "startNetWorth": float(start_worth),
        "netWorth": float(state.net_worth()[0]),
        "cashBalance": float(state.cash[0]),
        "taxableBalance": float(totals[TAXABLE]),
        "taxDeferredBalance": float(totals[TAX_DEFERRED]),
        "rothBalance": float(totals[ROTH]),
        "hsaBalance": float(totals[HSA]),
        "incomeThisMonth": float(state.income[0]),
        "expensesThisMonth": float(state.expenses[0]),
        "contributionsThisMonth": float(state.contributions[0]),
        "withdrawalsThisMonth": float(state.withdrawals[0]),
        "investmentGrowth": float(growth),
        "eventIds": list(event_ids),
    }


def _realized(plan: PlanInputs, market: MarketAssumptions, returns: np.ndarray, t: int,
              start_worth: float, growth: float) -> dict:
    return {
        "monthOffset": t,
        "month": f"{plan.start_year + t // 12}-{t % 12 + 1:02d}",
        "spyReturn": float(returns[STOCKS]),
        "bndReturn": float(returns[BONDS]),
        "intlReturn": float(returns[INTL]),
        "inflation": market.monthly_inflation,
        "weightedReturn": float(growth / start_worth) if start_worth > 0 else 0.0,
    }


def yearly_summary(snapshots: List[dict]) -> List[dict]:
    """Aggregate month snapshots into one row per calendar year."""
    if not snapshots:
        return []
    df = pd.DataFrame(snapshots)
    yearly = (
        df.groupby("calendarYear", sort=True)
        .agg(
            age=("age", "first"),
            startNetWorth=("startNetWorth", "first"),
            endNetWorth=("netWorth", "last"),
            totalIncome=("incomeThisMonth", "sum"),
            totalExpenses=("expensesThisMonth", "sum"),
            totalContributions=("contributionsThisMonth", "sum"),
            totalWithdrawals=("withdrawalsThisMonth", "sum"),
            investmentGrowth=("investmentGrowth", "sum"),
        )
        .reset_index()
        .rename(columns={"calendarYear": "year"})
    )
    return [
        {key: (int(value) if key in ("year", "age") else float(value)) for key, value in row.items()}
        for row in yearly.to_dict(orient="records")
    ]


def simulate_plan(record: dict, n_paths: int,
                  market: Optional[MarketAssumptions] = None) -> dict:
    """Run ``n_paths`` Monte Carlo paths and summarize the distribution."""
    plan = PlanInputs.from_record(record)
    seeds = derive_path_seeds(plan.seed, n_paths)
    stats = {"numberOfRuns": int(n_paths), "baseSeed": plan.seed}
    if n_paths <= 0:
        return {"success": True, "planProjection": {"summary": {"portfolioStats": stats}}}

    batches = [
        run_paths(plan, seeds[i:i + BATCH_SIZE], market)
        for i in range(0, n_paths, BATCH_SIZE)
    ]
    terminal = np.concatenate([b.terminal_wealth for b in batches])
    min_cash = np.concatenate([b.cash.min(axis=1) for b in batches])
    runway = np.concatenate([b.breach_month for b in batches])
    breached = np.concatenate([b.breached for b in batches])

    for q in FINAL_VALUE_PERCENTILES:
        stats[f"p{q}FinalValue"] = float(np.percentile(terminal, q))
    for q in TAIL_PERCENTILES:
        stats[f"minCashP{q}"] = float(np.percentile(min_cash, q))
        stats[f"runwayP{q}"] = float(np.percentile(runway, q))

    # lower median, so the exemplar is an actual path
    index = int(np.argsort(terminal, kind="stable")[(n_paths - 1) // 2])
    stats.update({
        "successRate": float((~breached).mean()),
        "breachedPathCount": int(breached.sum()),
        "exemplarPath": {
            "pathSeed": int(seeds[index]),
            "pathIndex": index,
            "selectionCriterion": SELECTION_CRITERION,
            "terminalWealth": float(terminal[index]),
        },
    })
    return {
        "success": True,
        "planProjection": {"summary": {"portfolioStats": stats}},
    }


def replay_path(record: dict, market: Optional[MarketAssumptions] = None) -> dict:
    """Replay the single path seeded by ``config.randomSeed`` with full ledgers."""
    plan = PlanInputs.from_record(record)
    result = run_paths(plan, [plan.seed], market, trace=True)
    return {
        "success": True,
        "simulationMode": "stochastic" if plan.stochastic else "deterministic",
        "seed": plan.seed,
        "finalNetWorth": float(result.terminal_wealth[0]),
        "monthlySnapshots": result.snapshots,
        "eventTrace": result.event_trace,
        "realizedPathVariables": result.realized,
        "yearlyData": yearly_summary(result.snapshots),
    }
