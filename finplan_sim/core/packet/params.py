"""Parameter normalization for packet build requests.

A request arrives either with direct profile fields (API flow) or with a
list of ``{fieldPath, newValue}`` confirmed changes (conversational flow),
usually a mix of both. ``extract_params`` resolves it into one
``SimulationParams`` with every optional field defaulted. Direct fields
always win over confirmed changes.

All option blocks use the request's camelCase keys on the way in and are
held as snake_case dataclasses afterwards.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from finplan_sim.core.errors import (
    ConflictingInputError,
    InvalidInputError,
    MissingInputError,
)

DEFAULT_HORIZON_MONTHS = 360
DEFAULT_STOCK_RATIO = 0.70
DEFAULT_CURRENT_AGE = 30
DEFAULT_MC_PATHS = 1
MAX_MC_PATHS = 10_000
MAX_HORIZON_MONTHS = 1200

VERBOSITY_LEVELS = ("summary", "annual", "trace")
WITHDRAWAL_STRATEGIES = ("TAX_EFFICIENT", "PROPORTIONAL", "ROTH_FIRST")
PAYOFF_STRATEGIES = ("avalanche", "snowball")
ACCOUNT_TYPES = ("taxable", "tax_deferred", "roth", "hsa")
DEFAULT_DATA_TIER = "bronze"

# Profile fields that confirmed changes may carry under ["profile", <name>]
PROFILE_FIELDS = ("investableAssets", "annualSpending", "currentAge", "expectedIncome")


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------

def _number(value: Any, name: str, minimum: Optional[float] = 0.0,
            maximum: Optional[float] = None) -> float:
    """Coerce to a finite float within [minimum, maximum]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(name, f"{name} must be a number")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise InvalidInputError(name, f"{name} must be finite")
    if minimum is not None and value < minimum:
        raise InvalidInputError(name, f"{name} must be >= {minimum:g}")
    if maximum is not None and value > maximum:
        raise InvalidInputError(name, f"{name} must be <= {maximum:g}")
    return value


def _integer(value: Any, name: str, minimum: Optional[int] = 0,
             maximum: Optional[int] = None) -> int:
    # exact ints skip float conversion, which would round values above 2**53
    if isinstance(value, int) and not isinstance(value, bool):
        if minimum is not None and value < minimum:
            raise InvalidInputError(name, f"{name} must be >= {minimum}")
        if maximum is not None and value > maximum:
            raise InvalidInputError(name, f"{name} must be <= {maximum}")
        return value
    number = _number(value, name, minimum, maximum)
    if number != int(number):
        raise InvalidInputError(name, f"{name} must be a whole number")
    return int(number)


def _optional_number(data: Mapping, key: str, default=None, **bounds) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return default
    return _number(value, key, **bounds)


def _optional_integer(data: Mapping, key: str, default=None, **bounds) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return default
    return _integer(value, key, **bounds)


def _choice(value: Any, name: str, allowed) -> str:
    if value not in allowed:
        raise InvalidInputError(name, f"{name} must be one of {', '.join(allowed)}")
    return value


def _mapping(value: Any, name: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise InvalidInputError(name, f"{name} must be an object")
    return value


def _sequence(value: Any, name: str) -> list:
    if not isinstance(value, (list, tuple)):
        raise InvalidInputError(name, f"{name} must be a list")
    return list(value)


# ---------------------------------------------------------------------------
# Option blocks
# ---------------------------------------------------------------------------

@dataclass
class TaxConfig:
    """Effective-rate tax configuration passed through to the kernel."""

    enabled: bool = False
    effective_rate: float = 0.22
    capital_gains_rate: float = 0.15
    filing_status: str = "single"
    state: str = "NONE"

    @classmethod
    def from_dict(cls, data: Mapping) -> "TaxConfig":
        data = _mapping(data, "taxConfig")
        # a zero rate means "use the default", as upstream callers send 0 for unknown
        return cls(
            enabled=bool(data.get("enabled", False)),
            effective_rate=_optional_number(data, "effectiveRate", 0.0, maximum=1.0) or 0.22,
            capital_gains_rate=_optional_number(data, "capitalGainsRate", 0.0, maximum=1.0) or 0.15,
            filing_status=data.get("filingStatus") or "single",
            state=data.get("state") or "NONE",
        )

    def to_kernel(self) -> Optional[dict]:
        if not self.enabled:
            return None
        return {
            "enabled": True,
            "effectiveRate": self.effective_rate,
            "capitalGainsRate": self.capital_gains_rate,
            "filingStatus": self.filing_status,
            "state": self.state,
        }


@dataclass
class IncomeChange:
    month_offset: int
    new_annual_income: float
    duration_months: Optional[int] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping) -> "IncomeChange":
        data = _mapping(data, "incomeChange")
        return cls(
            month_offset=_integer(data.get("monthOffset"), "incomeChange.monthOffset"),
            new_annual_income=_optional_number(data, "newAnnualIncome", 0.0),
            duration_months=_optional_integer(data, "durationMonths", minimum=1),
            description=data.get("description") or "",
        )


@dataclass
class SpendingChange:
    month_offset: int
    new_annual_spending: float
    duration_months: Optional[int] = None
    description: str = ""
    inflation_base: str = "simulation_start"

    @classmethod
    def from_dict(cls, data: Mapping) -> "SpendingChange":
        data = _mapping(data, "spendingChange")
        return cls(
            month_offset=_integer(data.get("monthOffset"), "spendingChange.monthOffset"),
            new_annual_spending=_optional_number(data, "newAnnualSpending", 0.0),
            duration_months=_optional_integer(data, "durationMonths", minimum=1),
            description=data.get("description") or "",
            inflation_base=_choice(
                data.get("inflationBase") or "simulation_start",
                "spendingChange.inflationBase",
                ("simulation_start", "event_start"),
            ),
        )


@dataclass
class OneTimeSpec:
    """A one-off (optionally recurring) income or expense."""

    type: str
    amount: float
    month_offset: int
    description: str = ""
    count: int = 1
    interval_months: int = 12

    @property
    def is_expense(self) -> bool:
        return self.type == "expense"

    @classmethod
    def from_dict(cls, data: Mapping) -> "OneTimeSpec":
        data = _mapping(data, "oneTimeEvents[]")
        recurring = data.get("recurring") or {}
        amount = data.get("amount")
        if isinstance(amount, (int, float)) and not isinstance(amount, bool):
            amount = abs(amount)
        return cls(
            type=_choice(data.get("type"), "oneTimeEvents.type", ("income", "expense")),
            amount=_number(amount, "oneTimeEvents.amount"),
            month_offset=_integer(data.get("monthOffset"), "oneTimeEvents.monthOffset"),
            description=data.get("description") or "",
            count=_optional_integer(recurring, "count", 1, minimum=1),
            interval_months=_optional_integer(recurring, "intervalMonths", 12, minimum=1),
        )


@dataclass
class AccountBuckets:
    """Percentages of (non-concentrated) assets per account bucket."""

    cash: float = 10.0
    taxable: float = 30.0
    tax_deferred: float = 60.0
    roth: float = 0.0
    hsa: float = 0.0

    def __post_init__(self):
        total = self.cash + self.taxable + self.tax_deferred + self.roth + self.hsa
        if abs(total - 100) > 0.01:
            raise InvalidInputError(
                "accountBuckets", f"accountBuckets must sum to 100 (got {total:g})"
            )

    @classmethod
    def from_dict(cls, data: Mapping) -> "AccountBuckets":
        data = _mapping(data, "accountBuckets")
        pct = dict(minimum=0.0, maximum=100.0)
        return cls(
            cash=_optional_number(data, "cash", 0.0, **pct),
            taxable=_optional_number(data, "taxable", 0.0, **pct),
            tax_deferred=_optional_number(data, "taxDeferred", 0.0, **pct),
            roth=_optional_number(data, "roth", 0.0, **pct),
            hsa=_optional_number(data, "hsa", 0.0, **pct),
        )


@dataclass
class Concentration:
    concentrated_pct: float = 0.0
    override_value: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "Concentration":
        data = _mapping(data, "concentration")
        pct = data.get("concentratedPct") or 0
        if isinstance(pct, bool) or not isinstance(pct, (int, float)) or math.isnan(pct):
            raise InvalidInputError("concentration.concentratedPct", "concentratedPct must be a number")
        override = data.get("concentrationOverrideValue")
        if override is not None:
            override = _number(override, "concentration.concentrationOverrideValue", minimum=None)
            # negative overrides are treated as "no override"
            if override < 0:
                override = None
        return cls(concentrated_pct=float(pct), override_value=override)


CUSTOM_ALLOCATION_KEYS = ("usStocks", "internationalStocks", "bonds", "cash", "leveragedSpy")


@dataclass
class AssetAllocation:
    strategy: str = "fixed"
    stock_percentage: Optional[float] = None
    retirement_age: float = 65
    custom_allocations: Optional[Dict[str, float]] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "AssetAllocation":
        data = _mapping(data, "assetAllocation")
        custom = data.get("customAllocations")
        if custom is not None:
            custom = _mapping(custom, "assetAllocation.customAllocations")
            custom = {
                key: _number(custom[key], f"customAllocations.{key}", 0.0, 100.0)
                for key in CUSTOM_ALLOCATION_KEYS
                if custom.get(key) is not None
            }
            total = sum(custom.values())
            if abs(total - 100) > 0.01:
                raise InvalidInputError(
                    "assetAllocation.customAllocations",
                    f"customAllocations must sum to 100 (got {total:g})",
                )
        return cls(
            strategy=_choice(data.get("strategy") or "fixed", "assetAllocation.strategy",
                             ("fixed", "glide_path")),
            stock_percentage=_optional_number(data, "stockPercentage", None, maximum=100.0),
            retirement_age=_optional_number(data, "retirementAge", 65, maximum=120.0),
            custom_allocations=custom,
        )


@dataclass
class PreMedicare:
    monthly_premium: float
    source: str = "marketplace"
    annual_deductible: float = 3000.0
    out_of_pocket_max: float = 8000.0


@dataclass
class PostMedicare:
    monthly_premium: float
    supplement_type: str = "Medigap"


@dataclass
class HealthcareConfig:
    pre_medicare: Optional[PreMedicare] = None
    post_medicare: Optional[PostMedicare] = None
    inflation_rate: float = 0.05

    @classmethod
    def from_dict(cls, data: Mapping) -> "HealthcareConfig":
        data = _mapping(data, "healthcare")
        pre = data.get("preMedicare")
        post = data.get("postMedicare")
        if pre is not None:
            pre = _mapping(pre, "healthcare.preMedicare")
            pre = PreMedicare(
                monthly_premium=_optional_number(pre, "monthlyPremium", 0.0),
                source=pre.get("source") or "marketplace",
                annual_deductible=_optional_number(pre, "annualDeductible", 3000.0),
                out_of_pocket_max=_optional_number(pre, "outOfPocketMax", 8000.0),
            )
        if post is not None:
            post = _mapping(post, "healthcare.postMedicare")
            post = PostMedicare(
                monthly_premium=_optional_number(post, "monthlyPremium", 0.0),
                supplement_type=post.get("supplementType") or "Medigap",
            )
        return cls(
            pre_medicare=pre,
            post_medicare=post,
            inflation_rate=_optional_number(data, "inflationRate", 0.0, maximum=1.0) or 0.05,
        )


@dataclass
class EmployeeContribution:
    percentage_of_salary: Optional[float] = None
    target_account: Optional[str] = None


@dataclass
class EmployerMatch:
    match_up_to_percentage: float
    match_rate: float


@dataclass
class ContributionConfig:
    employee: Optional[EmployeeContribution] = None
    employer_match: Optional[EmployerMatch] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "ContributionConfig":
        data = _mapping(data, "contributions")
        employee = data.get("employeeContribution")
        match = data.get("employerMatch")
        if employee is not None:
            employee = _mapping(employee, "contributions.employeeContribution")
            target = employee.get("targetAccount")
            if target is not None:
                _choice(target, "employeeContribution.targetAccount", ACCOUNT_TYPES)
            employee = EmployeeContribution(
                percentage_of_salary=_optional_number(employee, "percentageOfSalary", maximum=1.0),
                target_account=target,
            )
        if match is not None:
            match = _mapping(match, "contributions.employerMatch")
            match = EmployerMatch(
                match_up_to_percentage=_optional_number(match, "matchUpToPercentage", 0.0, maximum=1.0),
                match_rate=_optional_number(match, "matchRate", 0.0, maximum=10.0),
            )
        return cls(employee=employee, employer_match=match)


@dataclass
class SocialSecurityConfig:
    claiming_age: float
    monthly_benefit: float
    cola_adjusted: bool = True

    @classmethod
    def from_dict(cls, data: Mapping) -> "SocialSecurityConfig":
        data = _mapping(data, "socialSecurity")
        return cls(
            claiming_age=_number(data.get("claimingAge"), "socialSecurity.claimingAge", 0.0, 120.0),
            monthly_benefit=_optional_number(data, "monthlyBenefit", 0.0, minimum=None),
            cola_adjusted=bool(data.get("colaAdjusted", True)),
        )


@dataclass
class RothConversionSpec:
    year_offset: int
    amount: float

    @classmethod
    def from_dict(cls, data: Mapping) -> "RothConversionSpec":
        data = _mapping(data, "rothConversions[]")
        return cls(
            year_offset=_integer(data.get("yearOffset"), "rothConversions.yearOffset"),
            amount=_optional_number(data, "amount", 0.0, minimum=None),
        )


@dataclass
class CashReserve:
    target_months: Optional[float] = None
    target_amount: Optional[float] = None
    auto_invest_excess: bool = False

    @classmethod
    def from_dict(cls, data: Mapping) -> "CashReserve":
        data = _mapping(data, "cashReserve")
        months = _optional_number(data, "targetMonths")
        amount = _optional_number(data, "targetAmount")
        if months is not None and amount is not None:
            raise ConflictingInputError(
                "cashReserve",
                "cashReserve accepts targetMonths or targetAmount, not both",
            )
        return cls(
            target_months=months,
            target_amount=amount,
            auto_invest_excess=bool(data.get("autoInvestExcess", False)),
        )


@dataclass
class RebalancingConfig:
    method: str = "threshold"
    threshold_pct: float = 0.05
    frequency: str = "quarterly"

    @classmethod
    def from_dict(cls, data: Mapping) -> "RebalancingConfig":
        data = _mapping(data, "rebalancing")
        return cls(
            method=data.get("method") or "threshold",
            threshold_pct=_optional_number(data, "thresholdPct", 0.05, maximum=1.0),
            frequency=_choice(data.get("frequency") or "quarterly", "rebalancing.frequency",
                              ("monthly", "quarterly", "annually")),
        )


@dataclass
class Debt:
    id: str
    balance: float
    interest_rate: float
    minimum_payment: float
    description: str = ""
    remaining_months: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping, index: int = 0) -> "Debt":
        data = _mapping(data, "debt.debts[]")
        return cls(
            id=str(data.get("id") or f"debt-{index}"),
            balance=_optional_number(data, "balance", 0.0),
            interest_rate=_optional_number(data, "interestRate", 0.0),
            minimum_payment=_optional_number(data, "minimumPayment", 0.0),
            description=data.get("description") or "",
            remaining_months=_optional_integer(data, "remainingMonths"),
        )


@dataclass
class DebtConfig:
    debts: List[Debt] = field(default_factory=list)
    payoff_strategy: str = "avalanche"
    extra_monthly_payment: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping) -> "DebtConfig":
        data = _mapping(data, "debt")
        debts = _sequence(data.get("debts") or [], "debt.debts")
        return cls(
            debts=[Debt.from_dict(d, i) for i, d in enumerate(debts)],
            payoff_strategy=_choice(data.get("payoffStrategy") or "avalanche",
                                    "debt.payoffStrategy", PAYOFF_STRATEGIES),
            extra_monthly_payment=_optional_number(data, "extraMonthlyPayment", 0.0),
        )


@dataclass
class IncomeStream:
    annual_amount: float
    start_month_offset: int = 0
    end_month_offset: Optional[int] = None
    description: str = ""
    taxable: bool = True

    @classmethod
    def from_dict(cls, data: Mapping) -> "IncomeStream":
        data = _mapping(data, "incomeStreams[]")
        return cls(
            annual_amount=_optional_number(data, "annualAmount", 0.0),
            start_month_offset=_optional_integer(data, "startMonthOffset", 0),
            end_month_offset=_optional_integer(data, "endMonthOffset"),
            description=data.get("description") or "",
            taxable=data.get("taxable") is not False,
        )


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------

@dataclass
class SimulationParams:
    """Canonical, fully-defaulted simulation parameters."""

    seed: int
    start_year: int
    mc_paths: int = DEFAULT_MC_PATHS
    horizon_months: int = DEFAULT_HORIZON_MONTHS
    verbosity: str = "annual"
    path_seed: Optional[int] = None
    data_tier: str = DEFAULT_DATA_TIER

    investable_assets: float = 0.0
    annual_spending: float = 0.0
    current_age: float = DEFAULT_CURRENT_AGE
    expected_income: float = 0.0

    tax_config: TaxConfig = field(default_factory=TaxConfig)
    income_change: Optional[IncomeChange] = None
    spending_change: Optional[SpendingChange] = None
    one_time_events: List[OneTimeSpec] = field(default_factory=list)
    account_buckets: Optional[AccountBuckets] = None
    asset_allocation: Optional[AssetAllocation] = None
    stock_ratio: float = DEFAULT_STOCK_RATIO
    concentration: Optional[Concentration] = None
    healthcare: Optional[HealthcareConfig] = None
    contributions: Optional[ContributionConfig] = None
    social_security: Optional[SocialSecurityConfig] = None
    roth_conversions: List[RothConversionSpec] = field(default_factory=list)
    withdrawal_strategy: str = "TAX_EFFICIENT"
    cash_reserve: Optional[CashReserve] = None
    rebalancing: Optional[RebalancingConfig] = None
    debt: Optional[DebtConfig] = None
    income_streams: List[IncomeStream] = field(default_factory=list)

    @property
    def replay_mode(self) -> bool:
        return self.path_seed is not None

    def summary(self) -> dict:
        """Short, loggable view of the profile."""
        return {
            "seed": self.seed,
            "mcPaths": self.mc_paths,
            "verbosity": self.verbosity,
            "horizonMonths": self.horizon_months,
            "investableAssets": self.investable_assets,
            "annualSpending": self.annual_spending,
            "currentAge": self.current_age,
            "expectedIncome": self.expected_income,
        }


def _tier(value: Any) -> str:
    """Any tier name is accepted; unknown tiers resolve against the tier policy."""
    if value is None or value == "":
        return DEFAULT_DATA_TIER
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError("dataTier", "dataTier must be a non-empty string")
    return value.strip()


def _confirmed_value(changes: List[Mapping], field_path: List[str]) -> Any:
    for change in changes:
        if isinstance(change, Mapping) and list(change.get("fieldPath") or []) == field_path:
            return change.get("newValue")
    return None


def _block(request: Mapping, key: str, parser):
    value = request.get(key)
    if value is None:
        return None
    return parser(value)


def _blocks(request: Mapping, key: str, parser) -> list:
    value = request.get(key)
    if not value:
        return []
    return [parser(item) for item in _sequence(value, key)]


def _resolve_stock_ratio(request: Mapping, allocation: Optional[AssetAllocation]) -> float:
    if request.get("stockRatio") is not None:
        return _number(request["stockRatio"], "stockRatio", 0.0, 1.0)
    if allocation is not None and allocation.stock_percentage is not None:
        return allocation.stock_percentage / 100
    return DEFAULT_STOCK_RATIO


def extract_params(request: Mapping, max_mc_paths: int = MAX_MC_PATHS) -> SimulationParams:
    """Resolve a packet build request into canonical ``SimulationParams``.

    Raises:
        MissingInputError: ``seed`` or ``startYear`` is missing.
        InvalidInputError: a field is malformed or out of range.
        ConflictingInputError: mutually exclusive fields were both supplied.
    """
    request = _mapping(request, "packetBuildRequest")

    seed = request.get("seed")
    if seed is None:
        raise MissingInputError("seed", "seed is required for deterministic simulation")
    if not request.get("startYear"):
        raise MissingInputError("startYear")

    changes = _sequence(request.get("confirmedChanges") or [], "confirmedChanges")
    profile: Dict[str, Any] = {}
    for name in PROFILE_FIELDS:
        value = request.get(name)
        if value is None:
            value = _confirmed_value(changes, ["profile", name])
        profile[name] = value

    horizon = request.get("horizonMonths")
    if horizon is None and isinstance(request.get("horizon"), Mapping):
        horizon = request["horizon"].get("endMonth")

    allocation = _block(request, "assetAllocation", AssetAllocation.from_dict)
    path_seed = request.get("pathSeed")

    return SimulationParams(
        seed=_integer(seed, "seed", minimum=None),
        start_year=_integer(request["startYear"], "startYear", 1900, 2200),
        mc_paths=_integer(request.get("mcPaths", DEFAULT_MC_PATHS), "mcPaths", 0, max_mc_paths),
        horizon_months=_integer(DEFAULT_HORIZON_MONTHS if horizon is None else horizon,
                                "horizonMonths", 1, MAX_HORIZON_MONTHS),
        verbosity=_choice(request.get("verbosity") or "annual", "verbosity", VERBOSITY_LEVELS),
        path_seed=None if path_seed is None else _integer(path_seed, "pathSeed", minimum=None),
        data_tier=_tier(request.get("dataTier")),
        investable_assets=_number(profile["investableAssets"] or 0, "investableAssets"),
        annual_spending=_number(profile["annualSpending"] or 0, "annualSpending"),
        current_age=_number(
            DEFAULT_CURRENT_AGE if profile["currentAge"] is None else profile["currentAge"],
            "currentAge", 0.0, 120.0,
        ),
        expected_income=_number(profile["expectedIncome"] or 0, "expectedIncome"),
        tax_config=_block(request, "taxConfig", TaxConfig.from_dict) or TaxConfig(),
        income_change=_block(request, "incomeChange", IncomeChange.from_dict),
        spending_change=_block(request, "spendingChange", SpendingChange.from_dict),
        one_time_events=_blocks(request, "oneTimeEvents", OneTimeSpec.from_dict),
        account_buckets=_block(request, "accountBuckets", AccountBuckets.from_dict),
        asset_allocation=allocation,
        stock_ratio=_resolve_stock_ratio(request, allocation),
        concentration=_block(request, "concentration", Concentration.from_dict),
        healthcare=_block(request, "healthcare", HealthcareConfig.from_dict),
        contributions=_block(request, "contributions", ContributionConfig.from_dict),
        social_security=_block(request, "socialSecurity", SocialSecurityConfig.from_dict),
        roth_conversions=_blocks(request, "rothConversions", RothConversionSpec.from_dict),
        withdrawal_strategy=_choice(request.get("withdrawalStrategy") or "TAX_EFFICIENT",
                                    "withdrawalStrategy", WITHDRAWAL_STRATEGIES),
        cash_reserve=_block(request, "cashReserve", CashReserve.from_dict),
        rebalancing=_block(request, "rebalancing", RebalancingConfig.from_dict),
        debt=_block(request, "debt", DebtConfig.from_dict),
        income_streams=_blocks(request, "incomeStreams", IncomeStream.from_dict),
    )
