"""Event timeline builder.

Expands regime-style parameters into a flat list of discrete events whose
active windows are clamped to ``[0, horizon_months)``:

- income / spending regimes (before change, during change, after revert)
- one-time events, optionally recurring
- healthcare premiums split at the Medicare boundary (age 65)
- employee contributions and employer match
- Social Security from the claiming age
- Roth conversions (January of the given year offset)
- debt payments ordered by payoff strategy
- fixed income streams

Event ids are derived from the seed so the same request always compiles to
the same timeline. Amounts are gross; the kernel applies all taxation.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from finplan_sim.core.packet.events import (
    ContributionEvent,
    DriverKey,
    ExpenseEvent,
    FinancialEvent,
    IncomeEvent,
    OneTimeEvent,
    ORDINARY_INCOME,
    RothConversionEvent,
    SocialSecurityEvent,
    TAX_FREE,
)
from finplan_sim.core.packet.params import (
    ContributionConfig,
    Debt,
    DebtConfig,
    HealthcareConfig,
    IncomeStream,
    OneTimeSpec,
    RothConversionSpec,
    SimulationParams,
    SocialSecurityConfig,
)

logger = logging.getLogger(__name__)

MEDICARE_AGE = 65
# Share of the out-of-pocket maximum assumed to be used each year
OOP_UTILIZATION = 0.3


@dataclass(frozen=True)
class Regime:
    """A contiguous window over which an annual amount is constant."""

    start: int
    end: int              # inclusive
    annual_amount: float
    phase: str            # 'baseline', 'before', 'changed', 'resumed'


def plan_regimes(
    baseline: float,
    horizon_months: int,
    change_month: Optional[int] = None,
    new_amount: float = 0.0,
    duration_months: Optional[int] = None,
) -> List[Regime]:
    """Lay out the regime windows for one income or spending stream.

    With no change (or a change at/after the horizon) there is a single
    baseline window. Otherwise up to three contiguous windows: before the
    change ``[0, c-1]``, the change ``[c, gap_end-1]`` and, when a duration
    was given, the resumed baseline ``[gap_end, horizon-1]``.
    """
    if change_month is None or change_month >= horizon_months:
        if baseline > 0:
            return [Regime(0, horizon_months - 1, baseline, "baseline")]
        return []

    c = max(0, change_month)
    gap_end = min(c + duration_months, horizon_months) if duration_months else horizon_months
    regimes = []

    if c > 0 and baseline > 0:
        regimes.append(Regime(0, c - 1, baseline, "before"))
    # a zero-amount window with a duration is a gap (e.g. a sabbatical)
    if new_amount > 0 or not duration_months:
        regimes.append(Regime(c, gap_end - 1, new_amount, "changed"))
    if duration_months and gap_end < horizon_months and baseline > 0:
        regimes.append(Regime(gap_end, horizon_months - 1, baseline, "resumed"))
    return regimes


_INCOME_LABELS = {
    "baseline": "Salary income",
    "before": "Salary income (before change)",
    "changed": "Income (changed)",
    "resumed": "Salary income (resumed)",
}

_SPENDING_LABELS = {
    "baseline": "Living expenses",
    "before": "Living expenses (before change)",
    "changed": "Living expenses (after change)",
    "resumed": "Living expenses (resumed)",
}

_REGIME_IDS = {"before": 1, "changed": 2, "resumed": 3}


def _regime_id(prefix: str, regime: Regime, seed: int) -> str:
    if regime.phase == "baseline":
        return f"{prefix}-{seed}"
    return f"{prefix}-regime-{_REGIME_IDS[regime.phase]}-{seed}"


def build_income_events(params: SimulationParams) -> List[FinancialEvent]:
    change = params.income_change
    regimes = plan_regimes(
        params.expected_income,
        params.horizon_months,
        change.month_offset if change else None,
        change.new_annual_income if change else 0.0,
        change.duration_months if change else None,
    )
    events = []
    for regime in regimes:
        description = _INCOME_LABELS[regime.phase]
        if regime.phase == "changed" and change.description:
            description = change.description
        events.append(IncomeEvent(
            id=_regime_id("income-salary" if regime.phase == "baseline" else "income",
                          regime, params.seed),
            month_offset=regime.start,
            end_offset=regime.end,
            amount=regime.annual_amount / 12,
            description=description,
            driver_key=DriverKey.INCOME_EMPLOYMENT,
            metadata={"applyInflation": True},
        ))
    return events


def build_spending_events(params: SimulationParams) -> List[FinancialEvent]:
    change = params.spending_change
    regimes = plan_regimes(
        params.annual_spending,
        params.horizon_months,
        change.month_offset if change else None,
        change.new_annual_spending if change else 0.0,
        change.duration_months if change else None,
    )
    events = []
    for regime in regimes:
        metadata = {"applyInflation": True}
        description = _SPENDING_LABELS[regime.phase]
        if regime.phase == "changed":
            metadata["inflationBase"] = change.inflation_base
            description = change.description or description
        events.append(ExpenseEvent(
            id=_regime_id("expense-living" if regime.phase == "baseline" else "expense",
                          regime, params.seed),
            month_offset=regime.start,
            end_offset=regime.end,
            amount=regime.annual_amount / 12,
            description=description,
            driver_key=DriverKey.EXPENSE_FIXED,
            metadata=metadata,
        ))
    return events


def build_one_time_events(specs: List[OneTimeSpec], horizon_months: int,
                          seed: int) -> List[FinancialEvent]:
    events = []
    for index, spec in enumerate(specs):
        base_id = f"one-time-{spec.type}-{index}-{seed}"
        for i in range(spec.count):
            month = spec.month_offset + i * spec.interval_months
            if month >= horizon_months:
                continue
            event_id = f"{base_id}-{i}" if spec.count > 1 else base_id
            if spec.is_expense:
                events.append(OneTimeEvent(
                    id=event_id,
                    month_offset=month,
                    amount=-abs(spec.amount),
                    description=spec.description,
                    driver_key=DriverKey.EXPENSE_SHOCK,
                    expense_nature="shock",
                ))
            else:
                events.append(OneTimeEvent(
                    id=event_id,
                    month_offset=month,
                    amount=abs(spec.amount),
                    description=spec.description,
                    driver_key=DriverKey.INCOME_EMPLOYMENT,
                    tax_profile=ORDINARY_INCOME,
                ))
    return events


def months_to_medicare(current_age: float, horizon_months: int) -> int:
    return int(min(max(0, (MEDICARE_AGE - current_age) * 12), horizon_months))


def build_healthcare_events(config: HealthcareConfig, current_age: float,
                            horizon_months: int, seed: int) -> List[FinancialEvent]:
    boundary = months_to_medicare(current_age, horizon_months)
    metadata = {"category": "healthcare", "annualGrowthRate": config.inflation_rate}
    events = []

    pre = config.pre_medicare
    if pre is not None and boundary > 0:
        events.append(ExpenseEvent(
            id=f"healthcare-premium-pre-medicare-{seed}",
            month_offset=0,
            end_offset=boundary - 1,
            amount=pre.monthly_premium,
            description=f"Pre-Medicare {pre.source} healthcare premiums",
            driver_key=DriverKey.HEALTHCARE,
            metadata=metadata,
        ))
        events.append(ExpenseEvent(
            id=f"healthcare-oop-pre-medicare-{seed}",
            month_offset=0,
            end_offset=boundary - 1,
            amount=(pre.annual_deductible + pre.out_of_pocket_max * OOP_UTILIZATION) / 12,
            description="Pre-Medicare out-of-pocket costs",
            driver_key=DriverKey.HEALTHCARE,
            expense_nature="variable",
            metadata=metadata,
        ))

    post = config.post_medicare
    if post is not None and boundary < horizon_months:
        # open-ended: runs for the rest of the simulation
        events.append(ExpenseEvent(
            id=f"healthcare-premium-post-medicare-{seed}",
            month_offset=boundary,
            amount=post.monthly_premium,
            description=f"Medicare + {post.supplement_type} premiums",
            driver_key=DriverKey.HEALTHCARE,
            metadata=metadata,
        ))
    return events


def build_contribution_events(config: ContributionConfig, expected_income: float,
                              seed: int) -> List[FinancialEvent]:
    events = []
    employee = config.employee
    has_employee = (
        employee is not None
        and employee.percentage_of_salary is not None
        and bool(employee.target_account)
    )

    if has_employee:
        target = employee.target_account
        events.append(ContributionEvent(
            id=f"contribution-employee-{seed}",
            month_offset=0,
            amount=expected_income * employee.percentage_of_salary / 12,
            description=f"Employee contribution to {target}",
            target_account_type=target,
            tax_treatment="post_tax" if target == "roth" else "pre_tax",
            driver_key=(DriverKey.CONTRIBUTION_TAXABLE if target == "taxable"
                        else DriverKey.CONTRIBUTION_RETIREMENT),
            metadata={"category": "contribution"},
        ))

    match = config.employer_match
    if match is not None and has_employee:
        matched_pct = min(employee.percentage_of_salary, match.match_up_to_percentage)
        events.append(ContributionEvent(
            id=f"contribution-employer-match-{seed}",
            month_offset=0,
            amount=expected_income * matched_pct * match.match_rate / 12,
            description="Employer 401(k) match",
            target_account_type="tax_deferred",
            tax_treatment="pre_tax",
            driver_key=DriverKey.CONTRIBUTION_RETIREMENT,
            metadata={
                "category": "contribution",
                "employerFunded": True,
                "matchRate": match.match_rate,
                "matchUpToPercentage": match.match_up_to_percentage,
            },
        ))
    return events


def build_social_security_event(config: SocialSecurityConfig, current_age: float,
                                horizon_months: int, seed: int) -> Optional[FinancialEvent]:
    if config.monthly_benefit <= 0:
        return None
    start = int(max(0, (config.claiming_age - current_age) * 12))
    if start >= horizon_months:
        return None
    return SocialSecurityEvent(
        id=f"social-security-{seed}",
        month_offset=start,
        amount=config.monthly_benefit,
        description=f"Social Security benefit starting at age {config.claiming_age:g}",
        driver_key=DriverKey.INCOME_RETIREMENT,
        metadata={
            "category": "income",
            "claimingAge": config.claiming_age,
            "isColaAdjusted": config.cola_adjusted,
        },
    )


def build_roth_conversion_events(conversions: List[RothConversionSpec], horizon_months: int,
                                 seed: int) -> List[FinancialEvent]:
    eligible = [
        c for c in conversions
        if c.year_offset >= 0 and c.year_offset * 12 < horizon_months and c.amount > 0
    ]
    return [
        RothConversionEvent(
            id=f"roth-conversion-{index}-{seed}",
            month_offset=conv.year_offset * 12,
            amount=conv.amount,
            description=f"Roth conversion year {conv.year_offset}",
            metadata={"category": "tax_strategy"},
        )
        for index, conv in enumerate(eligible)
    ]


def order_debts(debts: List[Debt], payoff_strategy: str) -> List[Debt]:
    """Avalanche: highest rate first. Snowball: smallest balance first."""
    if payoff_strategy == "avalanche":
        return sorted(debts, key=lambda d: d.interest_rate, reverse=True)
    return sorted(debts, key=lambda d: d.balance)


def _payoff_months(debt: Debt, payment: float) -> int:
    if debt.remaining_months is not None:
        return debt.remaining_months
    if payment <= 0:
        return 0
    return math.ceil(debt.balance / payment)


def build_debt_events(config: DebtConfig, horizon_months: int, seed: int) -> List[FinancialEvent]:
    ordered = order_debts(config.debts, config.payoff_strategy)
    events = []

    for debt in ordered:
        payoff = min(_payoff_months(debt, debt.minimum_payment), horizon_months)
        if payoff <= 0 or debt.minimum_payment <= 0:
            continue
        events.append(ExpenseEvent(
            id=f"debt-payment-{debt.id}-{seed}",
            month_offset=0,
            end_offset=payoff - 1,
            amount=debt.minimum_payment,
            description=f"Debt payment: {debt.description or debt.id}",
            driver_key=DriverKey.DEBT,
            metadata={
                "category": "debt",
                "debtId": debt.id,
                "interestRate": debt.interest_rate,
            },
        ))

    # the whole extra payment goes to the first debt in priority order
    extra = config.extra_monthly_payment
    if extra > 0 and ordered:
        primary = ordered[0]
        payoff = min(_payoff_months(primary, primary.minimum_payment + extra), horizon_months)
        if payoff > 0:
            events.append(ExpenseEvent(
                id=f"debt-extra-payment-{seed}",
                month_offset=0,
                end_offset=payoff - 1,
                amount=extra,
                description=f"Extra debt payment ({config.payoff_strategy} strategy)",
                driver_key=DriverKey.DEBT,
                metadata={
                    "category": "debt",
                    "debtId": primary.id,
                    "strategy": config.payoff_strategy,
                },
            ))
    return events


def build_income_stream_events(streams: List[IncomeStream], horizon_months: int,
                               seed: int) -> List[FinancialEvent]:
    events = []
    for i, stream in enumerate(streams):
        start = stream.start_month_offset
        end = horizon_months
        if stream.end_month_offset is not None:
            end = min(stream.end_month_offset, horizon_months)
        if stream.annual_amount <= 0 or start >= end:
            continue
        events.append(IncomeEvent(
            id=f"income-stream-{i}-{seed}",
            month_offset=start,
            end_offset=end - 1,
            amount=stream.annual_amount / 12,
            description=stream.description or f"Income stream {i + 1}",
            driver_key=DriverKey.INCOME_EMPLOYMENT,
            tax_profile=ORDINARY_INCOME if stream.taxable else TAX_FREE,
            metadata={"applyInflation": True},
        ))
    return events


def build_events(params: SimulationParams) -> List[FinancialEvent]:
    """Compile every event family and check each against the horizon."""
    horizon = params.horizon_months
    seed = params.seed

    events: List[FinancialEvent] = []
    events += build_spending_events(params)
    events += build_income_events(params)
    events += build_one_time_events(params.one_time_events, horizon, seed)
    if params.healthcare is not None:
        events += build_healthcare_events(params.healthcare, params.current_age, horizon, seed)
    events += build_income_stream_events(params.income_streams, horizon, seed)
    # contributions only exist while there is salary to contribute from
    if params.contributions is not None and params.expected_income > 0:
        events += build_contribution_events(params.contributions, params.expected_income, seed)
    if params.social_security is not None:
        ss_event = build_social_security_event(params.social_security, params.current_age,
                                               horizon, seed)
        if ss_event is not None:
            events.append(ss_event)
    events += build_roth_conversion_events(params.roth_conversions, horizon, seed)
    if params.debt is not None and params.debt.debts:
        events += build_debt_events(params.debt, horizon, seed)

    for event in events:
        event.check(horizon)

    logger.debug("Compiled %d events over %d months", len(events), horizon)
    return events
