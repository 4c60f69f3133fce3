"""
Tests for the event timeline builder.
"""
import itertools

import pytest

from finplan_sim.core.packet.events import (
    DriverKey,
    EventType,
    ExpenseEvent,
    IncomeEvent,
    OneTimeEvent,
    RothConversionEvent,
)
from finplan_sim.core.packet.params import (
    ContributionConfig,
    Debt,
    DebtConfig,
    EmployeeContribution,
    EmployerMatch,
    HealthcareConfig,
    OneTimeSpec,
    PostMedicare,
    PreMedicare,
    RothConversionSpec,
    SocialSecurityConfig,
    extract_params,
)
from finplan_sim.core.packet.timeline import (
    build_contribution_events,
    build_debt_events,
    build_events,
    build_healthcare_events,
    build_one_time_events,
    build_roth_conversion_events,
    build_social_security_event,
    order_debts,
    plan_regimes,
)


def params(**fields):
    request = {"seed": 7, "startYear": 2025}
    request.update(fields)
    return extract_params(request)


def covered_months(regimes):
    months = []
    for r in regimes:
        months.extend(range(r.start, r.end + 1))
    return months


@pytest.mark.unit
class TestRegimes:
    """Regime windows partition the horizon."""

    def test_no_change_single_regime(self):
        regimes = plan_regimes(100_000, 360)
        assert [(r.start, r.end, r.phase) for r in regimes] == [(0, 359, "baseline")]

    def test_change_without_duration(self):
        regimes = plan_regimes(180_000, 360, 180, 50_000)
        assert [(r.start, r.end) for r in regimes] == [(0, 179), (180, 359)]

    def test_change_with_duration(self):
        regimes = plan_regimes(100_000, 360, 24, 20_000, 12)
        assert [(r.start, r.end, r.annual_amount) for r in regimes] == [
            (0, 23, 100_000), (24, 35, 20_000), (36, 359, 100_000),
        ]

    def test_change_at_zero_omits_first_regime(self):
        regimes = plan_regimes(100_000, 120, 0, 80_000)
        assert [(r.start, r.end) for r in regimes] == [(0, 119)]

    def test_duration_past_horizon(self):
        regimes = plan_regimes(100_000, 120, 100, 50_000, 60)
        assert [(r.start, r.end) for r in regimes] == [(0, 99), (100, 119)]

    def test_change_at_horizon_keeps_baseline(self):
        regimes = plan_regimes(100_000, 120, 120, 50_000)
        assert [(r.start, r.end, r.phase) for r in regimes] == [(0, 119, "baseline")]

    @pytest.mark.parametrize(
        "change,duration",
        list(itertools.product([0, 1, 59, 60, 119], [None, 1, 12, 60, 200])),
    )
    def test_partition_property(self, change, duration):
        horizon = 120
        regimes = plan_regimes(90_000, horizon, change, 45_000, duration)
        assert covered_months(regimes) == list(range(horizon))

    def test_sabbatical_gap(self):
        # zero income for a fixed duration is a gap, not an event
        regimes = plan_regimes(100_000, 120, 12, 0, 6)
        assert [(r.start, r.end) for r in regimes] == [(0, 11), (18, 119)]
        assert "changed" not in [r.phase for r in regimes]

    def test_gap_at_start(self):
        regimes = plan_regimes(100_000, 120, 0, 0, 12)
        assert [(r.start, r.end, r.phase) for r in regimes] == [(12, 119, "resumed")]

    def test_zero_baseline_without_change(self):
        assert plan_regimes(0, 120) == []

    def test_zero_baseline_omits_before_regime(self):
        regimes = plan_regimes(0, 120, 24, 50_000)
        assert [(r.start, r.end, r.phase) for r in regimes] == [(24, 119, "changed")]

    def test_zero_baseline_omits_resumed_regime(self):
        regimes = plan_regimes(0, 120, 24, 50_000, 12)
        assert [(r.start, r.end, r.phase) for r in regimes] == [(24, 35, "changed")]

    def test_zero_baseline_income_change_builds_one_event(self):
        events = build_events(params(
            horizonMonths=120, incomeChange={"monthOffset": 24, "newAnnualIncome": 60_000},
        ))
        income = [e for e in events if e.event_type is EventType.INCOME]
        assert [(e.month_offset, e.end_offset) for e in income] == [(24, 119)]
        assert income[0].amount == pytest.approx(5_000)


@pytest.mark.unit
class TestIncomeAndSpending:
    def test_scenario_income_change(self):
        """Income change at month 180 with no duration: exactly two events."""
        events = build_events(params(
            expectedIncome=180_000, horizonMonths=360, incomeChange={"monthOffset": 180},
        ))
        income = [e for e in events if e.event_type is EventType.INCOME]
        assert len(income) == 2
        assert (income[0].month_offset, income[0].end_offset) == (0, 179)
        assert (income[1].month_offset, income[1].end_offset) == (180, 359)
        assert income[0].amount == pytest.approx(15_000)
        assert income[1].amount == 0

    def test_spending_regimes(self):
        events = build_events(params(
            annualSpending=60_000, horizonMonths=120,
            spendingChange={"monthOffset": 24, "newAnnualSpending": 90_000, "durationMonths": 12,
                            "inflationBase": "event_start"},
        ))
        spending = [e for e in events if e.driver_key is DriverKey.EXPENSE_FIXED]
        assert [(e.month_offset, e.end_offset) for e in spending] == [(0, 23), (24, 35), (36, 119)]
        assert spending[1].metadata["inflationBase"] == "event_start"
        assert all(e.metadata["applyInflation"] for e in spending)

    def test_ids_derive_from_seed(self):
        events = build_events(params(expectedIncome=100_000, annualSpending=50_000))
        ids = {e.id for e in events}
        assert "income-salary-7" in ids
        assert "expense-living-7" in ids


@pytest.mark.unit
class TestOneTimeEvents:
    def test_sign_encodes_direction(self):
        specs = [
            OneTimeSpec("expense", 5000, 10, "Roof"),
            OneTimeSpec("income", 20000, 20, "Inheritance"),
        ]
        expense, income = build_one_time_events(specs, 120, 1)
        assert isinstance(expense, OneTimeEvent)
        assert expense.amount == -5000
        assert expense.driver_key is DriverKey.EXPENSE_SHOCK
        assert income.amount == 20000
        assert income.tax_profile == "ordinary_income"
        assert expense.to_dict()["frequency"] == "one-time"

    def test_recurring_clamped_to_horizon(self):
        spec = OneTimeSpec("expense", 1000, 6, "Tuition", count=5, interval_months=12)
        events = build_one_time_events([spec], 40, 3)
        assert [e.month_offset for e in events] == [6, 18, 30]
        assert [e.id for e in events] == [
            "one-time-expense-0-3-0", "one-time-expense-0-3-1", "one-time-expense-0-3-2",
        ]


@pytest.mark.unit
class TestHealthcare:
    def config(self):
        return HealthcareConfig(PreMedicare(700), PostMedicare(250))

    def test_split_at_medicare_boundary(self):
        events = build_healthcare_events(self.config(), 60, 360, 1)
        pre = [e for e in events if "pre-medicare" in e.id]
        post = [e for e in events if "post-medicare" in e.id]
        assert all(e.end_offset == 59 for e in pre)
        assert len(post) == 1
        assert post[0].month_offset == 60
        assert post[0].end_offset is None

    def test_out_of_pocket_estimate(self):
        events = build_healthcare_events(self.config(), 60, 360, 1)
        oop = next(e for e in events if e.id.startswith("healthcare-oop"))
        assert oop.amount == pytest.approx((3000 + 0.3 * 8000) / 12)
        assert oop.metadata["annualGrowthRate"] == pytest.approx(0.05)

    def test_already_on_medicare(self):
        events = build_healthcare_events(self.config(), 70, 360, 1)
        assert [e.month_offset for e in events] == [0]

    def test_medicare_beyond_horizon(self):
        events = build_healthcare_events(self.config(), 30, 120, 1)
        assert all("pre-medicare" in e.id for e in events)
        assert all(e.end_offset == 119 for e in events)


@pytest.mark.unit
class TestContributions:
    def test_employee_and_match(self):
        config = ContributionConfig(
            EmployeeContribution(0.10, "tax_deferred"), EmployerMatch(0.05, 0.5),
        )
        employee, match = build_contribution_events(config, 120_000, 1)
        assert employee.amount == pytest.approx(1000)
        assert employee.tax_treatment == "pre_tax"
        assert match.amount == pytest.approx(120_000 * 0.05 * 0.5 / 12)
        assert match.target_account_type == "tax_deferred"
        assert match.metadata["employerFunded"] is True

    def test_match_needs_employee_contribution(self):
        config = ContributionConfig(None, EmployerMatch(0.05, 0.5))
        assert build_contribution_events(config, 120_000, 1) == []

    def test_match_limited_by_employee_pct(self):
        config = ContributionConfig(EmployeeContribution(0.02, "roth"), EmployerMatch(0.06, 1.0))
        employee, match = build_contribution_events(config, 120_000, 1)
        assert employee.tax_treatment == "post_tax"
        assert match.amount == pytest.approx(120_000 * 0.02 / 12)

    def test_no_contributions_without_income(self):
        events = build_events(params(contributions={
            "employeeContribution": {"percentageOfSalary": 0.1, "targetAccount": "roth"},
        }))
        assert not any(e.event_type is EventType.ACCOUNT_CONTRIBUTION for e in events)


@pytest.mark.unit
class TestSocialSecurityAndRoth:
    def test_social_security_offset(self):
        event = build_social_security_event(SocialSecurityConfig(67, 2500), 60, 360, 1)
        assert event.month_offset == 84
        assert event.driver_key is DriverKey.INCOME_RETIREMENT
        assert event.to_dict()["taxProfile"] == "social_security_benefit"

    def test_social_security_suppressed(self):
        assert build_social_security_event(SocialSecurityConfig(67, 2500), 30, 360, 1) is None
        assert build_social_security_event(SocialSecurityConfig(67, 0), 60, 360, 1) is None

    def test_already_claiming(self):
        event = build_social_security_event(SocialSecurityConfig(62, 1800), 70, 360, 1)
        assert event.month_offset == 0

    def test_roth_conversions_filtered(self):
        conversions = [
            RothConversionSpec(0, 10_000),
            RothConversionSpec(3, 0),
            RothConversionSpec(9, 25_000),
            RothConversionSpec(10, 25_000),
        ]
        events = build_roth_conversion_events(conversions, 120, 1)
        assert [e.month_offset for e in events] == [0, 108]
        assert all(isinstance(e, RothConversionEvent) for e in events)
        assert all(e.driver_key is None for e in events)
        assert all("driverKey" not in e.to_dict() for e in events)


@pytest.mark.unit
class TestDebt:
    def debts(self):
        return [
            Debt("card", 5_000, 0.22, 150),
            Debt("car", 15_000, 0.06, 400),
            Debt("student", 30_000, 0.045, 300),
        ]

    def test_avalanche_order(self):
        rates = [d.interest_rate for d in order_debts(self.debts(), "avalanche")]
        assert rates == sorted(rates, reverse=True)

    def test_snowball_order(self):
        balances = [d.balance for d in order_debts(self.debts(), "snowball")]
        assert balances == sorted(balances)

    def test_payment_end_months(self):
        events = build_debt_events(DebtConfig(self.debts(), "avalanche"), 360, 1)
        ends = {e.metadata["debtId"]: e.end_offset for e in events}
        # ceil(balance / minimumPayment) - 1
        assert ends == {"card": 33, "car": 37, "student": 99}
        assert all(e.driver_key is DriverKey.DEBT for e in events)

    def test_extra_payment_first_debt_only(self):
        config = DebtConfig(self.debts(), "snowball", extra_monthly_payment=350)
        events = build_debt_events(config, 360, 1)
        extra = [e for e in events if e.id.startswith("debt-extra")]
        assert len(extra) == 1
        assert extra[0].metadata["debtId"] == "card"
        assert extra[0].end_offset == 9    # ceil(5000 / 500) - 1

    def test_remaining_months_clamped(self):
        config = DebtConfig([Debt("mortgage", 300_000, 0.04, 1500, remaining_months=400)])
        (event,) = build_debt_events(config, 360, 1)
        assert event.end_offset == 359


@pytest.mark.unit
class TestTimelineInvariants:
    """Every compiled event sits inside the horizon."""

    @pytest.mark.parametrize("horizon", [1, 12, 61, 360])
    def test_offsets_within_horizon(self, horizon):
        events = build_events(params(
            horizonMonths=horizon,
            currentAge=58,
            expectedIncome=120_000,
            annualSpending=70_000,
            incomeChange={"monthOffset": 30, "newAnnualIncome": 40_000, "durationMonths": 500},
            spendingChange={"monthOffset": 5, "newAnnualSpending": 50_000},
            oneTimeEvents=[{"type": "expense", "amount": 9_000, "monthOffset": 0,
                            "recurring": {"count": 40, "intervalMonths": 10}}],
            healthcare={"preMedicare": {"monthlyPremium": 900}, "postMedicare": {"monthlyPremium": 200}},
            contributions={"employeeContribution": {"percentageOfSalary": 0.08,
                                                    "targetAccount": "taxable"}},
            socialSecurity={"claimingAge": 62, "monthlyBenefit": 2000},
            rothConversions=[{"yearOffset": y, "amount": 10_000} for y in range(40)],
            debt={"debts": [{"balance": 100_000, "interestRate": 0.05, "minimumPayment": 100}],
                  "extraMonthlyPayment": 50},
            incomeStreams=[{"annualAmount": 6_000, "startMonthOffset": 0, "endMonthOffset": 9_999}],
        ))
        assert events
        for e in events:
            assert 0 <= e.month_offset < horizon
            if e.end_offset is not None:
                assert e.month_offset <= e.end_offset < horizon

    def test_event_check_rejects_out_of_range(self):
        event = ExpenseEvent(id="x", month_offset=5, end_offset=20, amount=10)
        with pytest.raises(ValueError):
            event.check(20)

    def test_event_check_rejects_driver_key(self):
        event = IncomeEvent(id="x", month_offset=0, amount=10, driver_key=DriverKey.DEBT)
        with pytest.raises(ValueError):
            event.check(12)

    def test_metadata_read_only(self):
        event = ExpenseEvent(id="x", month_offset=0, amount=10, metadata={"a": 1})
        with pytest.raises(TypeError):
            event.metadata["a"] = 2

    def test_to_dict_end_offset_in_metadata(self):
        record = ExpenseEvent(id="x", month_offset=0, end_offset=11, amount=10,
                              driver_key=DriverKey.EXPENSE_FIXED).to_dict()
        assert record["metadata"]["endDateOffset"] == 11
        assert record["type"] == "EXPENSE"
        assert record["driverKey"] == "expense:fixed"
