"""
Tests for trace extraction from a replayed path.
"""
import pytest

from finplan_sim.core.trace import (
    extract_annual_snapshots,
    extract_first_month_events,
    extract_trace_data,
)


def entry(month, name, amount=100.4, cash_before=1000.6, cash_after=900.2):
    return {
        "monthOffset": month,
        "eventName": name,
        "eventType": "EXPENSE",
        "amount": amount,
        "cashBefore": cash_before,
        "cashAfter": cash_after,
    }


@pytest.mark.unit
class TestAnnualSnapshots:
    def test_return_pct(self):
        result = {"yearlyData": [
            {"year": 2025, "age": 60, "startNetWorth": 1_000_000, "endNetWorth": 1_050_000,
             "investmentGrowth": 61_234},
        ]}
        (row,) = extract_annual_snapshots(result, 2025, 60)
        assert row["returnPct"] == 6.1
        assert row["startBalance"] == 1_000_000
        assert row["endBalance"] == 1_050_000

    def test_zero_start_balance(self):
        result = {"yearlyData": [{"startNetWorth": 0, "investmentGrowth": 500}]}
        (row,) = extract_annual_snapshots(result, 2025, 60)
        assert row["returnPct"] == 0

    def test_year_and_age_fallback(self):
        result = {"YearlyData": [{"StartNetWorth": 10}, {"StartNetWorth": 20}]}
        rows = extract_annual_snapshots(result, 2030, 45)
        assert [(r["year"], r["age"]) for r in rows] == [(2030, 45), (2031, 46)]
        assert [r["startBalance"] for r in rows] == [10, 20]

    def test_pascal_case_fields(self):
        result = {"yearlyData": [{"TotalContributions": 5, "TotalWithdrawals": 7}]}
        (row,) = extract_annual_snapshots(result, 2025, 60)
        assert row["contributions"] == 5
        assert row["withdrawals"] == 7

    def test_empty(self):
        assert extract_annual_snapshots({}, 2025, 60) == []


@pytest.mark.unit
class TestFirstMonthEvents:
    def test_january_preferred(self):
        result = {"eventTrace": [entry(0, "Rent"), entry(1, "Other"), entry(12, "Rent")]}
        digest = extract_first_month_events(result, 40)
        assert [e["n"] for e in digest[40]] == ["Rent"]
        assert [e["n"] for e in digest[41]] == ["Rent"]

    def test_fallback_to_first_available_month(self):
        result = {"eventTrace": [
            entry(15, "Bonus"), entry(15, "Tax"), entry(16, "Later"),
        ]}
        digest = extract_first_month_events(result, 40)
        assert [e["n"] for e in digest[41]] == ["Bonus", "Tax"]
        assert 40 not in digest

    def test_compact_fields_rounded(self):
        digest = extract_first_month_events({"eventTrace": [entry(0, "Rent")]}, 30)
        assert digest[30] == [{"n": "Rent", "t": "EXPENSE", "d": 100, "cb": 1001, "ca": 900}]

    def test_empty_trace(self):
        assert extract_first_month_events({"eventTrace": []}, 30) == {}


@pytest.mark.unit
class TestTraceData:
    def result(self):
        return {
            "simulationMode": "stochastic",
            "seed": 77,
            "finalNetWorth": 123.0,
            "monthlySnapshots": [
                {"monthOffset": 0, "calendarYear": 2025, "netWorth": 100.0, "cashBalance": 10.0,
                 "eventIds": ["a"]},
                {"MonthOffset": 1, "CalendarYear": 2025, "NetWorth": 101.0},
            ],
            "eventTrace": [entry(0, "Rent")],
            "realizedPathVariables": [
                {"monthOffset": 0, "month": "2025-01", "spyReturn": 0.01, "bndReturn": 0.002},
                {"MonthOffset": 1, "Month": "2025-02", "SPYReturn": -0.02, "BNDReturn": 0.001},
            ],
        }

    def test_shape(self):
        trace = extract_trace_data(self.result(), 5).to_dict()
        assert trace["monthCount"] == 2
        assert trace["eventCount"] == 1
        assert trace["seed"] == 77
        assert trace["simulationMode"] == "stochastic"
        assert trace["finalNetWorth"] == 123.0
        assert trace["months"][1]["netWorth"] == 101.0
        assert trace["months"][1]["month"] == 1
        assert trace["months"][0]["eventIds"] == ["a"]

    def test_bond_return_renamed(self):
        returns = extract_trace_data(self.result()).market_returns
        assert [r["bondReturn"] for r in returns] == [0.002, 0.001]
        assert [r["spyReturn"] for r in returns] == [0.01, -0.02]
        assert returns[1]["monthString"] == "2025-02"
        assert "bndReturn" not in returns[0]

    def test_seed_falls_back_to_argument(self):
        result = self.result()
        del result["seed"]
        assert extract_trace_data(result, 5).seed == 5

    def test_missing_strings_default_empty(self):
        trace = extract_trace_data({"eventTrace": [{"monthOffset": 3}]})
        event = trace.events[0]
        assert event["name"] == ""
        assert event["amount"] == 0

    def test_dataframe(self):
        df = extract_trace_data(self.result()).to_dataframe()
        assert list(df.index) == [0, 1]
        assert df.loc[1, "netWorth"] == 101.0
        assert df.loc[0, "bondReturn"] == pytest.approx(0.002)
