"""Boundary translation between kernel field names and the API's names.

The kernel is not consistent about casing: depending on the entry point a
record may use ``monthOffset`` or ``MonthOffset``, ``bndReturn`` or
``BNDReturn``. Every extractor reads kernel output through the tables and
helpers here, so no other module special-cases naming.

Tables map a canonical (API) name to the tuple of source aliases tried in
order. Lookup is null-coalescing: a present ``0`` or ``False`` wins over a
later alias.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

FieldTable = Dict[str, Tuple[str, ...]]


def pick(record: Optional[Mapping], *names: str, default: Any = None) -> Any:
    """Return the first non-None value found under any of ``names``."""
    if not record:
        return default
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return default


def dig(record: Optional[Mapping], path: Iterable[str]) -> Any:
    """Follow a key path through nested mappings, None if any hop is missing."""
    node: Any = record
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def remap(record: Optional[Mapping], table: FieldTable, default: Any = 0) -> Dict[str, Any]:
    """Translate one kernel record into canonical names using ``table``."""
    return {
        canonical: pick(record, *aliases, default=default)
        for canonical, aliases in table.items()
    }


def cased(name: str) -> Tuple[str, str]:
    """camelCase name plus its PascalCase twin."""
    return (name, name[0].upper() + name[1:])


# Replay result containers
REPLAY_COLLECTIONS: FieldTable = {
    "monthlySnapshots": cased("monthlySnapshots"),
    "eventTrace": cased("eventTrace"),
    "realizedPathVariables": cased("realizedPathVariables"),
    "yearlyData": cased("yearlyData"),
}

YEARLY_FIELDS: FieldTable = {
    "year": cased("year"),
    "age": cased("age"),
    "startBalance": cased("startNetWorth"),
    "endBalance": cased("endNetWorth"),
    "totalIncome": cased("totalIncome"),
    "totalExpenses": cased("totalExpenses"),
    "contributions": cased("totalContributions"),
    "withdrawals": cased("totalWithdrawals"),
    "investmentGrowth": cased("investmentGrowth"),
}

MONTH_FIELDS: FieldTable = {
    "month": cased("monthOffset"),
    "year": cased("calendarYear"),
    "calendarMonth": cased("calendarMonth"),
    "age": cased("age"),
    "netWorth": cased("netWorth"),
    "cash": cased("cashBalance"),
    "taxable": cased("taxableBalance"),
    "taxDeferred": cased("taxDeferredBalance"),
    "roth": cased("rothBalance"),
    "income": cased("incomeThisMonth"),
    "expenses": cased("expensesThisMonth"),
}

EVENT_FIELDS: FieldTable = {
    "month": cased("monthOffset"),
    "id": cased("eventId"),
    "name": cased("eventName"),
    "type": cased("eventType"),
    "amount": cased("amount"),
    "description": cased("description"),
    "netWorthBefore": cased("netWorthBefore"),
    "netWorthAfter": cased("netWorthAfter"),
    "cashBefore": cased("cashBefore"),
    "cashAfter": cased("cashAfter"),
}

MARKET_RETURN_FIELDS: FieldTable = {
    "month": cased("monthOffset"),
    "monthString": cased("month"),
    "spyReturn": ("spyReturn", "SPYReturn", "SpyReturn"),
    "bondReturn": ("bndReturn", "BNDReturn", "bondReturn", "BondReturn"),
    "intlReturn": cased("intlReturn"),
    "inflation": cased("inflation"),
    "homeValueGrowth": cased("homeValueGrowth"),
    "weightedReturn": cased("weightedReturn"),
}

# Kernel statistics names -> canonical statistics schema
STATISTICS_FIELDS: FieldTable = {
    "finalNetWorthP5": ("finalNetWorthP5", "p5FinalValue", "FinalNetWorthP5"),
    "finalNetWorthP10": ("finalNetWorthP10", "p10FinalValue", "FinalNetWorthP10"),
    "finalNetWorthP25": ("finalNetWorthP25", "p25FinalValue", "FinalNetWorthP25"),
    "finalNetWorthP50": ("finalNetWorthP50", "p50FinalValue", "FinalNetWorthP50"),
    "finalNetWorthP75": ("finalNetWorthP75", "p75FinalValue", "FinalNetWorthP75"),
    "finalNetWorthP90": ("finalNetWorthP90", "p90FinalValue", "FinalNetWorthP90"),
    "finalNetWorthP95": ("finalNetWorthP95", "p95FinalValue", "FinalNetWorthP95"),
    "minCashP5": cased("minCashP5"),
    "minCashP50": cased("minCashP50"),
    "minCashP95": cased("minCashP95"),
    "runwayP5": cased("runwayP5"),
    "runwayP50": cased("runwayP50"),
    "runwayP95": cased("runwayP95"),
    "successRate": ("successRate", "probabilityOfSuccess", "SuccessRate", "ProbabilityOfSuccess"),
    "everBreachProbability": cased("everBreachProbability"),
    "breachedPathCount": cased("breachedPathCount"),
    "numberOfRuns": ("numberOfRuns", "NumberOfRuns", "successfulPaths", "SuccessfulPaths"),
    "baseSeed": cased("baseSeed"),
}

EXEMPLAR_FIELDS: FieldTable = {
    "pathSeed": cased("pathSeed"),
    "pathIndex": cased("pathIndex"),
    "selectionCriterion": cased("selectionCriterion"),
    "terminalWealth": cased("terminalWealth"),
}
