"""Account/allocation builder.

Turns total investable assets, bucket percentages and an allocation
strategy into concrete per-account holdings for the kernel.

Holdings use share-based accounting at a normalized price of 1.0 per unit
so that ``quantity * price == value`` always holds and no holding ends up
with a pathological one-share / huge-cost-basis shape.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from finplan_sim.core.packet.params import (
    AccountBuckets,
    AssetAllocation,
    Concentration,
    DEFAULT_STOCK_RATIO,
    RebalancingConfig,
)

logger = logging.getLogger(__name__)

NORMALIZED_PRICE_PER_UNIT = 1.0

CONCENTRATED_ASSET_CLASS = "individual_stock"
CONCENTRATED_HOLDING_ID = "concentrated-equity"

# Request allocation keys -> kernel asset classes
CUSTOM_ASSET_CLASS_MAP: Dict[str, str] = {
    "usStocks": "stocks",
    "internationalStocks": "international_stocks",
    "bonds": "bonds",
    "cash": "cash",
    "leveragedSpy": "leveraged_spy",
}

# Share of the stock allocation held domestically when only a ratio is given
DOMESTIC_STOCK_SHARE = 0.6


@dataclass
class Holding:
    """A single position inside an account."""

    id: str
    asset_class: str
    quantity: float
    cost_basis_per_unit: float
    cost_basis_total: float
    current_market_price_per_unit: float
    current_market_value_total: float
    liquidity_tier: str = "LIQUID"

    @classmethod
    def priced(cls, asset_class: str, value: float,
               holding_id: Optional[str] = None) -> Optional["Holding"]:
        """Build a holding worth ``value`` at the normalized unit price."""
        if value <= 0:
            return None
        price = NORMALIZED_PRICE_PER_UNIT
        return cls(
            id=holding_id or f"{asset_class}-holding",
            asset_class=asset_class,
            quantity=value / price,
            cost_basis_per_unit=price,
            cost_basis_total=value,
            current_market_price_per_unit=price,
            current_market_value_total=value,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assetClass": self.asset_class,
            "liquidityTier": self.liquidity_tier,
            "quantity": self.quantity,
            "costBasisPerUnit": self.cost_basis_per_unit,
            "costBasisTotal": self.cost_basis_total,
            "currentMarketPricePerUnit": self.current_market_price_per_unit,
            "currentMarketValueTotal": self.current_market_value_total,
        }


@dataclass
class Account:
    total_value: float = 0.0
    holdings: List[Holding] = field(default_factory=list)

    def get_holding(self, asset_class: str) -> Optional[Holding]:
        for h in self.holdings:
            if h.asset_class == asset_class:
                return h
        return None

    def to_dict(self) -> dict:
        return {
            "totalValue": self.total_value,
            "holdings": [h.to_dict() for h in self.holdings],
        }


@dataclass
class AccountHoldings:
    """Initial account state handed to the kernel."""

    cash: float
    taxable: Account
    tax_deferred: Account
    roth: Account
    hsa: Optional[Account] = None

    @property
    def total_value(self) -> float:
        total = self.cash + self.taxable.total_value + self.tax_deferred.total_value
        total += self.roth.total_value
        if self.hsa is not None:
            total += self.hsa.total_value
        return total

    def to_dict(self) -> dict:
        accounts = {
            "cash": self.cash,
            "taxable": self.taxable.to_dict(),
            "tax_deferred": self.tax_deferred.to_dict(),
            "roth": self.roth.to_dict(),
        }
        if self.hsa is not None:
            accounts["hsa"] = self.hsa.to_dict()
        return accounts


def build_account(total_value: float, stock_ratio: float = DEFAULT_STOCK_RATIO,
                  custom_allocations: Optional[Dict[str, float]] = None) -> Account:
    """Split one bucket into holdings by stock ratio or custom percentages."""
    if total_value <= 0:
        return Account()

    if custom_allocations:
        splits = [
            (asset_class, total_value * custom_allocations.get(key, 0) / 100)
            for key, asset_class in CUSTOM_ASSET_CLASS_MAP.items()
        ]
    else:
        splits = [
            ("stocks", total_value * stock_ratio),
            ("bonds", total_value * (1 - stock_ratio)),
        ]

    holdings = [h for h in (Holding.priced(cls, value) for cls, value in splits) if h]
    return Account(total_value=total_value, holdings=holdings)


def concentration_amounts(investable_assets: float,
                          concentration: Optional[Concentration]) -> Tuple[float, float]:
    """Return ``(base_amount, held_amount)`` for the concentrated position.

    ``base_amount`` always comes from the clamped percentage and drives the
    bucket split. ``held_amount`` honors an instant-loss override, but never
    exceeds ``base_amount``, so a caller cannot inflate the position.
    """
    if concentration is None:
        return 0.0, 0.0
    pct = max(0.0, min(100.0, concentration.concentrated_pct or 0.0))
    base_amount = investable_assets * pct / 100
    override = concentration.override_value
    if override is not None and override >= 0:
        return base_amount, max(0.0, min(override, base_amount))
    return base_amount, base_amount


def build_accounts(
    investable_assets: float,
    buckets: Optional[AccountBuckets] = None,
    concentration: Optional[Concentration] = None,
    stock_ratio: float = DEFAULT_STOCK_RATIO,
    custom_allocations: Optional[Dict[str, float]] = None,
) -> AccountHoldings:
    """Distribute investable assets across buckets and asset classes.

    The concentrated carve-out is taken first; the remainder (computed from
    the original, non-overridden percentage) is split by bucket percentages
    (default 10/30/60/0/0). The concentrated holding is appended to the
    taxable bucket.
    """
    base_concentrated, concentrated = concentration_amounts(investable_assets, concentration)
    remaining = investable_assets - base_concentrated
    allocation = buckets or AccountBuckets()

    def bucket(pct: float) -> Account:
        return build_account(remaining * pct / 100, stock_ratio, custom_allocations)

    taxable = bucket(allocation.taxable)
    if concentrated > 0:
        taxable.total_value += concentrated
        taxable.holdings.append(
            Holding.priced(CONCENTRATED_ASSET_CLASS, concentrated, CONCENTRATED_HOLDING_ID)
        )

    hsa_amount = remaining * allocation.hsa / 100
    return AccountHoldings(
        cash=remaining * allocation.cash / 100,
        taxable=taxable,
        tax_deferred=bucket(allocation.tax_deferred),
        roth=bucket(allocation.roth),
        hsa=build_account(hsa_amount, stock_ratio, custom_allocations) if hsa_amount > 0 else None,
    )


def build_strategy_settings(
    asset_allocation: Optional[AssetAllocation],
    stock_ratio: float = DEFAULT_STOCK_RATIO,
    rebalancing: Optional[RebalancingConfig] = None,
) -> dict:
    """Kernel strategy settings: target allocation plus rebalancing rules.

    Targets are fractions. Custom allocations always use the fixed strategy;
    a requested glide path is overridden.
    """
    strategy = asset_allocation.strategy if asset_allocation else "fixed"
    retirement_age = asset_allocation.retirement_age if asset_allocation else 65
    custom = asset_allocation.custom_allocations if asset_allocation else None

    if custom:
        allocations = {
            CUSTOM_ASSET_CLASS_MAP[key]: pct / 100
            for key, pct in custom.items()
            if pct
        }
        if strategy != "fixed":
            logger.warning("Custom allocations override %s strategy to fixed", strategy)
            strategy = "fixed"
    else:
        allocations = {
            "stocks": stock_ratio * DOMESTIC_STOCK_SHARE,
            "international_stocks": stock_ratio * (1 - DOMESTIC_STOCK_SHARE),
            "bonds": 1.0 - stock_ratio,
        }

    rebalancing = rebalancing or RebalancingConfig()
    return {
        "assetAllocation": {
            "strategyType": strategy,
            "allocations": allocations,
            "rebalanceThreshold": 0.05,
            "targetRetirementAge": retirement_age,
        },
        "rebalancing": {
            "method": rebalancing.method,
            "thresholdPercentage": rebalancing.threshold_pct,
            "frequency": rebalancing.frequency,
            "minimumTradeSize": 100,
            "taxAwarenessLevel": "basic",
        },
    }
