"""Financial event model.

Events form a tagged union: every variant shares the base fields
(id, month offset, amount, optional end offset, metadata) and declares its
own kernel ``event_type``, ``frequency``, the driver keys it may carry and
any kind-specific payload. Each variant validates itself against the
horizon; events are immutable once compiled.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, FrozenSet, Mapping, Optional


class EventType(Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    ONE_TIME_EVENT = "ONE_TIME_EVENT"
    ACCOUNT_CONTRIBUTION = "ACCOUNT_CONTRIBUTION"
    SOCIAL_SECURITY_INCOME = "SOCIAL_SECURITY_INCOME"
    ROTH_CONVERSION = "ROTH_CONVERSION"


class DriverKey(Enum):
    """Sensitivity-attribution tags understood by the kernel."""

    INCOME_EMPLOYMENT = "income:employment"
    INCOME_RETIREMENT = "income:retirement"
    EXPENSE_FIXED = "expense:fixed"
    EXPENSE_SHOCK = "expense:shock"
    HEALTHCARE = "healthcare"
    DEBT = "debt"
    CONTRIBUTION_RETIREMENT = "contribution:retirement"
    CONTRIBUTION_TAXABLE = "contribution:taxable"


MONTHLY = "monthly"
ONE_TIME = "one-time"  # hyphenated; the kernel does not accept "one_time"

ORDINARY_INCOME = "ordinary_income"
TAX_FREE = "tax_free"
SOCIAL_SECURITY_BENEFIT = "social_security_benefit"

_INCOME_KEYS = frozenset({DriverKey.INCOME_EMPLOYMENT, DriverKey.INCOME_RETIREMENT})


@dataclass(frozen=True)
class FinancialEvent:
    """Base for all compiled events. Not emitted directly."""

    id: str
    month_offset: int
    amount: float
    description: str = ""
    end_offset: Optional[int] = None
    driver_key: Optional[DriverKey] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    event_type: ClassVar[EventType]
    frequency: ClassVar[str] = MONTHLY
    allowed_driver_keys: ClassVar[FrozenSet[DriverKey]] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def check(self, horizon_months: int) -> None:
        """Raise ValueError if this event violates the timeline invariants."""
        if not 0 <= self.month_offset < horizon_months:
            raise ValueError(
                f"{self.id}: monthOffset {self.month_offset} outside [0, {horizon_months})"
            )
        if self.end_offset is not None and not self.month_offset <= self.end_offset < horizon_months:
            raise ValueError(
                f"{self.id}: endDateOffset {self.end_offset} outside "
                f"[{self.month_offset}, {horizon_months})"
            )
        if self.driver_key is not None and self.driver_key not in self.allowed_driver_keys:
            raise ValueError(
                f"{self.id}: driverKey {self.driver_key.value} not allowed on "
                f"{self.event_type.value}"
            )
        self.check_payload()

    def check_payload(self) -> None:
        """Variant-specific validation."""

    def payload(self) -> dict:
        """Variant-specific top-level fields."""
        return {}

    def to_dict(self) -> dict:
        metadata = dict(self.metadata)
        if self.end_offset is not None:
            metadata["endDateOffset"] = self.end_offset
        record = {
            "id": self.id,
            "type": self.event_type.value,
            "description": self.description,
            "monthOffset": self.month_offset,
            "amount": self.amount,
            "frequency": self.frequency,
            "metadata": metadata,
        }
        if self.driver_key is not None:
            record["driverKey"] = self.driver_key.value
        record.update(self.payload())
        return record


@dataclass(frozen=True)
class IncomeEvent(FinancialEvent):
    tax_profile: str = ORDINARY_INCOME
    income_type: str = "salary"

    event_type = EventType.INCOME
    allowed_driver_keys = _INCOME_KEYS

    def check_payload(self) -> None:
        if self.amount < 0:
            raise ValueError(f"{self.id}: income amount must be non-negative")
        if self.tax_profile not in (ORDINARY_INCOME, TAX_FREE):
            raise ValueError(f"{self.id}: unsupported taxProfile {self.tax_profile}")

    def payload(self) -> dict:
        return {"incomeType": self.income_type, "taxProfile": self.tax_profile}


@dataclass(frozen=True)
class ExpenseEvent(FinancialEvent):
    expense_nature: str = "fixed"

    event_type = EventType.EXPENSE
    allowed_driver_keys = frozenset({DriverKey.EXPENSE_FIXED, DriverKey.HEALTHCARE, DriverKey.DEBT})

    def check_payload(self) -> None:
        if self.amount < 0:
            raise ValueError(f"{self.id}: expense amount must be non-negative")

    def payload(self) -> dict:
        return {"expenseNature": self.expense_nature}


@dataclass(frozen=True)
class OneTimeEvent(FinancialEvent):
    """A single cash movement; the sign of ``amount`` encodes direction."""

    tax_profile: Optional[str] = None
    expense_nature: Optional[str] = None

    event_type = EventType.ONE_TIME_EVENT
    frequency = ONE_TIME
    allowed_driver_keys = frozenset({DriverKey.INCOME_EMPLOYMENT, DriverKey.EXPENSE_SHOCK})

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    def check_payload(self) -> None:
        if self.end_offset is not None:
            raise ValueError(f"{self.id}: one-time events cannot carry an end offset")
        if self.is_expense and self.driver_key is DriverKey.INCOME_EMPLOYMENT:
            raise ValueError(f"{self.id}: expense tagged with an income driver")

    def payload(self) -> dict:
        extra = {}
        if self.tax_profile:
            extra["taxProfile"] = self.tax_profile
        if self.expense_nature:
            extra["expenseNature"] = self.expense_nature
        return extra


@dataclass(frozen=True)
class ContributionEvent(FinancialEvent):
    target_account_type: str = ""
    tax_treatment: str = "pre_tax"

    event_type = EventType.ACCOUNT_CONTRIBUTION
    allowed_driver_keys = frozenset({DriverKey.CONTRIBUTION_RETIREMENT, DriverKey.CONTRIBUTION_TAXABLE})

    def check_payload(self) -> None:
        if not self.target_account_type:
            raise ValueError(f"{self.id}: contribution needs a target account")
        if self.tax_treatment not in ("pre_tax", "post_tax"):
            raise ValueError(f"{self.id}: unsupported taxTreatment {self.tax_treatment}")

    def payload(self) -> dict:
        return {
            "targetAccountType": self.target_account_type,
            "taxTreatment": self.tax_treatment,
        }


@dataclass(frozen=True)
class SocialSecurityEvent(FinancialEvent):
    event_type = EventType.SOCIAL_SECURITY_INCOME
    allowed_driver_keys = frozenset({DriverKey.INCOME_RETIREMENT})

    def check_payload(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"{self.id}: benefit must be positive")

    def payload(self) -> dict:
        return {"taxProfile": SOCIAL_SECURITY_BENEFIT}


@dataclass(frozen=True)
class RothConversionEvent(FinancialEvent):
    """User-directed conversion; never attributed to a sensitivity driver."""

    source_account_type: str = "tax_deferred"
    target_account_type: str = "roth"

    event_type = EventType.ROTH_CONVERSION
    frequency = ONE_TIME

    def check_payload(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"{self.id}: conversion amount must be positive")

    def payload(self) -> dict:
        return {
            "sourceAccountType": self.source_account_type,
            "targetAccountType": self.target_account_type,
        }
