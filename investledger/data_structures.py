from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional

from investledger.calculations import ZERO, parse_date, safe_number


def _row_kwargs(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the dataclass fields out of a database row dict."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in row.items() if k in names}


@dataclass
class Customer:
    id: int
    name: str
    nic: Optional[str] = None
    address: str = ""
    city: str = ""
    phone: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_row_kwargs(cls, row))


@dataclass
class Broker:
    id: int
    name: str
    nic: Optional[str] = None
    address: str = ""
    city: str = ""
    phone: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(**_row_kwargs(cls, row))


@dataclass
class Asset:
    id: int
    asset_name: str
    asset_type: str
    estimate_amount: Decimal = ZERO
    customer_id: Optional[int] = None
    broker_id: Optional[int] = None
    vehicle_number: str = ""
    land_address: str = ""
    description: str = ""
    is_released: bool = False
    released_at: Optional[str] = None
    release_note: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        kwargs = _row_kwargs(cls, row)
        kwargs['estimate_amount'] = safe_number(kwargs.get('estimate_amount'))
        kwargs['is_released'] = bool(kwargs.get('is_released'))
        return cls(**kwargs)


@dataclass
class Investment:
    """A loan extended to one customer, secured by assets, brokered by one broker.

    ``remaining_pending_amount`` is None until the first customer payment;
    until then the pending principal is derived from principal minus paid.
    """
    id: Optional[int]
    customer_id: int
    broker_id: int
    principal: Decimal
    interest_rate: Decimal
    broker_commission_rate: Decimal
    start_date: Optional[str]
    asset_ids: List[int] = field(default_factory=list)
    investment_name: str = ""
    description: str = ""
    interest_paid_amount: Decimal = ZERO
    principal_paid_amount: Decimal = ZERO
    total_paid_amount: Decimal = ZERO
    remaining_pending_amount: Optional[Decimal] = None
    last_payment_amount: Decimal = ZERO
    last_payment_date: Optional[str] = None
    broker_total_paid_amount: Decimal = ZERO
    broker_last_payment_amount: Decimal = ZERO
    broker_last_payment_date: Optional[str] = None
    created_at: Optional[str] = None

    MONEY_FIELDS = ('principal', 'interest_rate', 'broker_commission_rate',
                    'interest_paid_amount', 'principal_paid_amount', 'total_paid_amount',
                    'last_payment_amount', 'broker_total_paid_amount',
                    'broker_last_payment_amount')

    @property
    def principal_pending(self) -> Decimal:
        if self.remaining_pending_amount is not None:
            return max(safe_number(self.remaining_pending_amount), ZERO)
        return max(safe_number(self.principal) - safe_number(self.principal_paid_amount), ZERO)

    @property
    def created_sort_key(self):
        return (parse_date(self.created_at) or datetime.min, self.id or 0)

    @classmethod
    def from_row(cls, row, asset_ids=None):
        kwargs = _row_kwargs(cls, row)
        for name in cls.MONEY_FIELDS:
            kwargs[name] = safe_number(kwargs.get(name))
        remaining = kwargs.get('remaining_pending_amount')
        kwargs['remaining_pending_amount'] = None if remaining is None else safe_number(remaining)
        kwargs['asset_ids'] = list(asset_ids or [])
        return cls(**kwargs)


@dataclass
class CustomerPayment:
    """Immutable ledger row for one customer payment."""
    id: Optional[int]
    customer_id: int
    broker_id: int
    investment_id: int
    payment_method: str
    pay_for: str
    paid_amount: Decimal
    interest_part: Decimal
    principal_part: Decimal
    excess_amount: Decimal
    monthly_interest: Decimal
    due_months: int
    interest_outstanding_before: Decimal
    principal_pending_before: Decimal
    total_interest_paid_after: Decimal
    total_principal_paid_after: Decimal
    total_paid_after: Decimal
    remaining_pending_after: Decimal
    is_principal_fully_paid_after: bool
    note: str = ""
    paid_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        kwargs = _row_kwargs(cls, row)
        for f in fields(cls):
            if f.type is Decimal:
                kwargs[f.name] = safe_number(kwargs.get(f.name))
        kwargs['due_months'] = int(kwargs.get('due_months') or 0)
        kwargs['is_principal_fully_paid_after'] = bool(kwargs.get('is_principal_fully_paid_after'))
        return cls(**kwargs)


@dataclass
class BrokerPaymentAllocation:
    investment_id: int
    amount: Decimal


@dataclass
class BrokerPayment:
    """Immutable ledger row for one lump commission payment to a broker."""
    id: Optional[int]
    broker_id: int
    paid_amount: Decimal
    allocations: List[BrokerPaymentAllocation] = field(default_factory=list)
    note: str = ""
    paid_at: Optional[str] = None


# =============================================================================
# CALCULATION RESULTS
# =============================================================================

@dataclass
class AccrualResult:
    monthly_interest: Decimal
    due_months: int
    past_due_interest: Decimal
    interest_paid_amount: Decimal
    arrears_interest: Decimal
    principal_pending: Decimal
    arrears_months_count: int
    status: str


@dataclass
class AccrualSummary:
    """Accrual figures summed across a customer's investments."""
    investments_count: int
    monthly_interest: Decimal
    past_due_interest: Decimal
    interest_paid_amount: Decimal
    arrears_interest: Decimal
    principal_pending: Decimal
    status: str


@dataclass
class CustomerAllocation:
    """Outcome of splitting one customer payment across interest and principal."""
    pay_amount: Decimal
    mode: str
    interest_part: Decimal
    principal_part: Decimal
    excess_amount: Decimal
    monthly_interest: Decimal
    due_months: int
    past_due_interest: Decimal
    interest_outstanding: Decimal
    principal_pending_before: Decimal
    arrears_after: Decimal
    settled: bool
    updated_investment: Investment


@dataclass
class PaymentReceipt:
    payment: CustomerPayment
    allocation: CustomerAllocation
    released_asset_ids: List[int] = field(default_factory=list)


@dataclass
class BrokerPending:
    investment_id: Optional[int]
    total_commission: Decimal
    paid: Decimal
    pending: Decimal


@dataclass
class BrokerAllocation:
    pay_amount: Decimal
    total_pending_before: Decimal
    allocations: List[BrokerPaymentAllocation]
    updated_investments: List[Investment]


@dataclass
class BrokerSummary:
    broker: Broker
    rows: List[Dict[str, Any]]
    total_commission: Decimal
    total_paid: Decimal
    total_pending: Decimal


@dataclass
class DashboardSummary:
    granularity: str
    year: int
    month: int
    start: datetime
    end: datetime
    labels: List[str]
    series: Dict[str, List[float]]
    totals: Dict[str, float]
    monthly_review: Dict[str, Any]
