"""Customer payment service for InvestLedger.

This service handles incoming customer payments:
- Splitting a payment across interest, principal and excess
- Updating the investment's cumulative totals
- Appending the immutable payment ledger row
- Releasing collateral once an investment is settled
"""
import dataclasses
import logging
from datetime import datetime

from investledger.calculations import ZERO, parse_date, safe_number
from investledger.config import (
    ALLOCATION_INTEREST,
    ALLOCATION_INTEREST_PRINCIPAL,
    ALLOCATION_PRINCIPAL,
    DATETIME_FORMAT_STORAGE,
)
from investledger.data_structures import CustomerAllocation, CustomerPayment, Investment, PaymentReceipt
from investledger.exceptions import (
    AssetNotFoundError,
    BrokerNotFoundError,
    CustomerNotFoundError,
    InvestmentNotFoundError,
    NoBackingAssetsError,
    OwnershipMismatchError,
)
from investledger.services.accrual import compute_accrual
from investledger.validators import (
    normalize_nic,
    require_fields,
    validate_allocation_mode,
    validate_payment_method,
    validate_positive_amount,
    validate_record_id,
)

logger = logging.getLogger(__name__)


def allocate_customer_payment(investment: Investment, pay_amount, mode, now) -> CustomerAllocation:
    """Split ``pay_amount`` across interest and principal for one investment.

    The interest a payment may absorb covers everything overdue plus the
    month currently in progress, even when no month is overdue yet. Whatever
    the chosen mode cannot absorb is reported as ``excess_amount`` and is not
    applied to the investment.

    Args:
        investment: Investment snapshot; it is not modified.
        pay_amount: Amount received (> 0).
        mode: "interest", "principal" or "interest+principal".
        now: Reference instant for the accrual.

    Returns:
        CustomerAllocation holding the split and an updated copy of the investment.
    """
    amount = validate_positive_amount(pay_amount)
    mode = validate_allocation_mode(mode)

    accrual = compute_accrual(investment, now)
    interest_paid_before = safe_number(investment.interest_paid_amount)
    principal_pending_before = accrual.principal_pending

    interest_outstanding = max(
        accrual.past_due_interest + accrual.monthly_interest - interest_paid_before, ZERO)

    remaining = amount
    interest_part = ZERO
    principal_part = ZERO

    if mode in (ALLOCATION_INTEREST, ALLOCATION_INTEREST_PRINCIPAL):
        interest_part = min(interest_outstanding, remaining)
        remaining -= interest_part

    if mode in (ALLOCATION_PRINCIPAL, ALLOCATION_INTEREST_PRINCIPAL):
        principal_part = min(max(principal_pending_before, ZERO), remaining)
        remaining -= principal_part

    excess_amount = max(remaining, ZERO)

    paid_at = (parse_date(now) or datetime.now()).strftime(DATETIME_FORMAT_STORAGE)
    updated = dataclasses.replace(
        investment,
        asset_ids=list(investment.asset_ids),
        interest_paid_amount=interest_paid_before + interest_part,
        principal_paid_amount=safe_number(investment.principal_paid_amount) + principal_part,
        total_paid_amount=safe_number(investment.total_paid_amount) + amount,
        remaining_pending_amount=max(principal_pending_before - principal_part, ZERO),
        last_payment_amount=amount,
        last_payment_date=paid_at
    )

    arrears_after = max(accrual.past_due_interest - updated.interest_paid_amount, ZERO)
    settled = updated.remaining_pending_amount <= 0 and arrears_after <= 0

    return CustomerAllocation(
        pay_amount=amount,
        mode=mode,
        interest_part=interest_part,
        principal_part=principal_part,
        excess_amount=excess_amount,
        monthly_interest=accrual.monthly_interest,
        due_months=accrual.due_months,
        past_due_interest=accrual.past_due_interest,
        interest_outstanding=interest_outstanding,
        principal_pending_before=principal_pending_before,
        arrears_after=arrears_after,
        settled=settled,
        updated_investment=updated
    )


class CustomerPaymentService:
    """Handles customer payment operations.

    All preconditions are checked before anything is written; the investment
    update, the ledger append and any asset release are committed as one
    database transaction.
    """

    def __init__(self, db_manager, clock=None):
        """Initialize CustomerPaymentService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
            clock: Zero-argument callable returning "now" (default: datetime.now).
        """
        self.db = db_manager
        self.clock = clock or datetime.now

    def _load_payment_context(self, customer_nic, broker_nic, investment_id):
        """Resolve and cross-check customer, broker, investment and assets."""
        require_fields(customer_nic=customer_nic, broker_nic=broker_nic, investment_id=investment_id)
        customer_nic = normalize_nic(customer_nic, "customer_nic")
        broker_nic = normalize_nic(broker_nic, "broker_nic")
        investment_id = validate_record_id(investment_id, "investment_id")

        customer = self.db.get_customer_by_nic(customer_nic)
        if not customer:
            raise CustomerNotFoundError(nic=customer_nic)

        broker = self.db.get_broker_by_nic(broker_nic)
        if not broker:
            raise BrokerNotFoundError(nic=broker_nic)

        investment = self.db.get_investment(investment_id)
        if not investment:
            raise InvestmentNotFoundError(investment_id)

        if investment.customer_id != customer.id:
            raise OwnershipMismatchError("investment", investment_id, "customer", customer_nic)
        if investment.broker_id != broker.id:
            raise OwnershipMismatchError("investment", investment_id, "broker", broker_nic)

        if not investment.asset_ids:
            raise NoBackingAssetsError(investment_id)
        assets = self.db.get_assets(investment.asset_ids)
        if len(assets) != len(investment.asset_ids):
            found = {a.id for a in assets}
            raise AssetNotFoundError([a for a in investment.asset_ids if a not in found])

        return customer, broker, investment, assets

    def record_payment(self, customer_nic, broker_nic, investment_id, pay_amount,
                       pay_for, payment_method, note=""):
        """Record a customer payment against one investment.

        Args:
            customer_nic: NIC of the paying customer.
            broker_nic: NIC of the investment's broker.
            investment_id: ID of the investment being paid.
            pay_amount: Amount received (> 0).
            pay_for: Allocation mode ("interest", "principal", "interest+principal").
            payment_method: "cash" or "check".
            note: Optional free-text note.

        Returns:
            PaymentReceipt with the ledger row, the allocation and released asset ids.

        Raises:
            ValidationError: Malformed NIC, id, amount, mode or method.
            NotFoundError: Customer, broker, investment or asset missing.
            ConsistencyError: Ownership mismatch or no backing assets.
            PersistenceError: The store failed; nothing was written.
        """
        require_fields(customer_nic=customer_nic, broker_nic=broker_nic, investment_id=investment_id,
                       pay_amount=pay_amount, pay_for=pay_for, payment_method=payment_method)
        amount = validate_positive_amount(pay_amount)
        mode = validate_allocation_mode(pay_for)
        method = validate_payment_method(payment_method)
        customer, broker, investment, assets = self._load_payment_context(
            customer_nic, broker_nic, investment_id)

        now = self.clock()
        allocation = allocate_customer_payment(investment, amount, mode, now)
        updated = allocation.updated_investment

        payment = CustomerPayment(
            id=None,
            customer_id=customer.id,
            broker_id=broker.id,
            investment_id=investment.id,
            payment_method=method,
            pay_for=mode,
            paid_amount=amount,
            interest_part=allocation.interest_part,
            principal_part=allocation.principal_part,
            excess_amount=allocation.excess_amount,
            monthly_interest=allocation.monthly_interest,
            due_months=allocation.due_months,
            interest_outstanding_before=allocation.interest_outstanding,
            principal_pending_before=allocation.principal_pending_before,
            total_interest_paid_after=updated.interest_paid_amount,
            total_principal_paid_after=updated.principal_paid_amount,
            total_paid_after=updated.total_paid_amount,
            remaining_pending_after=updated.remaining_pending_amount,
            is_principal_fully_paid_after=updated.remaining_pending_amount <= 0,
            note=str(note or "").strip(),
            paid_at=updated.last_payment_date
        )

        released = []
        with self.db.transaction():
            self.db.update_investment(updated)
            payment.id = self.db.add_customer_payment(payment)

            if allocation.settled:
                release_note = f"Released after full settlement of investment {investment.investment_name or investment.id}"
                for asset in assets:
                    if asset.is_released:
                        continue
                    self.db.release_asset(asset.id, payment.paid_at, release_note)
                    released.append(asset.id)

        logger.info("Customer payment %s recorded for investment %s: interest=%s principal=%s excess=%s",
                    payment.id, investment.id, allocation.interest_part,
                    allocation.principal_part, allocation.excess_amount)
        if released:
            logger.info("Investment %s settled, released assets %s", investment.id, released)

        return PaymentReceipt(payment=payment, allocation=allocation, released_asset_ids=released)

    def get_payment_history(self, investment_id):
        """Get the payment ledger of one investment, newest first.

        Raises:
            InvestmentNotFoundError: If the investment doesn't exist.
        """
        investment_id = validate_record_id(investment_id, "investment_id")
        if not self.db.get_investment(investment_id):
            raise InvestmentNotFoundError(investment_id)
        return self.db.get_customer_payments(investment_id=investment_id)
