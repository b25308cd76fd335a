"""Broker commission service for InvestLedger.

A broker earns ``broker_commission_rate`` percent of the interest the
company has actually collected on each of their investments. Commission
therefore unlocks only as customers pay interest, and whatever has unlocked
but not been paid out is the broker's pending balance.

Brokers are paid in lump sums that are spread across their investments,
oldest investment first.
"""
import dataclasses
import logging
from datetime import datetime
from typing import List

from investledger.calculations import HUNDRED, ZERO, parse_date, safe_number
from investledger.config import DATETIME_FORMAT_STORAGE
from investledger.data_structures import (
    BrokerAllocation,
    BrokerPayment,
    BrokerPaymentAllocation,
    BrokerPending,
    BrokerSummary,
    Investment,
)
from investledger.exceptions import BrokerNotFoundError, BrokerOverpayError, NothingPayableError
from investledger.validators import normalize_nic, require_fields, validate_positive_amount

logger = logging.getLogger(__name__)


def compute_broker_pending(investment: Investment) -> BrokerPending:
    """Commission unlocked by collected interest, minus what was already paid."""
    interest_paid = safe_number(investment.interest_paid_amount)
    rate = safe_number(investment.broker_commission_rate)
    total_commission = max(interest_paid * rate / HUNDRED, ZERO)
    paid = safe_number(investment.broker_total_paid_amount)
    return BrokerPending(
        investment_id=investment.id,
        total_commission=total_commission,
        paid=paid,
        pending=max(total_commission - paid, ZERO)
    )


def allocate_broker_payment(investments: List[Investment], pay_amount, now, broker_nic=None) -> BrokerAllocation:
    """Spread a lump broker payment over the given investments, oldest first.

    Args:
        investments: The broker's investments (any order).
        pay_amount: Amount paid to the broker (> 0).
        now: Payment instant, stamped on every touched investment.
        broker_nic: Only used to label errors.

    Returns:
        BrokerAllocation with one allocation per touched investment and the
        updated investment copies.

    Raises:
        NothingPayableError: No commission is pending.
        BrokerOverpayError: ``pay_amount`` exceeds the pending total.
    """
    amount = validate_positive_amount(pay_amount)

    ordered = sorted(investments, key=lambda inv: inv.created_sort_key)
    pendings = [(inv, compute_broker_pending(inv)) for inv in ordered]
    total_pending = sum((p.pending for _, p in pendings), ZERO)

    if total_pending <= 0:
        raise NothingPayableError(broker_nic)
    if amount > total_pending:
        raise BrokerOverpayError(amount, total_pending)

    paid_at = (parse_date(now) or datetime.now()).strftime(DATETIME_FORMAT_STORAGE)
    remaining = amount
    allocations = []
    updated = []

    for investment, pending in pendings:
        if remaining <= 0:
            break
        if pending.pending <= 0:
            continue

        share = min(pending.pending, remaining)
        remaining -= share
        allocations.append(BrokerPaymentAllocation(investment_id=investment.id, amount=share))
        updated.append(dataclasses.replace(
            investment,
            asset_ids=list(investment.asset_ids),
            broker_total_paid_amount=pending.paid + share,
            broker_last_payment_amount=share,
            broker_last_payment_date=paid_at
        ))

    return BrokerAllocation(
        pay_amount=amount,
        total_pending_before=total_pending,
        allocations=allocations,
        updated_investments=updated
    )


class BrokerCommissionService:
    """Handles broker commission summaries and payouts."""

    def __init__(self, db_manager, clock=None):
        """Initialize BrokerCommissionService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
            clock: Zero-argument callable returning "now" (default: datetime.now).
        """
        self.db = db_manager
        self.clock = clock or datetime.now

    def _get_broker(self, broker_nic):
        require_fields(broker_nic=broker_nic)
        nic = normalize_nic(broker_nic, "broker_nic")
        broker = self.db.get_broker_by_nic(nic)
        if not broker:
            raise BrokerNotFoundError(nic=nic)
        return broker

    def get_broker_summary(self, broker_nic) -> BrokerSummary:
        """Get per-investment commission rows and totals for one broker.

        Raises:
            InvalidNICError: If the NIC is malformed.
            BrokerNotFoundError: If no broker has this NIC.
        """
        broker = self._get_broker(broker_nic)
        rows = []
        total_commission = ZERO
        total_paid = ZERO
        total_pending = ZERO

        for investment in self.db.get_investments_by_broker(broker.id):
            pending = compute_broker_pending(investment)
            rows.append({
                'investment_id': investment.id,
                'investment_name': investment.investment_name,
                'customer_id': investment.customer_id,
                'interest_paid_amount': safe_number(investment.interest_paid_amount),
                'broker_commission_rate': investment.broker_commission_rate,
                'total_commission': pending.total_commission,
                'paid': pending.paid,
                'pending': pending.pending,
                'broker_last_payment_date': investment.broker_last_payment_date,
                'created_at': investment.created_at
            })
            total_commission += pending.total_commission
            total_paid += pending.paid
            total_pending += pending.pending

        return BrokerSummary(
            broker=broker,
            rows=rows,
            total_commission=total_commission,
            total_paid=total_paid,
            total_pending=total_pending
        )

    def pay_broker(self, broker_nic, pay_amount, note="") -> BrokerPayment:
        """Pay a broker a lump sum against their pending commission.

        Every touched investment is saved and one ledger row is appended,
        all in a single transaction.

        Returns:
            The stored BrokerPayment (with its id and allocations).

        Raises:
            ValidationError: Malformed NIC or amount.
            BrokerNotFoundError: If no broker has this NIC.
            NothingPayableError: Nothing is pending for this broker.
            BrokerOverpayError: The amount exceeds the pending total.
        """
        require_fields(broker_nic=broker_nic, pay_amount=pay_amount)
        amount = validate_positive_amount(pay_amount)
        broker = self._get_broker(broker_nic)

        investments = self.db.get_investments_by_broker(broker.id)
        try:
            allocation = allocate_broker_payment(investments, amount, self.clock(), broker.nic)
        except (NothingPayableError, BrokerOverpayError) as e:
            logger.warning("Broker payment rejected for %s: %s", broker.nic, e.message)
            raise

        payment = BrokerPayment(
            id=None,
            broker_id=broker.id,
            paid_amount=allocation.pay_amount,
            allocations=allocation.allocations,
            note=str(note or "").strip(),
            paid_at=allocation.updated_investments[0].broker_last_payment_date
        )

        with self.db.transaction():
            for investment in allocation.updated_investments:
                self.db.update_investment(investment)
            payment.id = self.db.add_broker_payment(payment)

        logger.info("Broker payment %s of %s recorded for %s across %d investment(s)",
                    payment.id, payment.paid_amount, broker.nic, len(payment.allocations))
        return payment

    def get_payment_history(self, broker_nic) -> List[BrokerPayment]:
        """Get a broker's payment ledger, newest first."""
        broker = self._get_broker(broker_nic)
        return self.db.get_broker_payments(broker.id)
