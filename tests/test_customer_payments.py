"""Tests for customer payment allocation, recording and settlement."""
import os
import sys
import unittest
from datetime import datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from investledger.data_structures import Investment
from investledger.database import DatabaseManager
from investledger.engine import LedgerEngine
from investledger.exceptions import (
    BrokerNotFoundError,
    ConsistencyError,
    CustomerNotFoundError,
    InvalidAmountError,
    InvalidNICError,
    InvestmentNotFoundError,
    NoBackingAssetsError,
    OwnershipMismatchError,
    ValidationError,
)
from investledger.services.customer_payment_service import allocate_customer_payment

CUSTOMER_NIC = "200012345678"
OTHER_CUSTOMER_NIC = "987654321V"
BROKER_NIC = "199912345678"
OTHER_BROKER_NIC = "123456789X"


def make_investment(**overrides):
    values = dict(
        id=1, customer_id=1, broker_id=1,
        principal=Decimal("100000"), interest_rate=Decimal("10"),
        broker_commission_rate=Decimal("5"), start_date="2026-01-02",
        asset_ids=[1]
    )
    values.update(overrides)
    return Investment(**values)


class TestAllocateCustomerPayment(unittest.TestCase):
    """Pure allocation, no database."""

    def test_interest_then_principal_split(self):
        # 10000 interest outstanding (current month), 8000 principal pending
        inv = make_investment(principal_paid_amount=Decimal("92000"))
        result = allocate_customer_payment(inv, Decimal("15000"), "interest+principal", datetime(2026, 1, 20))

        self.assertEqual(result.interest_outstanding, Decimal("10000"))
        self.assertEqual(result.principal_pending_before, Decimal("8000"))
        self.assertEqual(result.interest_part, Decimal("10000"))
        self.assertEqual(result.principal_part, Decimal("5000"))
        self.assertEqual(result.excess_amount, Decimal("0"))
        self.assertEqual(result.updated_investment.remaining_pending_amount, Decimal("3000"))
        self.assertFalse(result.settled)

    def test_current_month_included_even_when_nothing_is_due(self):
        result = allocate_customer_payment(make_investment(), Decimal("25000"), "interest", datetime(2026, 1, 3))

        self.assertEqual(result.due_months, 0)
        self.assertEqual(result.interest_part, Decimal("10000"))
        self.assertEqual(result.excess_amount, Decimal("15000"))

    def test_overdue_plus_current_month(self):
        result = allocate_customer_payment(make_investment(), Decimal("50000"), "interest", datetime(2026, 3, 5))

        self.assertEqual(result.due_months, 2)
        self.assertEqual(result.interest_outstanding, Decimal("30000"))
        self.assertEqual(result.interest_part, Decimal("30000"))
        self.assertEqual(result.excess_amount, Decimal("20000"))

    def test_principal_mode_ignores_interest(self):
        result = allocate_customer_payment(make_investment(), Decimal("40000"), "principal", datetime(2026, 3, 5))

        self.assertEqual(result.interest_part, Decimal("0"))
        self.assertEqual(result.principal_part, Decimal("40000"))
        self.assertEqual(result.updated_investment.interest_paid_amount, Decimal("0"))
        self.assertEqual(result.updated_investment.remaining_pending_amount, Decimal("60000"))
        self.assertEqual(result.arrears_after, Decimal("20000"))

    def test_parts_always_sum_to_amount(self):
        inv = make_investment(principal=Decimal("33333.33"), interest_rate=Decimal("3.3"))
        for amount in ("0.01", "1099.99", "1100.00", "1100.01", "34433.32", "99999.99"):
            for mode in ("interest", "principal", "interest+principal"):
                result = allocate_customer_payment(inv, Decimal(amount), mode, datetime(2026, 1, 15))
                total = result.interest_part + result.principal_part + result.excess_amount
                self.assertEqual(total, Decimal(amount), (amount, mode))
                self.assertGreaterEqual(result.excess_amount, 0)

    def test_cumulative_fields_never_decrease(self):
        inv = make_investment(interest_paid_amount=Decimal("10000"),
                              principal_paid_amount=Decimal("5000"),
                              total_paid_amount=Decimal("15000"))
        result = allocate_customer_payment(inv, Decimal("1"), "principal", datetime(2026, 2, 10))
        updated = result.updated_investment

        self.assertGreaterEqual(updated.interest_paid_amount, inv.interest_paid_amount)
        self.assertGreaterEqual(updated.principal_paid_amount, inv.principal_paid_amount)
        self.assertEqual(updated.total_paid_amount, Decimal("15001"))
        self.assertEqual(updated.last_payment_amount, Decimal("1"))
        self.assertEqual(updated.last_payment_date, "2026-02-10 00:00:00")

    def test_input_snapshot_is_not_modified(self):
        inv = make_investment()
        allocate_customer_payment(inv, Decimal("5000"), "interest", datetime(2026, 1, 5))
        self.assertEqual(inv.interest_paid_amount, Decimal("0"))
        self.assertIsNone(inv.remaining_pending_amount)

    def test_invalid_amount_and_mode(self):
        with self.assertRaises(InvalidAmountError):
            allocate_customer_payment(make_investment(), 0, "interest", datetime(2026, 1, 5))
        with self.assertRaises(ValidationError):
            allocate_customer_payment(make_investment(), 10, "bonus", datetime(2026, 1, 5))


class TestRecordPayment(unittest.TestCase):
    """Recording payments through the engine against an in-memory database."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.now = datetime(2026, 1, 10, 9, 0, 0)
        self.engine = LedgerEngine(self.db, clock=lambda: self.now)

        self.customer_id = self.db.add_customer("Nimal Perera", CUSTOMER_NIC)
        self.other_customer_id = self.db.add_customer("Kamal Silva", OTHER_CUSTOMER_NIC)
        self.broker_id = self.db.add_broker("Sunil Broker", BROKER_NIC)
        self.other_broker_id = self.db.add_broker("Other Broker", OTHER_BROKER_NIC)

        self.car = self.db.add_asset("Car", "vehicle", 2500000, customer_id=self.customer_id,
                                     vehicle_number="CAB-1234")
        self.land = self.db.add_asset("Land", "land", 5000000, customer_id=self.customer_id,
                                      land_address="12 Temple Road")

        self.investment = self.engine.create_investment(
            "Car loan", CUSTOMER_NIC, BROKER_NIC, [self.car, self.land],
            "50000", "2", "10", "2026-01-02")

    def tearDown(self):
        self.db.close()

    def pay(self, amount, mode="interest+principal", method="cash", **overrides):
        args = dict(customer_nic=CUSTOMER_NIC, broker_nic=BROKER_NIC,
                    investment_id=self.investment.id, pay_amount=amount,
                    pay_for=mode, payment_method=method)
        args.update(overrides)
        return self.engine.record_customer_payment(**args)

    def test_payment_updates_investment_and_ledger(self):
        receipt = self.pay("5000", note="  first  ")

        self.assertEqual(receipt.payment.interest_part, Decimal("1000"))
        self.assertEqual(receipt.payment.principal_part, Decimal("4000"))
        self.assertEqual(receipt.payment.note, "first")
        self.assertEqual(receipt.released_asset_ids, [])

        stored = self.db.get_investment(self.investment.id)
        self.assertEqual(stored.interest_paid_amount, Decimal("1000"))
        self.assertEqual(stored.principal_paid_amount, Decimal("4000"))
        self.assertEqual(stored.total_paid_amount, Decimal("5000"))
        self.assertEqual(stored.remaining_pending_amount, Decimal("46000"))
        self.assertEqual(stored.last_payment_date, "2026-01-10 09:00:00")

        history = self.engine.customer_payment_service.get_payment_history(self.investment.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].id, receipt.payment.id)
        self.assertEqual(history[0].remaining_pending_after, Decimal("46000"))
        self.assertFalse(history[0].is_principal_fully_paid_after)

    def test_settlement_releases_every_backing_asset(self):
        receipt = self.pay("51000")

        self.assertTrue(receipt.allocation.settled)
        self.assertTrue(receipt.payment.is_principal_fully_paid_after)
        self.assertEqual(sorted(receipt.released_asset_ids), sorted([self.car, self.land]))
        for asset_id in (self.car, self.land):
            asset = self.db.get_asset(asset_id)
            self.assertTrue(asset.is_released)
            self.assertEqual(asset.released_at, "2026-01-10 09:00:00")
            self.assertIn("Car loan", asset.release_note)

        accrual = self.engine.get_investment_accrual(self.investment.id)
        self.assertEqual(accrual.status, "complete")

    def test_principal_paid_but_arrears_outstanding_does_not_settle(self):
        self.now = datetime(2026, 3, 5)
        # 2 months due (2000) but only principal paid
        receipt = self.pay("50000", mode="principal")

        self.assertFalse(receipt.allocation.settled)
        self.assertEqual(receipt.allocation.arrears_after, Decimal("2000"))
        self.assertFalse(self.db.get_asset(self.car).is_released)

        receipt = self.pay("2000", mode="interest")
        self.assertTrue(receipt.allocation.settled)
        self.assertTrue(self.db.get_asset(self.car).is_released)

    def test_excess_is_recorded_but_not_applied(self):
        receipt = self.pay("60000")

        self.assertEqual(receipt.payment.excess_amount, Decimal("9000"))
        stored = self.db.get_investment(self.investment.id)
        self.assertEqual(stored.principal_paid_amount, Decimal("50000"))
        self.assertEqual(stored.interest_paid_amount, Decimal("1000"))
        self.assertEqual(stored.total_paid_amount, Decimal("60000"))

    def test_validation_failures_write_nothing(self):
        cases = [
            (InvalidNICError, dict(customer_nic="bad-nic")),
            (InvalidNICError, dict(broker_nic="12")),
            (ValidationError, dict(investment_id="abc")),
            (InvalidAmountError, dict(pay_amount="-5")),
            (ValidationError, dict(mode="fees")),
            (ValidationError, dict(method="card")),
            (ValidationError, dict(customer_nic=None)),
            (CustomerNotFoundError, dict(customer_nic="111111111V")),
            (BrokerNotFoundError, dict(broker_nic="111111111V")),
            (InvestmentNotFoundError, dict(investment_id=999)),
            (OwnershipMismatchError, dict(customer_nic=OTHER_CUSTOMER_NIC)),
            (OwnershipMismatchError, dict(broker_nic=OTHER_BROKER_NIC)),
        ]
        for error, overrides in cases:
            amount = overrides.pop("pay_amount", "1000")
            with self.assertRaises(error, msg=str(overrides)):
                self.pay(amount, **overrides)

        stored = self.db.get_investment(self.investment.id)
        self.assertEqual(stored.total_paid_amount, Decimal("0"))
        self.assertIsNone(stored.remaining_pending_amount)
        self.assertEqual(self.db.get_customer_payments(), [])

    def test_investment_without_assets_is_rejected(self):
        bare = Investment(id=None, customer_id=self.customer_id, broker_id=self.broker_id,
                          principal=Decimal("1000"), interest_rate=Decimal("1"),
                          broker_commission_rate=Decimal("1"), start_date="2026-01-02")
        bare_id = self.db.add_investment(bare)

        with self.assertRaises(NoBackingAssetsError) as ctx:
            self.pay("100", investment_id=bare_id)
        self.assertIsInstance(ctx.exception, ConsistencyError)
        self.assertEqual(self.db.get_customer_payments(), [])

    def test_history_for_unknown_investment(self):
        with self.assertRaises(InvestmentNotFoundError):
            self.engine.customer_payment_service.get_payment_history(404)


if __name__ == '__main__':
    unittest.main()
