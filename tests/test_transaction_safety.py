"""Tests for transaction safety and structured error handling."""
import os
import sqlite3
import sys
import unittest
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from investledger.database import DatabaseManager
from investledger.engine import LedgerEngine
from investledger.exceptions import LedgerError, PersistenceError, TransactionError

CUSTOMER_NIC = "200012345678"
BROKER_NIC = "199912345678"


class TestExceptions(unittest.TestCase):
    """Test that custom exceptions work correctly."""

    def test_details_in_message(self):
        err = LedgerError("Something failed", {'investment_id': 3})
        self.assertEqual(err.message, "Something failed")
        self.assertIn("investment_id", str(err))

    def test_message_without_details(self):
        self.assertEqual(str(LedgerError("plain")), "plain")

    def test_transaction_error_is_persistence_error(self):
        self.assertTrue(issubclass(TransactionError, PersistenceError))


class TestTransactionRollback(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.now = datetime(2026, 1, 20, 10, 0, 0)
        self.engine = LedgerEngine(self.db, clock=lambda: self.now)

        customer_id = self.db.add_customer("Nimal Perera", CUSTOMER_NIC)
        self.db.add_broker("Sunil Broker", BROKER_NIC)
        self.asset = self.db.add_asset("Car", "vehicle", 2500000, customer_id=customer_id)
        self.investment = self.engine.create_investment("Car loan", CUSTOMER_NIC, BROKER_NIC, [self.asset],
                                                        "50000", "2", "10", "2026-01-02")

    def tearDown(self):
        self.db.close()

    def test_sqlite_error_becomes_transaction_error(self):
        with self.assertRaises(TransactionError):
            with self.db.transaction():
                self.db.set_setting("arrears_days", 45)
                raise sqlite3.OperationalError("disk I/O error")

        self.assertIsNone(self.db.get_setting("arrears_days"))

    def test_nested_transaction_commits_once(self):
        with self.db.transaction():
            with self.db.transaction():
                self.db.set_setting("a", 1)
            self.db.set_setting("b", 2)
        self.assertEqual(self.db.get_setting("a"), "1")
        self.assertEqual(self.db.get_setting("b"), "2")

    def test_failed_ledger_append_rolls_back_investment(self):
        with patch.object(self.db, 'add_customer_payment',
                          side_effect=PersistenceError("Database operation failed: disk full")):
            with self.assertRaises(PersistenceError):
                self.engine.record_customer_payment(CUSTOMER_NIC, BROKER_NIC, self.investment.id,
                                                    "51000", "interest+principal", "cash")

        stored = self.db.get_investment(self.investment.id)
        self.assertEqual(stored.total_paid_amount, Decimal("0"))
        self.assertIsNone(stored.remaining_pending_amount)
        self.assertFalse(self.db.get_asset(self.asset).is_released)
        self.assertEqual(self.db.get_customer_payments(), [])

    def test_failed_asset_release_rolls_back_everything(self):
        with patch.object(self.db, 'release_asset', side_effect=sqlite3.OperationalError("locked")):
            with self.assertRaises(TransactionError):
                self.engine.record_customer_payment(CUSTOMER_NIC, BROKER_NIC, self.investment.id,
                                                    "51000", "interest+principal", "cash")

        self.assertEqual(self.db.get_customer_payments(), [])
        self.assertEqual(self.db.get_investment(self.investment.id).total_paid_amount, Decimal("0"))

    def test_failed_broker_ledger_rolls_back_investments(self):
        self.engine.record_customer_payment(CUSTOMER_NIC, BROKER_NIC, self.investment.id,
                                            "1000", "interest", "cash")

        with patch.object(self.db, 'add_broker_payment',
                          side_effect=PersistenceError("Database operation failed")):
            with self.assertRaises(PersistenceError):
                self.engine.pay_broker(BROKER_NIC, "100")

        stored = self.db.get_investment(self.investment.id)
        self.assertEqual(stored.broker_total_paid_amount, Decimal("0"))
        self.assertEqual(self.engine.get_broker_summary(BROKER_NIC).total_pending, Decimal("100"))


if __name__ == '__main__':
    unittest.main()
