"""Tests for the SQLite repository and settings table."""
import os
import sys
import unittest
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from investledger.data_structures import Investment
from investledger.database import DatabaseManager


class TestDatabaseManager(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.customer_id = self.db.add_customer("Nimal Perera", " 123456789v ", city="Kandy")
        self.broker_id = self.db.add_broker("Sunil Broker", "199912345678")

    def tearDown(self):
        self.db.close()

    def test_nic_stored_upper_case(self):
        customer = self.db.get_customer(self.customer_id)
        self.assertEqual(customer.nic, "123456789V")
        self.assertEqual(self.db.get_customer_by_nic("123456789v").id, self.customer_id)
        self.assertEqual(customer.city, "Kandy")
        self.assertIsNone(self.db.get_customer_by_nic("000000000V"))
        self.assertEqual(self.db.get_broker(self.broker_id).name, "Sunil Broker")

    def test_assets_by_owner_and_release(self):
        mine = self.db.add_asset("Car", "vehicle", "1500000.50", customer_id=self.customer_id)
        self.db.add_asset("Gold", "other", 1000)

        assets = self.db.get_assets_by_customer(self.customer_id)
        self.assertEqual([a.id for a in assets], [mine])
        self.assertEqual(assets[0].estimate_amount, Decimal("1500000.50"))
        self.assertEqual(len(self.db.get_all_assets()), 2)
        self.assertEqual(self.db.get_assets([mine, 999])[0].id, mine)

        self.db.release_asset(mine, "2026-03-01 10:00:00", "settled")
        asset = self.db.get_asset(mine)
        self.assertTrue(asset.is_released)
        self.assertEqual(asset.release_note, "settled")

    def test_investment_round_trip_keeps_decimals(self):
        asset = self.db.add_asset("Car", "vehicle", 1, customer_id=self.customer_id)
        inv = Investment(id=None, customer_id=self.customer_id, broker_id=self.broker_id,
                         principal=Decimal("33333.33"), interest_rate=Decimal("2.75"),
                         broker_commission_rate=Decimal("12.5"), start_date="2026-01-02",
                         asset_ids=[asset], investment_name="Car loan")
        inv.id = self.db.add_investment(inv)

        inv.interest_paid_amount = Decimal("916.666575")
        inv.remaining_pending_amount = Decimal("0.01")
        self.db.update_investment(inv)

        stored = self.db.get_investment(inv.id)
        self.assertEqual(stored.principal, Decimal("33333.33"))
        self.assertEqual(stored.interest_paid_amount, Decimal("916.666575"))
        self.assertEqual(stored.remaining_pending_amount, Decimal("0.01"))
        self.assertEqual(stored.asset_ids, [asset])
        self.assertEqual([i.id for i in self.db.get_investments_by_customer(self.customer_id)], [inv.id])
        self.assertEqual([i.id for i in self.db.get_investments_by_asset(asset)], [inv.id])

    def test_settings(self):
        self.assertEqual(self.db.get_setting("arrears_days", 30), 30)
        self.db.set_setting("arrears_days", 45)
        self.db.set_setting("arrears_days", 60)
        self.assertEqual(self.db.get_setting("arrears_days"), "60")


if __name__ == '__main__':
    unittest.main()
