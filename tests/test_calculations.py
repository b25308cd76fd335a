"""Tests for time and money helpers."""
import os
import sys
import unittest
from datetime import date, datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from investledger.calculations import (
    full_months_elapsed,
    money,
    monthly_interest,
    parse_date,
    safe_number,
)


class TestSafeNumber(unittest.TestCase):

    def test_numbers_pass_through(self):
        self.assertEqual(safe_number(5), Decimal("5"))
        self.assertEqual(safe_number("12.50"), Decimal("12.50"))
        self.assertEqual(safe_number(Decimal("0.1")), Decimal("0.1"))

    def test_float_keeps_its_short_repr(self):
        self.assertEqual(safe_number(0.1), Decimal("0.1"))

    def test_garbage_falls_back_to_default(self):
        for value in (None, "", "abc", "NaN", "inf", float("nan"), True):
            self.assertEqual(safe_number(value), Decimal("0"), value)
        self.assertEqual(safe_number("x", default=7), Decimal("7"))


class TestMoney(unittest.TestCase):

    def test_half_up_rounding(self):
        self.assertEqual(money("2.345"), Decimal("2.35"))
        self.assertEqual(money("2.344"), Decimal("2.34"))
        self.assertEqual(money(None), Decimal("0.00"))


class TestParseDate(unittest.TestCase):

    def test_supported_inputs(self):
        self.assertEqual(parse_date("2026-01-02"), datetime(2026, 1, 2))
        self.assertEqual(parse_date("2026-01-02 10:30:00"), datetime(2026, 1, 2, 10, 30))
        self.assertEqual(parse_date("2026-01-02T10:30:00"), datetime(2026, 1, 2, 10, 30))
        self.assertEqual(parse_date(date(2026, 1, 2)), datetime(2026, 1, 2))

    def test_invalid_inputs(self):
        self.assertIsNone(parse_date(None))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date("not a date"))


class TestFullMonthsElapsed(unittest.TestCase):

    def test_day_of_month_rule(self):
        start = "2026-01-02"
        self.assertEqual(full_months_elapsed(start, datetime(2026, 2, 1)), 0)
        self.assertEqual(full_months_elapsed(start, datetime(2026, 2, 2)), 1)
        self.assertEqual(full_months_elapsed(start, datetime(2027, 1, 1)), 11)
        self.assertEqual(full_months_elapsed(start, datetime(2027, 1, 2)), 12)

    def test_invalid_or_future_start(self):
        self.assertEqual(full_months_elapsed(None, datetime(2026, 2, 2)), 0)
        self.assertEqual(full_months_elapsed("garbage", datetime(2026, 2, 2)), 0)
        self.assertEqual(full_months_elapsed("2026-05-01", datetime(2026, 2, 2)), 0)

    def test_non_decreasing_in_now(self):
        start = "2025-03-31"
        previous = 0
        for month in range(1, 13):
            for day in (1, 15, 28):
                current = full_months_elapsed(start, datetime(2026, month, day))
                self.assertGreaterEqual(current, previous)
                self.assertGreaterEqual(current, 0)
                previous = current


class TestMonthlyInterest(unittest.TestCase):

    def test_flat_percentage(self):
        self.assertEqual(monthly_interest(100000, 10), Decimal("10000"))
        self.assertEqual(monthly_interest("10000", "2.5"), Decimal("250"))

    def test_never_negative(self):
        self.assertEqual(monthly_interest(-100, 10), Decimal("0"))
        self.assertEqual(monthly_interest(None, 10), Decimal("0"))


if __name__ == '__main__':
    unittest.main()
