"""Database management module for InvestLedger."""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

import pandas as pd

from investledger.config import DATE_FORMAT_STORAGE, DATETIME_FORMAT_STORAGE, DEFAULT_DB_NAME
from investledger.data_structures import (
    Asset,
    Broker,
    BrokerPayment,
    BrokerPaymentAllocation,
    Customer,
    CustomerPayment,
    Investment,
)
from investledger.calculations import safe_number
from investledger.exceptions import PersistenceError, TransactionError

logger = logging.getLogger(__name__)

# Money is stored as TEXT so Decimal values round-trip without float drift
sqlite3.register_adapter(Decimal, str)


def _timestamp(value):
    if value is None:
        return datetime.now().strftime(DATETIME_FORMAT_STORAGE)
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT_STORAGE)
    return str(value)


def _day(value):
    if isinstance(value, (datetime, date)):
        return value.strftime(DATE_FORMAT_STORAGE)
    return value


class DatabaseManager:
    """Handles all SQLite database operations.

    Ledger tables (customer_payments, broker_payments) are append-only: there
    are no update or delete methods for them.
    """

    def __init__(self, db_name=DEFAULT_DB_NAME):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._closed = False
        self._in_transaction = False
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.

        Usage:
            with db.transaction():
                db.update_investment(investment)
                db.add_customer_payment(payment)

        Writes made inside the block are committed together; if any exception
        occurs the whole block is rolled back.
        """
        if self._in_transaction:
            yield
            return

        self._in_transaction = True
        try:
            yield
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self._in_transaction = False

    def _commit(self):
        if not self._in_transaction:
            self.conn.commit()

    def _execute(self, query, params=()):
        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            return cursor
        except sqlite3.Error as e:
            logger.error("Query failed: %s", e)
            raise PersistenceError(f"Database operation failed: {e}", {'query': query.split()[0]})

    def _fetch_one(self, query, params=()):
        cursor = self._execute(query, params)
        row = cursor.fetchone()
        if row:
            cols = [description[0] for description in cursor.description]
            return dict(zip(cols, row))
        return None

    def _fetch_all(self, query, params=()):
        cursor = self._execute(query, params)
        cols = [description[0] for description in cursor.description]
        return [dict(zip(cols, row)) for row in cursor.fetchall()]

    def create_tables(self):
        cursor = self.conn.cursor()
        for party in ("customers", "brokers"):
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {party} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    nic TEXT UNIQUE,
                    name TEXT NOT NULL,
                    address TEXT DEFAULT '',
                    city TEXT DEFAULT '',
                    phone TEXT DEFAULT '',
                    created_at TEXT
                )
            """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS assets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER,
                broker_id INTEGER,
                asset_name TEXT NOT NULL,
                asset_type TEXT NOT NULL,
                vehicle_number TEXT DEFAULT '',
                land_address TEXT DEFAULT '',
                estimate_amount TEXT DEFAULT '0',
                description TEXT DEFAULT '',
                is_released INTEGER DEFAULT 0,
                released_at TEXT,
                release_note TEXT DEFAULT '',
                created_at TEXT,
                FOREIGN KEY(customer_id) REFERENCES customers(id),
                FOREIGN KEY(broker_id) REFERENCES brokers(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS investments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                investment_name TEXT DEFAULT '',
                customer_id INTEGER NOT NULL,
                broker_id INTEGER NOT NULL,
                principal TEXT NOT NULL,
                interest_rate TEXT NOT NULL,
                broker_commission_rate TEXT NOT NULL,
                start_date TEXT,
                description TEXT DEFAULT '',
                interest_paid_amount TEXT DEFAULT '0',
                principal_paid_amount TEXT DEFAULT '0',
                total_paid_amount TEXT DEFAULT '0',
                remaining_pending_amount TEXT,
                last_payment_amount TEXT DEFAULT '0',
                last_payment_date TEXT,
                broker_total_paid_amount TEXT DEFAULT '0',
                broker_last_payment_amount TEXT DEFAULT '0',
                broker_last_payment_date TEXT,
                created_at TEXT,
                FOREIGN KEY(customer_id) REFERENCES customers(id),
                FOREIGN KEY(broker_id) REFERENCES brokers(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS investment_assets (
                investment_id INTEGER NOT NULL,
                asset_id INTEGER NOT NULL,
                PRIMARY KEY (investment_id, asset_id),
                FOREIGN KEY(investment_id) REFERENCES investments(id),
                FOREIGN KEY(asset_id) REFERENCES assets(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customer_payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER NOT NULL,
                broker_id INTEGER NOT NULL,
                investment_id INTEGER NOT NULL,
                payment_method TEXT NOT NULL,
                pay_for TEXT NOT NULL,
                paid_amount TEXT NOT NULL,
                interest_part TEXT DEFAULT '0',
                principal_part TEXT DEFAULT '0',
                excess_amount TEXT DEFAULT '0',
                monthly_interest TEXT DEFAULT '0',
                due_months INTEGER DEFAULT 0,
                interest_outstanding_before TEXT DEFAULT '0',
                principal_pending_before TEXT DEFAULT '0',
                total_interest_paid_after TEXT DEFAULT '0',
                total_principal_paid_after TEXT DEFAULT '0',
                total_paid_after TEXT DEFAULT '0',
                remaining_pending_after TEXT DEFAULT '0',
                is_principal_fully_paid_after INTEGER DEFAULT 0,
                note TEXT DEFAULT '',
                paid_at TEXT,
                FOREIGN KEY(investment_id) REFERENCES investments(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS broker_payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                broker_id INTEGER NOT NULL,
                paid_amount TEXT NOT NULL,
                note TEXT DEFAULT '',
                paid_at TEXT,
                FOREIGN KEY(broker_id) REFERENCES brokers(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS broker_payment_allocations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                broker_payment_id INTEGER NOT NULL,
                investment_id INTEGER NOT NULL,
                amount TEXT NOT NULL,
                FOREIGN KEY(broker_payment_id) REFERENCES broker_payments(id),
                FOREIGN KEY(investment_id) REFERENCES investments(id)
            )
        """)

        # Settings Table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

        self.conn.commit()

    # ========== CUSTOMER / BROKER OPERATIONS ==========

    def _add_party(self, table, name, nic, address, city, phone, created_at):
        nic = str(nic).strip().upper() if nic else None
        cursor = self._execute(
            f"INSERT INTO {table} (nic, name, address, city, phone, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (nic, name, address, city, phone, _timestamp(created_at)))
        self._commit()
        return cursor.lastrowid

    def add_customer(self, name, nic=None, address="", city="", phone="", created_at=None):
        return self._add_party("customers", name, nic, address, city, phone, created_at)

    def add_broker(self, name, nic=None, address="", city="", phone="", created_at=None):
        return self._add_party("brokers", name, nic, address, city, phone, created_at)

    def get_customer(self, id):
        row = self._fetch_one("SELECT * FROM customers WHERE id=?", (id,))
        return Customer.from_row(row) if row else None

    def get_customer_by_nic(self, nic):
        row = self._fetch_one("SELECT * FROM customers WHERE nic=?", (str(nic).strip().upper(),))
        return Customer.from_row(row) if row else None

    def get_customers(self):
        return [Customer.from_row(r) for r in self._fetch_all("SELECT * FROM customers ORDER BY id")]

    def get_broker(self, id):
        row = self._fetch_one("SELECT * FROM brokers WHERE id=?", (id,))
        return Broker.from_row(row) if row else None

    def get_broker_by_nic(self, nic):
        row = self._fetch_one("SELECT * FROM brokers WHERE nic=?", (str(nic).strip().upper(),))
        return Broker.from_row(row) if row else None

    def get_brokers(self):
        return [Broker.from_row(r) for r in self._fetch_all("SELECT * FROM brokers ORDER BY id")]

    # ========== ASSET OPERATIONS ==========

    def add_asset(self, asset_name, asset_type, estimate_amount, customer_id=None, broker_id=None,
                  vehicle_number="", land_address="", description="", created_at=None):
        cursor = self._execute("""
            INSERT INTO assets (
                customer_id, broker_id, asset_name, asset_type, vehicle_number,
                land_address, estimate_amount, description, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (customer_id, broker_id, asset_name, asset_type, vehicle_number,
              land_address, safe_number(estimate_amount), description, _timestamp(created_at)))
        self._commit()
        return cursor.lastrowid

    def get_asset(self, id):
        row = self._fetch_one("SELECT * FROM assets WHERE id=?", (id,))
        return Asset.from_row(row) if row else None

    def get_assets(self, ids):
        """Fetch the assets with the given ids (missing ids are simply absent)."""
        ids = list(ids)
        if not ids:
            return []
        placeholders = ','.join(['?'] * len(ids))
        rows = self._fetch_all(f"SELECT * FROM assets WHERE id IN ({placeholders}) ORDER BY id", tuple(ids))
        return [Asset.from_row(r) for r in rows]

    def get_assets_by_customer(self, customer_id):
        rows = self._fetch_all("SELECT * FROM assets WHERE customer_id=? ORDER BY id", (customer_id,))
        return [Asset.from_row(r) for r in rows]

    def get_all_assets(self):
        return [Asset.from_row(r) for r in self._fetch_all("SELECT * FROM assets ORDER BY id")]

    def release_asset(self, asset_id, released_at, note=""):
        self._execute(
            "UPDATE assets SET is_released=1, released_at=?, release_note=? WHERE id=?",
            (_timestamp(released_at), note, asset_id))
        self._commit()

    # ========== INVESTMENT OPERATIONS ==========

    def add_investment(self, investment: Investment):
        cursor = self._execute("""
            INSERT INTO investments (
                investment_name, customer_id, broker_id, principal, interest_rate,
                broker_commission_rate, start_date, description, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (investment.investment_name, investment.customer_id, investment.broker_id,
              investment.principal, investment.interest_rate, investment.broker_commission_rate,
              _day(investment.start_date), investment.description, _timestamp(investment.created_at)))
        investment_id = cursor.lastrowid
        for asset_id in investment.asset_ids:
            self._execute("INSERT INTO investment_assets (investment_id, asset_id) VALUES (?, ?)",
                          (investment_id, asset_id))
        self._commit()
        return investment_id

    def _asset_ids_for(self, investment_id):
        rows = self._fetch_all(
            "SELECT asset_id FROM investment_assets WHERE investment_id=? ORDER BY asset_id",
            (investment_id,))
        return [r['asset_id'] for r in rows]

    def _investments_from_rows(self, rows):
        return [Investment.from_row(r, self._asset_ids_for(r['id'])) for r in rows]

    def get_investment(self, id):
        row = self._fetch_one("SELECT * FROM investments WHERE id=?", (id,))
        if row:
            return Investment.from_row(row, self._asset_ids_for(id))
        return None

    def get_investments_by_customer(self, customer_id):
        rows = self._fetch_all(
            "SELECT * FROM investments WHERE customer_id=? ORDER BY created_at, id", (customer_id,))
        return self._investments_from_rows(rows)

    def get_investments_by_broker(self, broker_id):
        """Get a broker's investments, oldest first."""
        rows = self._fetch_all(
            "SELECT * FROM investments WHERE broker_id=? ORDER BY created_at, id", (broker_id,))
        return self._investments_from_rows(rows)

    def get_investments_by_asset(self, asset_id):
        rows = self._fetch_all("""
            SELECT i.* FROM investments i
            JOIN investment_assets ia ON ia.investment_id = i.id
            WHERE ia.asset_id=?
            ORDER BY i.created_at, i.id
        """, (asset_id,))
        return self._investments_from_rows(rows)

    def get_all_investments(self):
        return self._investments_from_rows(
            self._fetch_all("SELECT * FROM investments ORDER BY created_at, id"))

    def update_investment(self, investment: Investment):
        """Persist the payment-tracking fields of an investment."""
        self._execute("""
            UPDATE investments
            SET interest_paid_amount=?, principal_paid_amount=?, total_paid_amount=?,
                remaining_pending_amount=?, last_payment_amount=?, last_payment_date=?,
                broker_total_paid_amount=?, broker_last_payment_amount=?, broker_last_payment_date=?
            WHERE id=?
        """, (investment.interest_paid_amount, investment.principal_paid_amount,
              investment.total_paid_amount, investment.remaining_pending_amount,
              investment.last_payment_amount, investment.last_payment_date,
              investment.broker_total_paid_amount, investment.broker_last_payment_amount,
              investment.broker_last_payment_date, investment.id))
        self._commit()

    # ========== LEDGER OPERATIONS ==========

    def add_customer_payment(self, payment: CustomerPayment):
        cursor = self._execute("""
            INSERT INTO customer_payments (
                customer_id, broker_id, investment_id, payment_method, pay_for, paid_amount,
                interest_part, principal_part, excess_amount, monthly_interest, due_months,
                interest_outstanding_before, principal_pending_before,
                total_interest_paid_after, total_principal_paid_after, total_paid_after,
                remaining_pending_after, is_principal_fully_paid_after, note, paid_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (payment.customer_id, payment.broker_id, payment.investment_id,
              payment.payment_method, payment.pay_for, payment.paid_amount,
              payment.interest_part, payment.principal_part, payment.excess_amount,
              payment.monthly_interest, payment.due_months,
              payment.interest_outstanding_before, payment.principal_pending_before,
              payment.total_interest_paid_after, payment.total_principal_paid_after,
              payment.total_paid_after, payment.remaining_pending_after,
              int(payment.is_principal_fully_paid_after), payment.note, _timestamp(payment.paid_at)))
        self._commit()
        return cursor.lastrowid

    def get_customer_payments(self, investment_id=None, customer_id=None):
        """Get customer payment rows, newest first."""
        query = "SELECT * FROM customer_payments WHERE 1=1"
        params = []

        if investment_id is not None:
            query += " AND investment_id = ?"
            params.append(investment_id)
        if customer_id is not None:
            query += " AND customer_id = ?"
            params.append(customer_id)

        query += " ORDER BY paid_at DESC, id DESC"
        return [CustomerPayment.from_row(r) for r in self._fetch_all(query, tuple(params))]

    def add_broker_payment(self, payment: BrokerPayment):
        cursor = self._execute(
            "INSERT INTO broker_payments (broker_id, paid_amount, note, paid_at) VALUES (?, ?, ?, ?)",
            (payment.broker_id, payment.paid_amount, payment.note, _timestamp(payment.paid_at)))
        payment_id = cursor.lastrowid
        for allocation in payment.allocations:
            self._execute("""
                INSERT INTO broker_payment_allocations (broker_payment_id, investment_id, amount)
                VALUES (?, ?, ?)
            """, (payment_id, allocation.investment_id, allocation.amount))
        self._commit()
        return payment_id

    def get_broker_payments(self, broker_id):
        """Get a broker's payments with their allocations, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM broker_payments WHERE broker_id=? ORDER BY paid_at DESC, id DESC", (broker_id,))
        payments = []
        for row in rows:
            allocs = self._fetch_all(
                "SELECT investment_id, amount FROM broker_payment_allocations WHERE broker_payment_id=? ORDER BY id",
                (row['id'],))
            payments.append(BrokerPayment(
                id=row['id'],
                broker_id=row['broker_id'],
                paid_amount=safe_number(row['paid_amount']),
                allocations=[BrokerPaymentAllocation(a['investment_id'], safe_number(a['amount']))
                             for a in allocs],
                note=row['note'] or "",
                paid_at=row['paid_at']
            ))
        return payments

    # ========== DATAFRAME VIEWS (REPORTING) ==========

    def _read_df(self, query, params=()):
        try:
            return pd.read_sql_query(query, self.conn, params=tuple(params))
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise PersistenceError(f"Database read failed: {e}")

    def get_customer_payments_df(self, start_date=None, end_date=None):
        query = "SELECT * FROM customer_payments WHERE 1=1"
        params = []

        if start_date:
            query += " AND paid_at >= ?"
            params.append(_timestamp(start_date))
        if end_date:
            query += " AND paid_at < ?"
            params.append(_timestamp(end_date))

        query += " ORDER BY paid_at, id"
        return self._read_df(query, params)

    def get_broker_allocations_df(self, start_date=None, end_date=None):
        """One row per broker payment allocation, joined with its payment."""
        query = """
            SELECT bp.id AS broker_payment_id, bp.broker_id, bp.paid_amount, bp.note, bp.paid_at,
                   a.investment_id, a.amount
            FROM broker_payments bp
            JOIN broker_payment_allocations a ON a.broker_payment_id = bp.id
            WHERE 1=1
        """
        params = []

        if start_date:
            query += " AND bp.paid_at >= ?"
            params.append(_timestamp(start_date))
        if end_date:
            query += " AND bp.paid_at < ?"
            params.append(_timestamp(end_date))

        query += " ORDER BY bp.paid_at, bp.id, a.id"
        return self._read_df(query, params)

    def get_investments_df(self, start_date=None, end_date=None):
        query = "SELECT * FROM investments WHERE 1=1"
        params = []

        if start_date:
            query += " AND created_at >= ?"
            params.append(_timestamp(start_date))
        if end_date:
            query += " AND created_at < ?"
            params.append(_timestamp(end_date))

        query += " ORDER BY created_at, id"
        return self._read_df(query, params)

    def get_customer_payment_history_df(self):
        """Customer payments joined with customer, broker and investment names, newest first."""
        return self._read_df("""
            SELECT cp.id AS payment_id, cp.paid_at,
                   c.nic AS customer_nic, c.name AS customer_name,
                   b.nic AS broker_nic, b.name AS broker_name,
                   cp.investment_id, i.investment_name,
                   cp.payment_method, cp.pay_for, cp.paid_amount,
                   cp.interest_part, cp.principal_part, cp.excess_amount,
                   cp.remaining_pending_after, cp.note
            FROM customer_payments cp
            LEFT JOIN customers c ON c.id = cp.customer_id
            LEFT JOIN brokers b ON b.id = cp.broker_id
            LEFT JOIN investments i ON i.id = cp.investment_id
            ORDER BY cp.paid_at DESC, cp.id DESC
        """)

    def get_broker_payment_history_df(self):
        """One row per broker payment allocation with broker and customer names, newest first."""
        return self._read_df("""
            SELECT bp.id AS broker_payment_id, bp.paid_at,
                   b.nic AS broker_nic, b.name AS broker_name,
                   bp.paid_amount, a.investment_id, i.investment_name,
                   c.nic AS customer_nic, c.name AS customer_name,
                   a.amount AS allocated_amount, bp.note
            FROM broker_payments bp
            JOIN broker_payment_allocations a ON a.broker_payment_id = bp.id
            LEFT JOIN brokers b ON b.id = bp.broker_id
            LEFT JOIN investments i ON i.id = a.investment_id
            LEFT JOIN customers c ON c.id = i.customer_id
            ORDER BY bp.paid_at DESC, bp.id DESC, a.id
        """)

    # ========== SETTINGS ==========

    def get_setting(self, key, default=None):
        """Get a setting value."""
        row = self._fetch_one("SELECT value FROM settings WHERE key=?", (key,))
        return row['value'] if row else default

    def set_setting(self, key, value):
        """Set a setting value."""
        self._execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
        self._commit()
