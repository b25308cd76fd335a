"""Business logic engine for InvestLedger.

This module provides the LedgerEngine class which acts as a facade over
the focused service classes in investledger/services/. Every service shares
the engine's database manager and clock.

Service Classes:
    - InvestmentService: Investment origination and status listing
    - CustomerPaymentService: Customer payment allocation and settlement
    - BrokerCommissionService: Broker commission summaries and payouts
"""
from datetime import datetime

from investledger.reports import ReportGenerator
from investledger.services import BrokerCommissionService, CustomerPaymentService, InvestmentService
from investledger.services.accrual import aggregate_accruals, compute_accrual
from investledger.exceptions import BrokerNotFoundError, CustomerNotFoundError, InvestmentNotFoundError
from investledger.validators import normalize_nic, validate_asset, validate_record_id


class LedgerEngine:
    """Handles business logic, interfacing with DatabaseManager.

    Attributes:
        db: DatabaseManager instance for data persistence.
        clock: Zero-argument callable returning "now".
        investment_service: InvestmentService instance (lazy-loaded).
        customer_payment_service: CustomerPaymentService instance (lazy-loaded).
        commission_service: BrokerCommissionService instance (lazy-loaded).
        report_generator: ReportGenerator instance (lazy-loaded).
    """

    def __init__(self, db_manager, clock=None):
        self.db = db_manager
        self.clock = clock or datetime.now
        self._investment_service = None
        self._customer_payment_service = None
        self._commission_service = None
        self._report_generator = None

    @property
    def investment_service(self):
        """Lazy-load InvestmentService instance."""
        if self._investment_service is None:
            self._investment_service = InvestmentService(self.db, self.clock)
        return self._investment_service

    @property
    def customer_payment_service(self):
        """Lazy-load CustomerPaymentService instance."""
        if self._customer_payment_service is None:
            self._customer_payment_service = CustomerPaymentService(self.db, self.clock)
        return self._customer_payment_service

    @property
    def commission_service(self):
        """Lazy-load BrokerCommissionService instance."""
        if self._commission_service is None:
            self._commission_service = BrokerCommissionService(self.db, self.clock)
        return self._commission_service

    @property
    def report_generator(self):
        """Lazy-load ReportGenerator instance."""
        if self._report_generator is None:
            self._report_generator = ReportGenerator(self.db, self.clock)
        return self._report_generator

    # ========== PARTIES & ASSETS ==========

    def _resolve_party(self, nic, lookup, not_found):
        if not nic:
            return None
        nic = normalize_nic(nic)
        party = lookup(nic)
        if not party:
            raise not_found(nic=nic)
        return party.id

    def add_asset(self, asset_name, asset_type, estimate_amount, customer_nic=None, broker_nic=None,
                  vehicle_number="", land_address="", description=""):
        """Register a collateral asset, optionally tied to a customer and/or broker by NIC."""
        fields = validate_asset(asset_name, asset_type, estimate_amount, vehicle_number, land_address)
        customer_id = self._resolve_party(customer_nic, self.db.get_customer_by_nic, CustomerNotFoundError)
        broker_id = self._resolve_party(broker_nic, self.db.get_broker_by_nic, BrokerNotFoundError)
        return self.db.add_asset(customer_id=customer_id, broker_id=broker_id,
                                 description=str(description or "").strip(),
                                 created_at=self.clock(), **fields)

    # ========== INVESTMENTS ==========

    def create_investment(self, investment_name, customer_nic, broker_nic, asset_ids,
                          principal, interest_rate, commission_rate, start_date, description=""):
        return self.investment_service.create_investment(
            investment_name, customer_nic, broker_nic, asset_ids,
            principal, interest_rate, commission_rate, start_date, description
        )

    def get_investment_accrual(self, investment_id):
        """Accrual of one investment as of the engine clock."""
        investment_id = validate_record_id(investment_id)
        investment = self.db.get_investment(investment_id)
        if not investment:
            raise InvestmentNotFoundError(investment_id)
        return compute_accrual(investment, self.clock())

    def get_customer_accrual(self, customer_nic):
        """Accrual summed across all of a customer's investments."""
        nic = normalize_nic(customer_nic, "customer_nic")
        customer = self.db.get_customer_by_nic(nic)
        if not customer:
            raise CustomerNotFoundError(nic=nic)
        now = self.clock()
        return aggregate_accruals([compute_accrual(inv, now)
                                   for inv in self.db.get_investments_by_customer(customer.id)])

    # ========== PAYMENTS ==========

    def record_customer_payment(self, customer_nic, broker_nic, investment_id, pay_amount,
                                pay_for, payment_method, note=""):
        """Record a customer payment.

        Delegates to CustomerPaymentService.
        """
        return self.customer_payment_service.record_payment(
            customer_nic, broker_nic, investment_id, pay_amount, pay_for, payment_method, note
        )

    def get_broker_summary(self, broker_nic):
        return self.commission_service.get_broker_summary(broker_nic)

    def pay_broker(self, broker_nic, pay_amount, note=""):
        """Pay a broker against their pending commission.

        Delegates to BrokerCommissionService.
        """
        return self.commission_service.pay_broker(broker_nic, pay_amount, note)

    # ========== REPORTS ==========

    def get_customer_flow(self):
        return self.report_generator.get_customer_flow(self.clock())

    def get_customer_flow_by_nic(self, nic):
        return self.report_generator.get_customer_flow_by_nic(nic, self.clock())

    def get_broker_flow(self):
        return self.report_generator.get_broker_flow()

    def get_asset_flow(self, arrears_days=None):
        return self.report_generator.get_asset_flow(self.clock(), arrears_days)

    def get_dashboard_summary(self, granularity="month", year=None, month=None):
        return self.report_generator.get_dashboard_summary(granularity, year, month)
