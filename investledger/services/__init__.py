"""Services package for InvestLedger business logic.

This package contains the accrual model and the focused service classes
behind the LedgerEngine facade.
"""

from .accrual import compute_accrual, aggregate_accruals, aggregate_status, classify_status
from .customer_payment_service import CustomerPaymentService, allocate_customer_payment
from .commission_service import BrokerCommissionService, allocate_broker_payment, compute_broker_pending
from .investment_service import InvestmentService

__all__ = ['compute_accrual', 'aggregate_accruals', 'aggregate_status', 'classify_status',
           'CustomerPaymentService', 'allocate_customer_payment',
           'BrokerCommissionService', 'allocate_broker_payment', 'compute_broker_pending',
           'InvestmentService']
