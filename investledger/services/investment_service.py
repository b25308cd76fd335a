"""Investment origination and status listing."""
import logging
from datetime import datetime

from investledger.config import DATE_FORMAT_STORAGE, DATETIME_FORMAT_STORAGE
from investledger.data_structures import Investment
from investledger.exceptions import (
    AssetNotFoundError,
    AssetReleasedError,
    BrokerNotFoundError,
    CustomerNotFoundError,
    InvestmentNotFoundError,
    OwnershipMismatchError,
    ValidationError,
)
from investledger.services.accrual import compute_accrual
from investledger.validators import (
    normalize_nic,
    require_fields,
    validate_date,
    validate_non_negative,
    validate_record_id,
)

logger = logging.getLogger(__name__)


class InvestmentService:
    """Creates investments and reports their accrual status."""

    def __init__(self, db_manager, clock=None):
        self.db = db_manager
        self.clock = clock or datetime.now

    def create_investment(self, investment_name, customer_nic, broker_nic, asset_ids,
                          principal, interest_rate, commission_rate, start_date, description=""):
        """Create a new investment secured by one or more assets.

        Args:
            investment_name: Display name of the investment.
            customer_nic: NIC of the borrowing customer.
            broker_nic: NIC of the introducing broker.
            asset_ids: IDs of the collateral assets (at least one).
            principal: Amount lent (>= 0).
            interest_rate: Monthly interest rate in percent (>= 0).
            commission_rate: Broker commission rate in percent (>= 0).
            start_date: Date interest starts accruing from.
            description: Optional free text.

        Returns:
            The stored Investment.

        Raises:
            ValidationError: Missing or malformed input.
            NotFoundError: Customer, broker or asset missing.
            ConsistencyError: An asset belongs to another customer or was released.
        """
        require_fields(investment_name=investment_name, customer_nic=customer_nic,
                       broker_nic=broker_nic, principal=principal, interest_rate=interest_rate,
                       commission_rate=commission_rate, start_date=start_date)
        if not isinstance(asset_ids, (list, tuple)) or not asset_ids:
            raise ValidationError("asset_ids must be a non-empty list", {'asset_ids': asset_ids})

        customer_nic = normalize_nic(customer_nic, "customer_nic")
        broker_nic = normalize_nic(broker_nic, "broker_nic")

        ids = []
        for value in asset_ids:
            asset_id = validate_record_id(value, "asset_id")
            if asset_id not in ids:
                ids.append(asset_id)

        principal = validate_non_negative(principal, "principal")
        interest_rate = validate_non_negative(interest_rate, "interest_rate")
        commission_rate = validate_non_negative(commission_rate, "commission_rate")
        start = validate_date(start_date, "start_date")

        customer = self.db.get_customer_by_nic(customer_nic)
        if not customer:
            raise CustomerNotFoundError(nic=customer_nic)

        broker = self.db.get_broker_by_nic(broker_nic)
        if not broker:
            raise BrokerNotFoundError(nic=broker_nic)

        assets = self.db.get_assets(ids)
        if len(assets) != len(ids):
            found = {a.id for a in assets}
            raise AssetNotFoundError([i for i in ids if i not in found])

        for asset in assets:
            if asset.customer_id is not None and asset.customer_id != customer.id:
                raise OwnershipMismatchError("asset", asset.id, "customer", customer_nic)
            if asset.is_released:
                raise AssetReleasedError(asset.id)

        investment = Investment(
            id=None,
            customer_id=customer.id,
            broker_id=broker.id,
            principal=principal,
            interest_rate=interest_rate,
            broker_commission_rate=commission_rate,
            start_date=start.strftime(DATE_FORMAT_STORAGE),
            asset_ids=ids,
            investment_name=str(investment_name).strip(),
            description=str(description or "").strip(),
            created_at=self.clock().strftime(DATETIME_FORMAT_STORAGE)
        )

        with self.db.transaction():
            investment.id = self.db.add_investment(investment)

        logger.info("Investment %s created for customer %s (principal=%s, assets=%s)",
                    investment.id, customer_nic, principal, ids)
        return investment

    def _with_status(self, investment, now):
        accrual = compute_accrual(investment, now)
        return {
            'investment': investment,
            'accrual': accrual,
            'status': accrual.status
        }

    def get_investment_status(self, investment_id):
        """Get one investment with its accrual and status as of the clock's now."""
        investment_id = validate_record_id(investment_id, "investment_id")
        investment = self.db.get_investment(investment_id)
        if not investment:
            raise InvestmentNotFoundError(investment_id)
        return self._with_status(investment, self.clock())

    def list_investments_with_status(self):
        """List every investment, oldest first, with its accrual and status."""
        now = self.clock()
        return [self._with_status(inv, now) for inv in self.db.get_all_investments()]
