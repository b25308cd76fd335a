"""Custom exceptions for InvestLedger."""


class LedgerError(Exception):
    """Base exception for all InvestLedger errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(LedgerError):
    """Raised when input is malformed, missing or out of range."""
    pass


class InvalidNICError(ValidationError):
    """Raised when a NIC number does not match any supported format."""

    def __init__(self, nic, field: str = "nic"):
        super().__init__(f"Invalid {field} format", {field: nic})


class InvalidAmountError(ValidationError):
    """Raised when a money amount is not a positive finite number."""

    def __init__(self, amount, field: str = "pay_amount"):
        super().__init__(f"{field} must be a number greater than 0", {field: amount})


# =============================================================================
# LOOKUPS
# =============================================================================

class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""
    pass


class CustomerNotFoundError(NotFoundError):
    """Raised when a customer cannot be found."""

    def __init__(self, nic: str = None, customer_id: int = None):
        details = {}
        if nic:
            details['nic'] = nic
        if customer_id:
            details['customer_id'] = customer_id

        message = "Customer not found"
        if nic:
            message = f"Customer '{nic}' not found"
        elif customer_id:
            message = f"Customer with ID {customer_id} not found"

        super().__init__(message, details)


class BrokerNotFoundError(NotFoundError):
    """Raised when a broker cannot be found."""

    def __init__(self, nic: str = None, broker_id: int = None):
        details = {}
        if nic:
            details['nic'] = nic
        if broker_id:
            details['broker_id'] = broker_id

        message = "Broker not found"
        if nic:
            message = f"Broker '{nic}' not found"
        elif broker_id:
            message = f"Broker with ID {broker_id} not found"

        super().__init__(message, details)


class InvestmentNotFoundError(NotFoundError):
    """Raised when an investment cannot be found."""

    def __init__(self, investment_id):
        super().__init__(f"Investment with ID {investment_id} not found",
                         {'investment_id': investment_id})


class AssetNotFoundError(NotFoundError):
    """Raised when one or more assets cannot be found."""

    def __init__(self, asset_ids):
        super().__init__("One or more assets not found", {'asset_ids': list(asset_ids)})


# =============================================================================
# CONSISTENCY
# =============================================================================

class ConsistencyError(LedgerError):
    """Raised when records exist but do not fit together for the operation."""
    pass


class OwnershipMismatchError(ConsistencyError):
    """Raised when a record does not belong to the stated customer or broker."""

    def __init__(self, record: str, record_id, owner: str, owner_ref):
        details = {f'{record}_id': record_id, owner: owner_ref}
        message = f"{record.capitalize()} {record_id} does not belong to this {owner}"
        super().__init__(message, details)


class NoBackingAssetsError(ConsistencyError):
    """Raised when an investment has no collateral assets attached."""

    def __init__(self, investment_id):
        super().__init__(f"Investment {investment_id} has no backing assets",
                         {'investment_id': investment_id})


class AssetReleasedError(ConsistencyError):
    """Raised when an already released asset is offered as collateral."""

    def __init__(self, asset_id):
        super().__init__(f"Asset {asset_id} has already been released", {'asset_id': asset_id})


class NothingPayableError(ConsistencyError):
    """Raised when a broker has no unlocked commission left to pay."""

    def __init__(self, broker_nic: str):
        super().__init__("No payable commission for this broker", {'broker_nic': broker_nic})


class BrokerOverpayError(ConsistencyError):
    """Raised when a broker payment exceeds the unlocked pending commission."""

    def __init__(self, pay_amount, total_pending):
        details = {
            'pay_amount': str(pay_amount),
            'total_pending': str(total_pending)
        }
        message = f"pay_amount cannot be greater than pending commission ({total_pending})"
        super().__init__(message, details)


# =============================================================================
# PERSISTENCE
# =============================================================================

class PersistenceError(LedgerError):
    """Raised when a database operation fails."""
    pass


class TransactionError(PersistenceError):
    """Raised when a database transaction fails to complete."""
    pass
