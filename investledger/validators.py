"""Input validation helpers.

Every service validates its arguments through these functions before it
touches the database, so a rejected request never leaves a partial write.
"""
import re
from decimal import Decimal

from investledger.calculations import parse_date, safe_number
from investledger.config import (
    ALLOCATION_MODES,
    ASSET_TYPES,
    MIN_LAND_ADDRESS_LENGTH,
    MIN_VEHICLE_NUMBER_LENGTH,
    PAYMENT_METHODS,
)
from investledger.exceptions import InvalidAmountError, InvalidNICError, ValidationError

# 12 digits, 11 digits + V/X, or 9 digits + V/X
NIC_PATTERN = re.compile(r"^(\d{12}|\d{11}[VX]|\d{9}[VX])$", re.IGNORECASE)


def is_valid_nic(nic) -> bool:
    return bool(NIC_PATTERN.match(str(nic or "").strip()))


def normalize_nic(nic, field: str = "nic") -> str:
    """Validate a NIC and return it trimmed and upper-cased."""
    if not is_valid_nic(nic):
        raise InvalidNICError(nic, field)
    return str(nic).strip().upper()


def validate_positive_amount(value, field: str = "pay_amount") -> Decimal:
    amount = safe_number(value, default=_nan())
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(value, field)
    return amount


def validate_non_negative(value, field: str) -> Decimal:
    number = safe_number(value, default=_nan())
    if not number.is_finite() or number < 0:
        raise ValidationError(f"{field} must be a valid number and >= 0", {field: value})
    return number


def validate_record_id(value, field: str = "investment_id") -> int:
    """Accept positive integers (or their string form) as record ids."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}", {field: value})
    try:
        record_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", {field: value})
    if record_id <= 0:
        raise ValidationError(f"Invalid {field}", {field: value})
    return record_id


def validate_allocation_mode(mode) -> str:
    normalized = str(mode or "").strip().lower()
    if normalized not in ALLOCATION_MODES:
        raise ValidationError(
            f"pay_for must be one of: {', '.join(ALLOCATION_MODES)}", {'pay_for': mode})
    return normalized


def validate_payment_method(method) -> str:
    normalized = str(method or "").strip().lower()
    if normalized not in PAYMENT_METHODS:
        raise ValidationError("payment_method must be cash or check", {'payment_method': method})
    return normalized


def validate_date(value, field: str = "start_date"):
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"{field} must be a valid date", {field: value})
    return parsed


def validate_asset(asset_name, asset_type, estimate_amount, vehicle_number="", land_address=""):
    """Check a new asset's fields and return them normalized.

    Vehicles need a registration number and land needs an address; the other
    type-specific field is blanked.
    """
    require_fields(asset_name=asset_name, asset_type=asset_type, estimate_amount=estimate_amount)
    asset_type = str(asset_type).strip().lower()
    if asset_type not in ASSET_TYPES:
        raise ValidationError(f"asset_type must be one of: {', '.join(ASSET_TYPES)}", {'asset_type': asset_type})
    amount = validate_non_negative(estimate_amount, "estimate_amount")

    vehicle_number = str(vehicle_number or "").strip().upper()
    land_address = str(land_address or "").strip()
    if asset_type == "vehicle" and len(vehicle_number) < MIN_VEHICLE_NUMBER_LENGTH:
        raise ValidationError("vehicle_number is required when asset_type is vehicle",
                              {'vehicle_number': vehicle_number})
    if asset_type == "land" and len(land_address) < MIN_LAND_ADDRESS_LENGTH:
        raise ValidationError("land_address is required when asset_type is land",
                              {'land_address': land_address})

    return {
        'asset_name': str(asset_name).strip(),
        'asset_type': asset_type,
        'estimate_amount': amount,
        'vehicle_number': vehicle_number if asset_type == "vehicle" else "",
        'land_address': land_address if asset_type == "land" else "",
    }


def require_fields(**fields):
    """Raise ValidationError naming every missing (None or blank) field."""
    missing = [name for name, value in fields.items()
               if value is None or (isinstance(value, str) and not value.strip())]
    if missing:
        raise ValidationError(f"{', '.join(missing)} are required", {'missing_fields': missing})


def _nan():
    return Decimal("NaN")
