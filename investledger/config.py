"""Centralized configuration for InvestLedger.

This module contains all magic numbers, default values, and business rule
constants used by the accrual, payment and reporting services.
"""

# =============================================================================
# PAYMENT RULES
# =============================================================================

# How an incoming customer payment is split
ALLOCATION_INTEREST = "interest"
ALLOCATION_PRINCIPAL = "principal"
ALLOCATION_INTEREST_PRINCIPAL = "interest+principal"
ALLOCATION_MODES = (ALLOCATION_INTEREST, ALLOCATION_PRINCIPAL, ALLOCATION_INTEREST_PRINCIPAL)

# Accepted customer payment methods
PAYMENT_METHODS = ("cash", "check")

# =============================================================================
# STATUS LABELS
# =============================================================================

STATUS_COMPLETE = "complete"
STATUS_ARREARS = "arrears"
STATUS_PENDING = "pending"

# Asset flow uses "finished" instead of "complete"
ASSET_STATUS_FINISHED = "finished"

# =============================================================================
# ASSETS
# =============================================================================

ASSET_TYPES = ("vehicle", "land", "other")

# Minimum lengths for the type-specific asset fields
MIN_VEHICLE_NUMBER_LENGTH = 3
MIN_LAND_ADDRESS_LENGTH = 5

# =============================================================================
# REPORTING
# =============================================================================

# Days without a customer payment before an asset is flagged as in arrears
DEFAULT_ARREARS_DAYS = 30

# Dashboard granularities and the "year" window size
DASHBOARD_GRANULARITIES = ("day", "month", "year")
DEFAULT_DASHBOARD_GRANULARITY = "month"
DASHBOARD_YEARS_BACK = 5

MONTH_NAMES_SHORT = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                     "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

# =============================================================================
# STORAGE / DISPLAY FORMATS
# =============================================================================

DEFAULT_DB_NAME = "invest_ledger.db"

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"
DATETIME_FORMAT_STORAGE = "%Y-%m-%d %H:%M:%S"

# Excel export colours (overridable through the settings table)
EXCEL_HEADER_BG = "#D7E4BC"
EXCEL_TOTAL_BG = "#F0F0F0"
