"""Investment accrual calculations for InvestLedger.

Every figure that depends on elapsed time (monthly interest, months due,
arrears, pending principal and the payment status) is derived here, from
the stored investment and an explicit ``now``. Reports, payment handling and
status listings all call these functions instead of repeating the formulas.

Interest only falls due once a FULL month has elapsed since the start date:
a loan started on 2026-01-02 has nothing overdue until 2026-02-02.
"""
import math
from typing import Iterable, List

from investledger.calculations import ZERO, full_months_elapsed, monthly_interest, safe_number
from investledger.config import STATUS_ARREARS, STATUS_COMPLETE, STATUS_PENDING
from investledger.data_structures import AccrualResult, AccrualSummary, Investment


def classify_status(principal_pending, arrears_interest) -> str:
    """complete > arrears > pending, evaluated in that order."""
    if principal_pending <= 0 and arrears_interest <= 0:
        return STATUS_COMPLETE
    if arrears_interest > 0:
        return STATUS_ARREARS
    return STATUS_PENDING


def compute_accrual(investment: Investment, now) -> AccrualResult:
    """Compute the accrual state of one investment as of ``now``.

    Args:
        investment: Investment snapshot.
        now: Reference instant (date, datetime or stored string).

    Returns:
        AccrualResult with the intermediate values and the status.
    """
    monthly = monthly_interest(investment.principal, investment.interest_rate)
    due_months = full_months_elapsed(investment.start_date, now)
    past_due = monthly * due_months

    interest_paid = safe_number(investment.interest_paid_amount)
    arrears = max(past_due - interest_paid, ZERO)
    principal_pending = investment.principal_pending

    if arrears > 0 and monthly > 0:
        arrears_months = int(math.ceil(arrears / monthly))
    else:
        arrears_months = 0

    return AccrualResult(
        monthly_interest=monthly,
        due_months=due_months,
        past_due_interest=past_due,
        interest_paid_amount=interest_paid,
        arrears_interest=arrears,
        principal_pending=principal_pending,
        arrears_months_count=arrears_months,
        status=classify_status(principal_pending, arrears)
    )


def aggregate_status(statuses: Iterable[str]) -> str:
    """Roll per-investment statuses up to one status for a customer."""
    statuses = list(statuses)
    if not statuses:
        return STATUS_COMPLETE
    if STATUS_ARREARS in statuses:
        return STATUS_ARREARS
    if STATUS_PENDING in statuses:
        return STATUS_PENDING
    return STATUS_COMPLETE


def aggregate_accruals(results: List[AccrualResult]) -> AccrualSummary:
    """Sum accrual results across several investments (e.g. one customer's)."""
    return AccrualSummary(
        investments_count=len(results),
        monthly_interest=sum((r.monthly_interest for r in results), ZERO),
        past_due_interest=sum((r.past_due_interest for r in results), ZERO),
        interest_paid_amount=sum((r.interest_paid_amount for r in results), ZERO),
        arrears_interest=sum((r.arrears_interest for r in results), ZERO),
        principal_pending=sum((r.principal_pending for r in results), ZERO),
        status=aggregate_status(r.status for r in results)
    )
