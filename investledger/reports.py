"""
Report generation module for InvestLedger.
Builds customer, broker and asset flow tables, the dashboard time series and
the payment history tables, and exports any of them to Excel or CSV.

Amounts are rounded to 2 decimals here and nowhere else.
"""
import logging
from datetime import datetime, timedelta

import pandas as pd
from dateutil.relativedelta import relativedelta

from investledger.calculations import ZERO, money, parse_date, safe_number
from investledger.config import (
    ASSET_STATUS_FINISHED,
    DASHBOARD_GRANULARITIES,
    DASHBOARD_YEARS_BACK,
    DEFAULT_ARREARS_DAYS,
    DEFAULT_DASHBOARD_GRANULARITY,
    EXCEL_HEADER_BG,
    EXCEL_TOTAL_BG,
    MONTH_NAMES_SHORT,
    STATUS_ARREARS,
    STATUS_PENDING,
)
from investledger.data_structures import DashboardSummary
from investledger.exceptions import CustomerNotFoundError, ValidationError
from investledger.services.accrual import aggregate_accruals, compute_accrual
from investledger.services.commission_service import compute_broker_pending
from investledger.validators import normalize_nic, validate_non_negative

logger = logging.getLogger(__name__)

CUSTOMER_FLOW_COLUMNS = [
    "customer_id", "customer_name", "nic", "phone", "investments_count", "total_investment",
    "interest_paid", "principal_paid", "total_paid_in", "principal_pending",
    "arrears_interest", "status"
]
BROKER_FLOW_COLUMNS = [
    "broker_id", "broker_name", "nic", "investments_count",
    "total_commission", "total_paid", "total_pending"
]
ASSET_FLOW_COLUMNS = [
    "asset_id", "asset_name", "asset_type", "vehicle_number", "land_address", "estimate_amount",
    "customer_name", "broker_name", "investment_id", "investment_name", "principal",
    "total_paid", "principal_pending", "last_payment_date", "is_released", "status"
]

SERIES_KEYS = ("investment", "customer_pay", "interest_received", "broker_pay", "real_profit")


def _amount(value):
    """Presentation value: 2-dp HALF_UP, as float for DataFrames and charts."""
    return float(money(value))


def _money_columns(df):
    """Positions of the float columns that hold amounts, for the Excel TOTAL row.

    Ids and rates are skipped, as is the first column which carries the label.
    """
    return [
        i for i, c in enumerate(df.columns)
        if i > 0
        and pd.api.types.is_float_dtype(df[c])
        and not str(c).endswith(('_id', '_rate'))
    ]


class ReportGenerator:
    def __init__(self, db_manager, clock=None):
        self.db = db_manager
        self.clock = clock or datetime.now

    # ========== FLOWS ==========

    def _customer_totals(self, customer, now):
        investments = self.db.get_investments_by_customer(customer.id)
        summary = aggregate_accruals([compute_accrual(inv, now) for inv in investments])
        payments = self.db.get_customer_payments(customer_id=customer.id)
        total_paid_in = sum((p.paid_amount for p in payments), ZERO)
        return investments, summary, payments, total_paid_in

    def get_customer_flow(self, now):
        """One row per customer with their accrual totals and aggregate status."""
        rows = []
        for customer in self.db.get_customers():
            investments, summary, _, total_paid_in = self._customer_totals(customer, now)
            rows.append({
                "customer_id": customer.id,
                "customer_name": customer.name,
                "nic": customer.nic,
                "phone": customer.phone,
                "investments_count": summary.investments_count,
                "total_investment": _amount(sum((inv.principal for inv in investments), ZERO)),
                "interest_paid": _amount(summary.interest_paid_amount),
                "principal_paid": _amount(sum((inv.principal_paid_amount for inv in investments), ZERO)),
                "total_paid_in": _amount(total_paid_in),
                "principal_pending": _amount(summary.principal_pending),
                "arrears_interest": _amount(summary.arrears_interest),
                "status": summary.status
            })
        return pd.DataFrame(rows, columns=CUSTOMER_FLOW_COLUMNS)

    def get_customer_flow_by_nic(self, nic, now):
        """Flow details of one customer, including per-investment rows and the payment date range.

        Raises:
            InvalidNICError: If the NIC is malformed.
            CustomerNotFoundError: If no customer has this NIC.
        """
        nic = normalize_nic(nic)
        customer = self.db.get_customer_by_nic(nic)
        if not customer:
            raise CustomerNotFoundError(nic=nic)

        investments, summary, payments, total_paid_in = self._customer_totals(customer, now)

        investment_rows = []
        for inv in investments:
            accrual = compute_accrual(inv, now)
            investment_rows.append({
                "investment_id": inv.id,
                "investment_name": inv.investment_name,
                "principal": _amount(inv.principal),
                "interest_rate": float(inv.interest_rate),
                "start_date": inv.start_date,
                "monthly_interest": _amount(accrual.monthly_interest),
                "due_months": accrual.due_months,
                "interest_paid": _amount(accrual.interest_paid_amount),
                "arrears_interest": _amount(accrual.arrears_interest),
                "arrears_months": accrual.arrears_months_count,
                "principal_pending": _amount(accrual.principal_pending),
                "last_payment_date": inv.last_payment_date,
                "status": accrual.status
            })

        # get_customer_payments is newest first
        paid_dates = [p.paid_at for p in payments if p.paid_at]

        return {
            "customer": customer,
            "summary": summary,
            "totals": {
                "total_investment": _amount(sum((inv.principal for inv in investments), ZERO)),
                "monthly_interest": _amount(summary.monthly_interest),
                "interest_paid": _amount(summary.interest_paid_amount),
                "arrears_interest": _amount(summary.arrears_interest),
                "principal_pending": _amount(summary.principal_pending),
                "total_paid_in": _amount(total_paid_in),
                "status": summary.status
            },
            "investments": pd.DataFrame(investment_rows),
            "date_range": {
                "from": paid_dates[-1] if paid_dates else None,
                "to": paid_dates[0] if paid_dates else None
            }
        }

    def get_broker_flow(self):
        """One row per broker with commission earned, paid and pending."""
        rows = []
        for broker in self.db.get_brokers():
            investments = self.db.get_investments_by_broker(broker.id)
            pendings = [compute_broker_pending(inv) for inv in investments]
            rows.append({
                "broker_id": broker.id,
                "broker_name": broker.name,
                "nic": broker.nic,
                "investments_count": len(investments),
                "total_commission": _amount(sum((p.total_commission for p in pendings), ZERO)),
                "total_paid": _amount(sum((p.paid for p in pendings), ZERO)),
                "total_pending": _amount(sum((p.pending for p in pendings), ZERO))
            })
        return pd.DataFrame(rows, columns=BROKER_FLOW_COLUMNS)

    def get_arrears_days(self):
        """Get the asset-flow arrears threshold (days) from settings."""
        value = safe_number(self.db.get_setting("arrears_days", DEFAULT_ARREARS_DAYS), DEFAULT_ARREARS_DAYS)
        return int(value) if value >= 0 else DEFAULT_ARREARS_DAYS

    def get_asset_flow(self, now, arrears_days=None):
        """Payment status of every asset, taken from the latest investment listing it.

        An asset is ``finished`` when nothing is pending, ``arrears`` when the
        investment was never paid or last paid more than ``arrears_days`` ago,
        else ``pending``.
        """
        if arrears_days is None:
            arrears_days = self.get_arrears_days()
        else:
            arrears_days = int(validate_non_negative(arrears_days, "arrears_days"))
        threshold = timedelta(days=arrears_days)
        current = parse_date(now) or self.clock()

        customers = {c.id: c.name for c in self.db.get_customers()}
        brokers = {b.id: b.name for b in self.db.get_brokers()}

        rows = []
        for asset in self.db.get_all_assets():
            investments = self.db.get_investments_by_asset(asset.id)
            investment = investments[-1] if investments else None

            pending = investment.principal_pending if investment else ZERO
            last_paid = parse_date(investment.last_payment_date) if investment else None

            if pending <= 0:
                status = ASSET_STATUS_FINISHED
            elif last_paid is None or (current - last_paid) > threshold:
                status = STATUS_ARREARS
            else:
                status = STATUS_PENDING

            rows.append({
                "asset_id": asset.id,
                "asset_name": asset.asset_name,
                "asset_type": asset.asset_type,
                "vehicle_number": asset.vehicle_number,
                "land_address": asset.land_address,
                "estimate_amount": _amount(asset.estimate_amount),
                "customer_name": customers.get(asset.customer_id, "-"),
                "broker_name": brokers.get(asset.broker_id, "-"),
                "investment_id": investment.id if investment else None,
                "investment_name": investment.investment_name if investment else "",
                "principal": _amount(investment.principal) if investment else 0.0,
                "total_paid": _amount(investment.total_paid_amount) if investment else 0.0,
                "principal_pending": _amount(pending),
                "last_payment_date": investment.last_payment_date if investment else None,
                "is_released": asset.is_released,
                "status": status
            })
        return pd.DataFrame(rows, columns=ASSET_FLOW_COLUMNS)

    # ========== DASHBOARD ==========

    def _get_dashboard_range(self, granularity, year, month):
        """Calculate the [start, end) window and the bucket labels."""
        if granularity == "day":
            start = datetime(year, month, 1)
            end = start + relativedelta(months=1)
            labels = [str(d) for d in range(1, (end - start).days + 1)]
        elif granularity == "month":
            start = datetime(year, 1, 1)
            end = start + relativedelta(years=1)
            labels = list(MONTH_NAMES_SHORT)
        else:
            first_year = year - (DASHBOARD_YEARS_BACK - 1)
            start = datetime(first_year, 1, 1)
            end = datetime(year, 1, 1) + relativedelta(years=1)
            labels = [str(y) for y in range(first_year, year + 1)]
        return start, end, labels

    def _bucket_sums(self, df, date_col, amount_col, granularity, year, size):
        """Sum ``amount_col`` of ``df`` into ``size`` buckets keyed by ``date_col``."""
        totals = [ZERO] * size
        if df.empty:
            return totals

        frame = pd.DataFrame({
            "when": pd.to_datetime(df[date_col].map(parse_date)),
            "amount": df[amount_col].map(safe_number)
        }).dropna(subset=["when"])
        if frame.empty:
            return totals

        if granularity == "day":
            keys = frame["when"].dt.day - 1
        elif granularity == "month":
            keys = frame["when"].dt.month - 1
        else:
            keys = frame["when"].dt.year - (year - (DASHBOARD_YEARS_BACK - 1))

        sums = frame.groupby(keys)["amount"].agg(lambda s: sum(s, ZERO))
        for idx, total in sums.items():
            if 0 <= idx < size:
                totals[int(idx)] = safe_number(total)
        return totals

    def _period_totals(self, start, end):
        investments = self.db.get_investments_df(start, end)
        payments = self.db.get_customer_payments_df(start, end)
        allocations = self.db.get_broker_allocations_df(start, end)

        def column_sum(df, col):
            return sum((safe_number(v) for v in df[col]), ZERO) if not df.empty else ZERO

        interest = column_sum(payments, "interest_part")
        broker_pay = column_sum(allocations, "amount")
        return {
            "total_investment": column_sum(investments, "principal"),
            "total_customer_pay": column_sum(payments, "paid_amount"),
            "total_interest_received": interest,
            "total_broker_pay": broker_pay,
            "total_real_profit": interest - broker_pay
        }

    def get_dashboard_summary(self, granularity=DEFAULT_DASHBOARD_GRANULARITY, year=None, month=None):
        """Bucketed money flows for the dashboard charts.

        Args:
            granularity: "day" (days of ``month``), "month" (months of ``year``)
                or "year" (the 5 years ending at ``year``). Unknown values fall
                back to "month".
            year: Selected year (default: current year).
            month: Selected month 1-12 (default: current month).

        Returns:
            DashboardSummary whose series are ``investment``, ``customer_pay``,
            ``interest_received``, ``broker_pay`` and
            ``real_profit = interest_received - broker_pay``.
        """
        granularity = str(granularity or "").strip().lower()
        if granularity not in DASHBOARD_GRANULARITIES:
            granularity = DEFAULT_DASHBOARD_GRANULARITY

        today = self.clock()
        year = int(year) if year is not None else today.year
        month = int(month) if month is not None else today.month
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12", {"month": month})

        start, end, labels = self._get_dashboard_range(granularity, year, month)
        size = len(labels)

        investments = self.db.get_investments_df(start, end)
        payments = self.db.get_customer_payments_df(start, end)
        allocations = self.db.get_broker_allocations_df(start, end)

        raw = {
            "investment": self._bucket_sums(investments, "created_at", "principal", granularity, year, size),
            "customer_pay": self._bucket_sums(payments, "paid_at", "paid_amount", granularity, year, size),
            "interest_received": self._bucket_sums(payments, "paid_at", "interest_part", granularity, year, size),
            "broker_pay": self._bucket_sums(allocations, "paid_at", "amount", granularity, year, size),
        }
        raw["real_profit"] = [i - b for i, b in zip(raw["interest_received"], raw["broker_pay"])]

        series = {key: [_amount(v) for v in raw[key]] for key in SERIES_KEYS}
        totals = {f"total_{key}": _amount(sum(raw[key], ZERO)) for key in SERIES_KEYS}

        month_start = datetime(year, month, 1)
        month_end = month_start + relativedelta(months=1)
        review = self._period_totals(month_start, month_end)
        monthly_review = {key: _amount(value) for key, value in review.items()}
        monthly_review["label"] = f"{MONTH_NAMES_SHORT[month - 1]} {year}"

        return DashboardSummary(
            granularity=granularity,
            year=year,
            month=month,
            start=start,
            end=end,
            labels=labels,
            series=series,
            totals=totals,
            monthly_review=monthly_review
        )

    # ========== PAYMENT HISTORY ==========

    @staticmethod
    def _filter_rows(df, search, columns):
        """Keep rows where any of ``columns`` contains ``search`` (case-insensitive)."""
        term = str(search or "").strip()
        if not term or df.empty:
            return df.reset_index(drop=True)
        mask = pd.Series(False, index=df.index)
        for col in columns:
            mask |= df[col].fillna("").astype(str).str.contains(term, case=False, regex=False)
        return df[mask].reset_index(drop=True)

    @staticmethod
    def _round_columns(df, columns):
        for col in columns:
            df[col] = df[col].map(_amount)
        return df

    def get_customer_payment_history(self, search=None):
        """Customer payment history, newest first, optionally filtered by a search term."""
        df = self.db.get_customer_payment_history_df()
        df = self._filter_rows(df, search, [
            "customer_nic", "customer_name", "broker_nic", "broker_name",
            "investment_name", "pay_for", "payment_method", "note"
        ])
        return self._round_columns(df, [
            "paid_amount", "interest_part", "principal_part", "excess_amount", "remaining_pending_after"
        ])

    def get_broker_payment_history(self, search=None):
        """Broker payment history (one row per allocation) with the investment's current commission state."""
        df = self.db.get_broker_payment_history_df()
        df = self._filter_rows(df, search, ["broker_nic", "broker_name", "customer_nic", "customer_name"])

        commission, paid, pending = [], [], []
        cache = {}
        for investment_id in df["investment_id"]:
            if investment_id not in cache:
                investment = self.db.get_investment(int(investment_id))
                cache[investment_id] = compute_broker_pending(investment) if investment else None
            state = cache[investment_id]
            commission.append(_amount(state.total_commission) if state else 0.0)
            paid.append(_amount(state.paid) if state else 0.0)
            pending.append(_amount(state.pending) if state else 0.0)

        df["total_commission"] = commission
        df["total_broker_paid"] = paid
        df["broker_pending"] = pending
        return self._round_columns(df, ["paid_amount", "allocated_amount"])

    # ========== EXPORT ==========

    def export_report(self, df, output_path, sheet_name="Report"):
        """
        Export a report DataFrame to Excel or CSV, chosen by file extension.

        Args:
            df (pd.DataFrame): Report table.
            output_path (str): Destination; ``.csv`` writes CSV, anything else Excel.
            sheet_name (str): Excel worksheet name.

        Returns:
            tuple: (bool, str) - (Success status, Result message or Error details).
        """
        if str(output_path).lower().endswith('.csv'):
            return self._export_to_csv(df, output_path)
        return self._export_to_excel(df, output_path, sheet_name)

    def _export_to_excel(self, df, output_path, sheet_name="Report"):
        """Export DataFrame to Excel with formatting."""
        try:
            # Get colors from settings
            header_bg = self.db.get_setting("excel_header_bg", EXCEL_HEADER_BG)
            total_bg = self.db.get_setting("excel_total_bg", EXCEL_TOTAL_BG)

            with pd.ExcelWriter(output_path, engine='xlsxwriter') as writer:
                df.to_excel(writer, index=False, sheet_name=sheet_name)
                workbook = writer.book
                worksheet = writer.sheets[sheet_name]

                header_fmt = workbook.add_format({'bold': True, 'border': 1, 'bg_color': header_bg})
                num_fmt = workbook.add_format({'num_format': '#,##0.00'})
                total_fmt = workbook.add_format({'bold': True, 'border': 1, 'num_format': '#,##0.00',
                                                 'bg_color': total_bg})

                for col_num, value in enumerate(df.columns.values):
                    worksheet.write(0, col_num, value, header_fmt)
                    if pd.api.types.is_float_dtype(df[value]):
                        worksheet.set_column(col_num, col_num, 15, num_fmt)
                    else:
                        worksheet.set_column(col_num, col_num, 18)

                # Totals row under the money columns
                money_cols = _money_columns(df)
                if not df.empty and money_cols:
                    total_row_idx = len(df) + 1
                    worksheet.write(total_row_idx, 0, 'TOTAL', total_fmt)
                    for col_num in money_cols:
                        total = _amount(sum((safe_number(v) for v in df.iloc[:, col_num]), ZERO))
                        worksheet.write_number(total_row_idx, col_num, total, total_fmt)

            logger.info("Report exported to %s", output_path)
            return True, "Report generated successfully."
        except Exception as e:
            logger.exception("Excel export to %s failed", output_path)
            return False, f"Excel Export Failed: {e}"

    def _export_to_csv(self, df, output_path):
        """Export DataFrame to CSV."""
        try:
            df.to_csv(output_path, index=False)
            logger.info("Report exported to %s", output_path)
            return True, "Report generated successfully (CSV)."
        except Exception as e:
            logger.exception("CSV export to %s failed", output_path)
            return False, f"CSV Export Failed: {e}"
