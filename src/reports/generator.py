"""Report generation utilities."""

from typing import Any, Dict, List, Optional
from datetime import date, datetime, timezone
from decimal import Decimal
from collections import defaultdict
import logging
from io import StringIO
import csv

from dateutil.relativedelta import relativedelta

from receipts.models import Receipt, ReceiptFilters, ReceiptStatus
from receipts.store import ReceiptStore

logger = logging.getLogger(__name__)

UNCATEGORIZED = 'Uncategorized'

CSV_COLUMNS = ['date', 'merchant', 'amount', 'currency', 'category', 'status', 'created_at']

RECENT_LIMIT = 5
SUMMARY_MONTHS = 12


class ReportGenerator:
    """Service for generating receipt exports and spending summaries."""

    def __init__(self, receipt_store: ReceiptStore, categories: Any = None):
        """
        Initialize report generator.

        Args:
            receipt_store: Receipt records
            categories: Optional CategoryService used to resolve category names
        """
        self.receipt_store = receipt_store
        self.categories = categories

    def export_to_csv(self, user_id: str, filters: Optional[ReceiptFilters] = None) -> str:
        """
        Export receipts to CSV format.

        Values containing commas, quotes or newlines are quoted with inner
        quotes doubled. Unknown values are written as empty fields.

        Args:
            user_id: User ID
            filters: Same filters as the receipt list

        Returns:
            CSV content as string
        """
        receipts = self.receipt_store.list(user_id, filters)
        names = self._category_names(user_id)

        output = StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
        writer.writerow(CSV_COLUMNS)

        for receipt in receipts:
            writer.writerow([
                receipt.transaction_date or '',
                receipt.merchant or '',
                f"{receipt.amount:.2f}" if receipt.amount is not None else '',
                receipt.currency,
                self._category_label(receipt, names),
                receipt.status.value,
                receipt.created_at
            ])

        csv_content = output.getvalue()
        output.close()

        logger.info(f"Exported {len(receipts)} receipts to CSV")
        return csv_content

    def spending_summary(self, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Summarize verified spending.

        Unverified receipts are left out since their figures have not been
        checked. Amounts are summed as-is across currencies.

        Args:
            user_id: User ID
            today: Reference date for the monthly window (default: today, UTC)

        Returns:
            Summary with totals, per-category and per-month breakdowns and the
            most recent receipts
        """
        today = today or datetime.now(timezone.utc).date()
        receipts = self.receipt_store.list(
            user_id,
            ReceiptFilters(status=ReceiptStatus.VERIFIED, sort_by='created_at')
        )
        names = self._category_names(user_id)

        total = Decimal('0.00')
        by_category = defaultdict(lambda: {'amount': Decimal('0.00'), 'count': 0})
        by_month = {month: Decimal('0.00') for month in self._trailing_months(today)}

        for receipt in receipts:
            amount = receipt.amount or Decimal('0.00')
            total += amount

            label = self._category_label(receipt, names)
            by_category[label]['amount'] += amount
            by_category[label]['count'] += 1

            month = (receipt.transaction_date or '')[:7]
            if month in by_month:
                by_month[month] += amount

        return {
            'generated_at': datetime.now(timezone.utc).isoformat(),
            'total_amount': total,
            'receipt_count': len(receipts),
            'by_category': [
                {'category': label, 'amount': data['amount'], 'count': data['count']}
                for label, data in sorted(by_category.items(), key=lambda x: x[1]['amount'], reverse=True)
            ],
            'by_month': [
                {'month': month, 'amount': amount}
                for month, amount in by_month.items()
            ],
            'recent': [receipt.to_api() for receipt in receipts[:RECENT_LIMIT]]
        }

    def _category_names(self, user_id: str) -> Dict[str, str]:
        if self.categories is None:
            return {}
        return self.categories.names(user_id)

    @staticmethod
    def _category_label(receipt: Receipt, names: Dict[str, str]) -> str:
        if not receipt.category_id:
            return UNCATEGORIZED
        return names.get(receipt.category_id, UNCATEGORIZED)

    @staticmethod
    def _trailing_months(today: date) -> List[str]:
        """``YYYY-MM`` keys for the last twelve months, oldest first."""
        first = today.replace(day=1)
        return [
            (first - relativedelta(months=offset)).strftime('%Y-%m')
            for offset in range(SUMMARY_MONTHS - 1, -1, -1)
        ]
