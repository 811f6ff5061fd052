# ==============================================================================
# INVOICE REPOSITORY
# ==============================================================================
# invoices.json rows carry a store-assigned, unique invoice_number in the
# form INV-YYYY-NNNN (sequence restarts every year).
# ==============================================================================

import re
from datetime import datetime
from typing import Any, Dict, List

from tire_store.repositories.base import BackendError
from tire_store.repositories.table_repository import TableRepository
from tire_store.repositories.realtime import ChangeFeed


class InvoiceRepository(TableRepository):
    """
    Repository for invoices.

    Numbering happens on insert, under the store lock, so callers never
    choose or compute invoice numbers.
    """

    def __init__(self, base_path: str, change_feed: ChangeFeed = None, prefix: str = 'INV'):
        self.prefix = prefix
        super().__init__(base_path, 'invoices', change_feed)

    def next_invoice_number(self, existing: List[Dict[str, Any]], year: int = None) -> str:
        """
        Next sequential number for the year.

        Args:
            existing: Current rows
            year: Year to number (defaults to the current year)
        """
        year = year or datetime.now().year
        pattern = re.compile(rf'^{re.escape(self.prefix)}-{year}-(\d+)$')
        highest = 0
        for row in existing:
            match = pattern.match(row.get('invoice_number') or '')
            if match:
                highest = max(highest, int(match.group(1)))
        return f'{self.prefix}-{year}-{highest + 1:04d}'

    def _prepare_insert(self, row: Dict[str, Any], existing: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not row.get('invoice_number'):
            row['invoice_number'] = self.next_invoice_number(existing)
        elif any(r.get('invoice_number') == row['invoice_number'] for r in existing):
            raise BackendError(f"Invoice number {row['invoice_number']} already exists", table=self.table)
        return row
