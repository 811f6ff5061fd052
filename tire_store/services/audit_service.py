# ==============================================================================
# AUDIT SERVICE
# ==============================================================================
# Single entry point for audit rows. Every admin mutation that matters
# (bulk price changes, invoice sends, status changes, role changes) goes
# through here so the row shape stays consistent.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

from tire_store.models import AuditEntry
from tire_store.repositories.interfaces import IAuditRepository

logger = logging.getLogger(__name__)


class AuditService:
    """
    Service for writing and querying the audit log.

    Row shape: {table_name, action, record_id, old_values, new_values, user_id}
    """

    # Known actions
    BULK_PRICE_UPDATE = 'BULK_PRICE_UPDATE'
    BULK_PRICE_ROLLBACK = 'BULK_PRICE_ROLLBACK'
    INVOICE_SENT = 'INVOICE_SENT'
    STATUS_CHANGE = 'STATUS_CHANGE'
    ROLE_CHANGE = 'ROLE_CHANGE'
    STOCK_ADJUST = 'STOCK_ADJUST'
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'

    def __init__(self, audit_repo: IAuditRepository):
        """
        Args:
            audit_repo: Audit log repository
        """
        self.audit_repo = audit_repo

    # =========================================================================
    # WRITING
    # =========================================================================

    def log(
        self,
        table_name: str,
        action: str,
        record_id: Optional[str] = None,
        old_values: Dict[str, Any] = None,
        new_values: Dict[str, Any] = None,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Insert one audit row.

        Returns:
            Stored row

        Raises:
            BackendError: If the store rejects the insert
        """
        entry = AuditEntry(
            table_name=table_name,
            action=action,
            record_id=record_id,
            old_values=old_values or {},
            new_values=new_values or {},
            user_id=user_id,
        )
        return self.audit_repo.insert(entry.to_dict())

    def log_status_change(self, table_name: str, record_id: str, old_status: str,
                          new_status: str, user_id: str = None) -> Dict[str, Any]:
        return self.log(
            table_name, self.STATUS_CHANGE, record_id,
            {'status': old_status}, {'status': new_status}, user_id
        )

    # =========================================================================
    # QUERYING
    # =========================================================================

    def search(
        self,
        action: str = None,
        table_name: str = None,
        user_id: str = None,
        query: str = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        """Newest-first filtered audit rows."""
        return self.audit_repo.search(action=action, table_name=table_name,
                                      user_id=user_id, query=query, limit=limit)

    def rows_for_batch(self, action: str, batch_id: str) -> List[Dict[str, Any]]:
        return self.audit_repo.find_by_batch(action, batch_id)

    def list_actions(self) -> List[str]:
        """Distinct actions present in the log (for filter dropdowns)."""
        return sorted({r.get('action') for r in self.audit_repo.get_all() if r.get('action')})
