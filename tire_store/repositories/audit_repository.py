# ==============================================================================
# AUDIT REPOSITORY
# ==============================================================================
# audit_log.json rows:
#   {id, table_name, action, record_id, old_values, new_values, user_id,
#    created_at}
# ==============================================================================

from typing import Any, Dict, List

from tire_store.repositories.table_repository import TableRepository
from tire_store.repositories.realtime import ChangeFeed


class AuditRepository(TableRepository):
    """
    Repository for the audit log.
    Rows are append-only; search returns newest first.
    """

    # Cap on rows returned by a search
    MAX_RESULTS = 1000

    def __init__(self, base_path: str, change_feed: ChangeFeed = None):
        super().__init__(base_path, 'audit_log', change_feed)

    def search(
        self,
        action: str = None,
        table_name: str = None,
        user_id: str = None,
        query: str = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        """
        Filter the log.

        Args:
            action: Exact action name
            table_name: Exact table name
            user_id: Acting user
            query: Case-insensitive text searched in record id and values
            limit: Maximum rows (defaults to MAX_RESULTS)
        """
        filters = {}
        if action:
            filters['action'] = action
        if table_name:
            filters['table_name'] = table_name
        if user_id:
            filters['user_id'] = user_id

        needle = (query or '').strip().lower()

        def _text_match(row):
            if not needle:
                return True
            haystack = ' '.join([
                str(row.get('record_id') or ''),
                str(row.get('action') or ''),
                str(row.get('old_values') or ''),
                str(row.get('new_values') or ''),
            ]).lower()
            return needle in haystack

        return self.select(filters, order_by='created_at', desc=True,
                           limit=limit or self.MAX_RESULTS, where=_text_match)

    def find_by_batch(self, action: str, batch_id: str, values_key: str = 'old_values') -> List[Dict[str, Any]]:
        """Rows of an action whose <values_key>.batch_id matches."""
        return self.select(
            {'action': action},
            order_by='created_at',
            where=lambda r: (r.get(values_key) or {}).get('batch_id') == batch_id,
        )
