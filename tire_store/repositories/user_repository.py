# ==============================================================================
# USER REPOSITORY
# ==============================================================================
# users.json stores accounts as a dict keyed by user id:
# {
#     "<id>": {"email": "...", "password": "<werkzeug hash>", "role": "user",
#              "metadata": {...}, "created_at": "..."}
# }
# ==============================================================================

import os
import uuid
from typing import Any, Dict, List, Optional

from tire_store.repositories.base import DictRepository
from tire_store.repositories.table_repository import utc_now_iso


class UserRepository(DictRepository):
    """
    Repository for accounts.
    Password checks happen in UserService; this class only persists.
    """

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'users.json'))

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Returns:
            User data including its id, or None
        """
        record = self.get_by_id(user_id)
        if not record:
            return None
        return dict(record, id=str(user_id))

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Case-insensitive email lookup."""
        needle = (email or '').strip().lower()
        if not needle:
            return None
        for user_id, record in self.get_all().items():
            if (record.get('email') or '').lower() == needle:
                return dict(record, id=user_id)
        return None

    def create_user(self, email: str, password_hash: str, role: str = 'user',
                    metadata: Dict[str, Any] = None) -> Optional[Dict[str, Any]]:
        """
        Returns:
            Created user, or None when the email is already registered
        """
        with self._file_lock:
            if self.get_by_email(email):
                return None
            user_id = uuid.uuid4().hex
            record = {
                'email': email.strip().lower(),
                'password': password_hash,
                'role': role,
                'metadata': metadata or {},
                'created_at': utc_now_iso(),
            }
            self.update(user_id, record)
        return dict(record, id=user_id)

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> bool:
        with self._file_lock:
            record = self.get_by_id(user_id)
            if not record:
                return False
            record.update(updates)
            self.update(user_id, record)
            return True

    def update_metadata(self, user_id: str, metadata: Dict[str, Any]) -> bool:
        """Merge keys into the user's metadata."""
        with self._file_lock:
            record = self.get_by_id(user_id)
            if not record:
                return False
            merged = dict(record.get('metadata') or {})
            merged.update(metadata)
            record['metadata'] = merged
            self.update(user_id, record)
            return True

    def list_users(self) -> List[Dict[str, Any]]:
        users = [dict(data, id=user_id) for user_id, data in self.get_all().items()]
        for user in users:
            user.pop('password', None)
        return sorted(users, key=lambda u: u.get('email') or '')
