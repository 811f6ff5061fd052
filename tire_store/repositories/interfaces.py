# ==============================================================================
# REPOSITORY INTERFACES
# ==============================================================================
# Protocols every store implementation satisfies. Services type against
# these, so swapping the JSON table store for a hosted database only means
# writing new classes that match the same shapes and wiring them in
# app_container.py.
# ==============================================================================

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable


# ==============================================================================
# BASE INTERFACES
# ==============================================================================

@runtime_checkable
class IRepository(Protocol):
    """Minimum contract of any repository."""

    def reload(self) -> None:
        ...


@runtime_checkable
class ITableRepository(IRepository, Protocol):
    """
    Row store for one table.
    Used by every business table (orders, invoices, products...).
    """

    table: str

    def select(self, filters: Dict[str, Any] = None, order_by: str = None,
               desc: bool = False, limit: int = None,
               where: Callable[[Dict[str, Any]], bool] = None) -> List[Dict[str, Any]]:
        ...

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        ...

    def maybe_single(self, **filters) -> Optional[Dict[str, Any]]:
        ...

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def insert_many(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ...

    def update_row(self, record_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def delete_row(self, record_id: Any) -> Optional[Dict[str, Any]]:
        ...

    def upsert(self, row: Dict[str, Any], on: str) -> Dict[str, Any]:
        ...


# ==============================================================================
# SPECIFIC INTERFACES
# ==============================================================================

@runtime_checkable
class IUserRepository(IRepository, Protocol):
    """Accounts (auth)."""

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    def create_user(self, email: str, password_hash: str, role: str = 'user',
                    metadata: Dict[str, Any] = None) -> Optional[Dict[str, Any]]:
        ...

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> bool:
        ...

    def update_metadata(self, user_id: str, metadata: Dict[str, Any]) -> bool:
        ...


@runtime_checkable
class ISettingsRepository(IRepository, Protocol):
    """Site-wide settings."""

    def get_setting(self, key: str, default: Any = None) -> Any:
        ...

    def set_setting(self, key: str, value: Any) -> None:
        ...


@runtime_checkable
class IAuditRepository(ITableRepository, Protocol):
    """Audit log with search."""

    def search(self, action: str = None, table_name: str = None, user_id: str = None,
               query: str = None, limit: int = None) -> List[Dict[str, Any]]:
        ...

    def find_by_batch(self, action: str, batch_id: str,
                      values_key: str = 'old_values') -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class IStorageBucket(Protocol):
    """Object storage bucket."""

    bucket: str

    def extension_of(self, filename: str) -> str:
        ...

    def is_allowed(self, filename: str) -> bool:
        ...

    def upload(self, path: str, file_storage) -> str:
        ...

    def get_public_url(self, path: str) -> str:
        ...


@runtime_checkable
class IChangeFeed(Protocol):
    """Realtime table change subscriptions."""

    def subscribe(self, table: str, callback: Callable[[Dict[str, Any]], None],
                  events: Optional[Iterable[str]] = None) -> str:
        ...

    def unsubscribe(self, sub_id: str) -> bool:
        ...

    def publish(self, table: str, event_type: str, new: Dict[str, Any] = None,
                old: Dict[str, Any] = None) -> int:
        ...
