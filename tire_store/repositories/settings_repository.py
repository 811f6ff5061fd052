# ==============================================================================
# SITE SETTINGS REPOSITORY
# ==============================================================================
# site_settings.json stores key -> JSON value:
# {
#     "company_info": {"name": "...", "phone": "...", "email": "..."},
#     "google_review_url": "https://..."
# }
# ==============================================================================

import os
from typing import Any, Dict

from tire_store.repositories.base import DictRepository


class SettingsRepository(DictRepository):
    """Repository for site-wide settings."""

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'site_settings.json'))

    def load(self) -> Dict[str, Any]:
        return self.get_all()

    def get_setting(self, key: str, default: Any = None) -> Any:
        value = self.get_all().get(key)
        return default if value is None else value

    def set_setting(self, key: str, value: Any) -> None:
        self.update(key, value)
