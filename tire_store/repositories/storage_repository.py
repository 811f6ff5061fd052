# ==============================================================================
# OBJECT STORAGE - file buckets
# ==============================================================================
# Each bucket is a folder under <storage_root>/<bucket>/. Files are addressed
# by a relative path ("<user_id>/<timestamp>.pdf") and exposed through the
# public URL /uploads/<bucket>/<path>.
# ==============================================================================

import os
from typing import Iterable

from werkzeug.utils import secure_filename

from tire_store.repositories.base import BackendError

PUBLIC_URL_PREFIX = '/uploads'


class StorageBucket:
    """
    A named storage bucket.

    Usage:
        bucket = StorageBucket('/srv/uploads', 'product-images', {'png', 'jpg'})
        path = bucket.upload('abc/1700000000.png', request.files['image'])
        url = bucket.get_public_url(path)
    """

    def __init__(self, storage_root: str, bucket: str, allowed_extensions: Iterable[str] = None):
        self.bucket = bucket
        self.root = os.path.join(storage_root, bucket)
        self.allowed_extensions = {e.lower() for e in (allowed_extensions or [])}
        os.makedirs(self.root, exist_ok=True)

    @staticmethod
    def extension_of(filename: str) -> str:
        return filename.rsplit('.', 1)[1].lower() if filename and '.' in filename else ''

    def is_allowed(self, filename: str) -> bool:
        if not self.allowed_extensions:
            return True
        return self.extension_of(filename) in self.allowed_extensions

    def _safe_path(self, path: str) -> str:
        parts = [secure_filename(p) for p in (path or '').replace('\\', '/').split('/')]
        parts = [p for p in parts if p]
        if not parts:
            raise BackendError("Invalid storage path", table=self.bucket)
        return '/'.join(parts)

    def upload(self, path: str, file_storage) -> str:
        """
        Save an uploaded file (werkzeug FileStorage or anything with .save()).

        Args:
            path: Relative destination path
            file_storage: Uploaded file

        Returns:
            Normalised relative path actually stored

        Raises:
            BackendError: If the extension is not allowed or saving fails
        """
        safe = self._safe_path(path)
        if not self.is_allowed(safe):
            raise BackendError(f"File type not allowed: .{self.extension_of(safe)}", table=self.bucket)
        destination = os.path.join(self.root, *safe.split('/'))
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        try:
            file_storage.save(destination)
        except OSError as e:
            raise BackendError(f"Upload failed: {e}", table=self.bucket) from e
        return safe

    def get_public_url(self, path: str) -> str:
        return f'{PUBLIC_URL_PREFIX}/{self.bucket}/{self._safe_path(path)}'

    def exists(self, path: str) -> bool:
        return os.path.isfile(os.path.join(self.root, *self._safe_path(path).split('/')))

    def remove(self, path: str) -> bool:
        target = os.path.join(self.root, *self._safe_path(path).split('/'))
        if os.path.isfile(target):
            os.remove(target)
            return True
        return False
