# ==============================================================================
# AUTOMATIC BACKUP SERVICE
# ==============================================================================
# One ZIP per day of every JSON file in the data directory (tables, users,
# site settings), stored in <data_dir>/backups/backup_YYYY-MM-DD.zip.
# The newest MAX_BACKUPS archives are kept, older ones are deleted.
# ==============================================================================

import logging
import os
import zipfile
from datetime import date, datetime
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = 'backup_'
ARCHIVE_SUFFIX = '.zip'


def archive_name(day: date) -> str:
    return f'{ARCHIVE_PREFIX}{day.isoformat()}{ARCHIVE_SUFFIX}'


def archive_date(filename: str) -> Optional[date]:
    """Date encoded in an archive name, None for any other file."""
    if not (filename.startswith(ARCHIVE_PREFIX) and filename.endswith(ARCHIVE_SUFFIX)):
        return None
    try:
        return datetime.strptime(filename[len(ARCHIVE_PREFIX):-len(ARCHIVE_SUFFIX)], '%Y-%m-%d').date()
    except ValueError:
        return None


class BackupService:
    """
    Daily backups of the table store.

    Usage:
        backups = BackupService(data_dir='/srv/tire_store/data')
        backups.run_daily_backup()
    """

    MAX_BACKUPS = 7

    BACKUP_DIR_NAME = 'backups'

    # Always attempted, even before the first write creates them
    ALWAYS_INCLUDED = ('users.json', 'site_settings.json')

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.backup_root = os.path.join(data_dir, self.BACKUP_DIR_NAME)
        os.makedirs(self.backup_root, exist_ok=True)

    @property
    def today_path(self) -> str:
        return os.path.join(self.backup_root, archive_name(date.today()))

    def today_exists(self) -> bool:
        path = self.today_path
        return os.path.isfile(path) and os.path.getsize(path) > 0

    def data_files(self) -> List[str]:
        names = set(self.ALWAYS_INCLUDED)
        for entry in os.scandir(self.data_dir):
            if entry.is_file() and entry.name.endswith('.json'):
                names.add(entry.name)
        return sorted(names)

    def archives(self) -> List[str]:
        """Archive file names, newest first."""
        if not os.path.isdir(self.backup_root):
            return []
        found = [
            entry.name for entry in os.scandir(self.backup_root)
            if entry.is_file() and archive_date(entry.name)
        ]
        return sorted(found, key=archive_date, reverse=True)

    # =========================================================================
    # CREATE / ROTATE
    # =========================================================================

    def _write_archive(self, path: str):
        """
        Returns:
            (files_added, errors)
        """
        added, errors = 0, []
        try:
            with zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED) as archive:
                for name in self.data_files():
                    source = os.path.join(self.data_dir, name)
                    if not os.path.exists(source):
                        continue
                    try:
                        archive.write(source, name)
                        added += 1
                    except OSError as e:
                        errors.append(f"{name}: {e}")
        except (OSError, zipfile.BadZipFile) as e:
            errors.append(f"Error creating ZIP: {e}")
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Could not remove broken backup %s", path)
        return added, errors

    def create_backup(self, force: bool = False) -> Dict:
        """
        Write today's archive.

        Args:
            force: Overwrite an archive already written today

        Returns:
            {success, message, files_added, errors, backup_path}
        """
        path = self.today_path
        if self.today_exists() and not force:
            logger.info("Backup already exists today: %s", os.path.basename(path))
            return {'success': True, 'message': "Today's backup already exists",
                    'files_added': 0, 'errors': [], 'backup_path': path}

        added, errors = self._write_archive(path)
        if added:
            size_kb = round(os.path.getsize(path) / 1024, 2)
            message = f'Backup created: {added} files ({size_kb} KB)'
            logger.info("Backup created: %s (%d files, %s KB)", os.path.basename(path), added, size_kb)
        else:
            message = 'Backup failed' if errors else 'No files found to back up'
            logger.warning("%s: %s", message, errors)

        return {
            'success': bool(added),
            'message': message,
            'files_added': added,
            'errors': errors,
            'backup_path': path if added else None,
        }

    def rotate_backups(self) -> Dict[str, int]:
        """Delete archives beyond MAX_BACKUPS, oldest first."""
        deleted = 0
        for name in self.archives()[self.MAX_BACKUPS:]:
            try:
                os.remove(os.path.join(self.backup_root, name))
            except OSError as e:
                logger.error("Could not delete %s: %s", name, e)
                continue
            deleted += 1
            logger.info("Deleted old backup: %s", name)
        return {'deleted_count': deleted, 'remaining_count': len(self.archives())}

    def run_daily_backup(self) -> Dict:
        return {'backup': self.create_backup(), 'rotation': self.rotate_backups()}

    # =========================================================================
    # STATUS
    # =========================================================================

    def _describe(self, name: str) -> Dict:
        path = os.path.join(self.backup_root, name)
        size_bytes = os.path.getsize(path)
        try:
            with zipfile.ZipFile(path) as archive:
                files = len(archive.namelist())
        except zipfile.BadZipFile:
            files = 0
        return {
            'filename': name,
            'date': archive_date(name).isoformat(),
            'files': files,
            'size_bytes': size_bytes,
            'size_kb': round(size_bytes / 1024, 2),
        }

    def get_backup_status(self) -> Dict:
        backups = [self._describe(name) for name in self.archives()]
        return {
            'total_backups': len(backups),
            'max_backups': self.MAX_BACKUPS,
            'backup_root': self.backup_root,
            'backups': backups,
            'today_exists': self.today_exists(),
        }


def run_startup_backup(service: Optional[BackupService]) -> None:
    """Daily backup at application start; failures are logged only."""
    if service is None:
        return
    try:
        result = service.run_daily_backup()
    except OSError:
        logger.exception("Startup backup failed")
        return
    if result['backup']['errors']:
        logger.warning("Backup errors: %s", result['backup']['errors'])
