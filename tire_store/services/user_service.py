# ==============================================================================
# USER SERVICE
# ==============================================================================
# Accounts, authentication and roles.
#
# Roles: admin | staff | dealer | user
#   - admin / staff reach the back office
#   - dealer accounts see wholesale prices once their dealer row is approved
#
# Password hashing uses werkzeug; the repository never sees plain text.
# ==============================================================================

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from werkzeug.security import generate_password_hash, check_password_hash

from tire_store.models import AppRole, enum_values
from tire_store.repositories.interfaces import IUserRepository
from tire_store.services.audit_service import AuditService

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class PermissionDeniedError(Exception):
    """Raised when an account lacks the role an action requires."""
    pass


class UserService:
    """
    Service for account management.

    Responsibilities:
    - Sign up / sign in (werkzeug password hashes)
    - Roles and role checks
    - User metadata (name, phone...)
    """

    VALID_ROLES = frozenset(enum_values(AppRole))
    BACK_OFFICE_ROLES = frozenset([AppRole.ADMIN.value, AppRole.STAFF.value])
    MIN_PASSWORD_LENGTH = 6

    def __init__(self, user_repo: IUserRepository, audit_service: AuditService = None):
        """
        Args:
            user_repo: Account repository
            audit_service: Audit service (optional, for role changes)
        """
        self.user_repo = user_repo
        self.audit_service = audit_service

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: Dict[str, Any] = None,
        role: str = AppRole.USER.value
    ) -> Dict[str, Any]:
        """
        Create an account.

        Args:
            email: Login email
            password: Plain password (hashed here)
            metadata: Extra profile fields (full_name, phone...)
            role: Initial role

        Returns:
            {'ok': True, 'user': {...}} or {'ok': False, 'error': ...}
        """
        email = (email or '').strip().lower()
        if not EMAIL_RE.match(email):
            return {'ok': False, 'error': 'A valid email is required'}
        if len(password or '') < self.MIN_PASSWORD_LENGTH:
            return {'ok': False, 'error': f'Password must be at least {self.MIN_PASSWORD_LENGTH} characters'}
        if role not in self.VALID_ROLES:
            return {'ok': False, 'error': f'Invalid role: {role}'}

        user = self.user_repo.create_user(email, generate_password_hash(password), role, metadata or {})
        if user is None:
            return {'ok': False, 'error': 'An account with this email already exists'}
        logger.info("Account created: %s (%s)", email, role)
        return {'ok': True, 'user': self._public(user)}

    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Returns:
            Public user dict, or None when the credentials do not match
        """
        user = self.user_repo.get_by_email(email)
        if not user or not check_password_hash(user.get('password', ''), password or ''):
            return None
        return self._public(user)

    def ensure_account(self, email: str, password: str, role: str) -> Dict[str, Any]:
        """
        Create an account if missing, otherwise make sure it has the role.
        Used to bootstrap the first admin from environment variables.
        """
        existing = self.user_repo.get_by_email(email)
        if existing:
            if existing.get('role') != role:
                self.user_repo.update_user(existing['id'], {'role': role})
            return {'ok': True, 'user': self._public(dict(existing, role=role))}
        return self.sign_up(email, password, role=role)

    # =========================================================================
    # PROFILE
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.user_repo.get_user(user_id) if user_id else None
        return self._public(user) if user else None

    def update_metadata(self, user_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        if not self.user_repo.update_metadata(user_id, metadata):
            return {'ok': False, 'error': 'User not found'}
        return {'ok': True, 'user': self.get_user(user_id)}

    def list_users(self) -> List[Dict[str, Any]]:
        return self.user_repo.list_users()

    # =========================================================================
    # ROLES
    # =========================================================================

    def has_role(self, user_id: str, roles: Iterable[str]) -> bool:
        user = self.user_repo.get_user(user_id) if user_id else None
        return bool(user) and user.get('role') in set(roles)

    def is_admin_or_staff(self, user_id: str) -> bool:
        return self.has_role(user_id, self.BACK_OFFICE_ROLES)

    def require_role(self, user_id: str, roles: Iterable[str]) -> Dict[str, Any]:
        """
        Raises:
            PermissionDeniedError: If the user is missing or lacks every role
        """
        roles = set(roles)
        user = self.get_user(user_id)
        if not user or user.get('role') not in roles:
            raise PermissionDeniedError(f"Requires one of: {', '.join(sorted(roles))}")
        return user

    def set_role(self, target_user_id: str, new_role: str, acting_user_id: str = None) -> Dict[str, Any]:
        """
        Change an account's role.

        Rules:
            - Role must be valid
            - An admin cannot remove their own admin role
        """
        new_role = (new_role or '').strip().lower()
        if new_role not in self.VALID_ROLES:
            return {'ok': False, 'error': f'Invalid role: {new_role}'}

        user = self.user_repo.get_user(target_user_id)
        if not user:
            return {'ok': False, 'error': 'User not found'}

        old_role = user.get('role')
        if target_user_id == acting_user_id and old_role == AppRole.ADMIN.value and new_role != old_role:
            return {'ok': False, 'error': 'You cannot remove your own admin role'}

        self.user_repo.update_user(target_user_id, {'role': new_role})
        if self.audit_service:
            self.audit_service.log('users', AuditService.ROLE_CHANGE, target_user_id,
                                   {'role': old_role}, {'role': new_role}, acting_user_id)
        return {'ok': True, 'role': new_role}

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _public(user: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(user)
        data.pop('password', None)
        return data
