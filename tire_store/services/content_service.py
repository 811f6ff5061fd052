# ==============================================================================
# CONTENT SERVICE
# ==============================================================================
# CMS-style content editable from the back office:
#   pages          {slug, title, body, seo_title, seo_description, is_active}
#   faq_entries    {question, answer, category, tags, sort_order, is_active}
#   policies       {key, title, content, category, is_active}
#   site_settings  key -> JSON value (company_info, google_review_url...)
#   newsletter_subscribers {email, name, source}
# ==============================================================================

import logging
import re
from typing import Any, Dict, List, Optional

from tire_store import config
from tire_store.repositories.interfaces import ISettingsRepository, ITableRepository

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

COMPANY_INFO_KEY = 'company_info'
COMPANY_FIELDS = ('name', 'phone', 'email', 'whatsapp', 'address', 'city', 'province',
                  'postal_code', 'hours', 'google_review_link')


def slugify(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', (text or '').lower()).strip('-')


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'on', 'yes')


class ContentService:
    """
    Service for pages, FAQs, policies, site settings and the newsletter.
    """

    def __init__(
        self,
        pages: ITableRepository,
        faqs: ITableRepository,
        policies: ITableRepository,
        newsletter: ITableRepository,
        settings_repo: ISettingsRepository
    ):
        self.pages = pages
        self.faqs = faqs
        self.policies = policies
        self.newsletter = newsletter
        self.settings_repo = settings_repo

    # =========================================================================
    # PAGES
    # =========================================================================

    def list_pages(self) -> List[Dict[str, Any]]:
        return self.pages.select(order_by='slug')

    def get_page(self, slug: str, include_inactive: bool = False) -> Optional[Dict[str, Any]]:
        page = self.pages.maybe_single(slug=slug)
        if page and (include_inactive or page.get('is_active') is not False):
            return page
        return None

    def save_page(self, data: Dict[str, Any], page_id: str = None) -> Dict[str, Any]:
        slug = (data.get('slug') or '').strip().lower() or slugify(data.get('title'))
        title = (data.get('title') or '').strip()
        if not title:
            return {'ok': False, 'error': 'Title is required'}
        if not SLUG_RE.match(slug):
            return {'ok': False, 'error': 'Slug may only contain lowercase letters, numbers and dashes'}
        duplicate = self.pages.maybe_single(slug=slug)
        if duplicate and duplicate['id'] != page_id:
            return {'ok': False, 'error': f'A page with slug "{slug}" already exists'}

        row = {
            'slug': slug,
            'title': title,
            'body': data.get('body') or '',
            'seo_title': data.get('seo_title') or None,
            'seo_description': data.get('seo_description') or None,
            'is_active': _as_bool(data.get('is_active')),
        }
        if page_id:
            if not self.pages.get(page_id):
                return {'ok': False, 'error': 'Page not found'}
            return {'ok': True, 'page': self.pages.update_row(page_id, row)}
        return {'ok': True, 'page': self.pages.insert(row)}

    def delete_page(self, page_id: str) -> Dict[str, Any]:
        if not self.pages.delete_row(page_id):
            return {'ok': False, 'error': 'Page not found'}
        return {'ok': True}

    # =========================================================================
    # FAQ
    # =========================================================================

    def list_faqs(self, active_only: bool = False) -> List[Dict[str, Any]]:
        filters = {'is_active': lambda v: v is not False} if active_only else None
        return self.faqs.select(filters, order_by='sort_order')

    def faqs_by_category(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for faq in self.list_faqs(active_only=True):
            grouped.setdefault(faq.get('category') or 'General', []).append(faq)
        return grouped

    def save_faq(self, data: Dict[str, Any], faq_id: str = None) -> Dict[str, Any]:
        question = (data.get('question') or '').strip()
        answer = (data.get('answer') or '').strip()
        if not question or not answer:
            return {'ok': False, 'error': 'Question and answer are required'}
        tags = data.get('tags') or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(',') if t.strip()]
        try:
            sort_order = int(data.get('sort_order') or 0)
        except (TypeError, ValueError):
            return {'ok': False, 'error': 'Sort order must be a number'}

        row = {
            'question': question,
            'answer': answer,
            'category': (data.get('category') or '').strip() or 'General',
            'tags': tags or None,
            'sort_order': sort_order,
            'is_active': _as_bool(data.get('is_active')),
        }
        if faq_id:
            if not self.faqs.get(faq_id):
                return {'ok': False, 'error': 'FAQ not found'}
            return {'ok': True, 'faq': self.faqs.update_row(faq_id, row)}
        return {'ok': True, 'faq': self.faqs.insert(row)}

    def toggle_faq(self, faq_id: str) -> Dict[str, Any]:
        faq = self.faqs.get(faq_id)
        if not faq:
            return {'ok': False, 'error': 'FAQ not found'}
        return {'ok': True, 'faq': self.faqs.update_row(faq_id, {'is_active': faq.get('is_active') is False})}

    def delete_faq(self, faq_id: str) -> Dict[str, Any]:
        if not self.faqs.delete_row(faq_id):
            return {'ok': False, 'error': 'FAQ not found'}
        return {'ok': True}

    # =========================================================================
    # POLICIES
    # =========================================================================

    def list_policies(self, active_only: bool = False) -> List[Dict[str, Any]]:
        filters = {'is_active': lambda v: v is not False} if active_only else None
        return self.policies.select(filters, order_by='key')

    def get_policy(self, key: str) -> Optional[Dict[str, Any]]:
        policy = self.policies.maybe_single(key=key)
        return policy if policy and policy.get('is_active') is not False else None

    def save_policy(self, data: Dict[str, Any], policy_id: str = None) -> Dict[str, Any]:
        key = (data.get('key') or '').strip().lower() or slugify(data.get('title'))
        title = (data.get('title') or '').strip()
        if not title or not (data.get('content') or '').strip():
            return {'ok': False, 'error': 'Title and content are required'}
        if not SLUG_RE.match(key):
            return {'ok': False, 'error': 'Key may only contain lowercase letters, numbers and dashes'}
        duplicate = self.policies.maybe_single(key=key)
        if duplicate and duplicate['id'] != policy_id:
            return {'ok': False, 'error': f'A policy with key "{key}" already exists'}

        row = {
            'key': key,
            'title': title,
            'content': data['content'].strip(),
            'category': (data.get('category') or '').strip() or 'general',
            'is_active': _as_bool(data.get('is_active')),
        }
        if policy_id:
            if not self.policies.get(policy_id):
                return {'ok': False, 'error': 'Policy not found'}
            return {'ok': True, 'policy': self.policies.update_row(policy_id, row)}
        return {'ok': True, 'policy': self.policies.insert(row)}

    def delete_policy(self, policy_id: str) -> Dict[str, Any]:
        if not self.policies.delete_row(policy_id):
            return {'ok': False, 'error': 'Policy not found'}
        return {'ok': True}

    # =========================================================================
    # SITE SETTINGS
    # =========================================================================

    def get_company_info(self) -> Dict[str, Any]:
        """Stored company info over the configured defaults."""
        info = {
            'name': config.COMPANY_NAME,
            'phone': config.COMPANY_PHONE,
            'email': config.ADMIN_EMAIL,
            'address': config.COMPANY_ADDRESS,
            'google_review_link': config.DEFAULT_GOOGLE_REVIEW_URL,
        }
        stored = self.settings_repo.get_setting(COMPANY_INFO_KEY) or {}
        info.update({k: v for k, v in stored.items() if v not in (None, '')})
        return info

    def save_company_info(self, data: Dict[str, Any]) -> Dict[str, Any]:
        info = {key: (data.get(key) or '').strip() for key in COMPANY_FIELDS if key in data}
        if 'email' in info and info['email'] and not EMAIL_RE.match(info['email']):
            return {'ok': False, 'error': 'Invalid email address'}
        current = self.settings_repo.get_setting(COMPANY_INFO_KEY) or {}
        current.update(info)
        self.settings_repo.set_setting(COMPANY_INFO_KEY, current)
        if info.get('google_review_link'):
            self.settings_repo.set_setting('google_review_url', info['google_review_link'])
        return {'ok': True, 'company_info': self.get_company_info()}

    def set_setting(self, key: str, value: Any) -> Dict[str, Any]:
        key = (key or '').strip()
        if not key:
            return {'ok': False, 'error': 'Setting key is required'}
        self.settings_repo.set_setting(key, value)
        return {'ok': True}

    # =========================================================================
    # NEWSLETTER
    # =========================================================================

    def subscribe(self, email: str, name: str = None, source: str = 'website_footer') -> Dict[str, Any]:
        """
        Returns:
            {'ok': True, 'already_subscribed': bool} or {'ok': False, 'error': ...}
        """
        email = (email or '').strip().lower()
        if not EMAIL_RE.match(email):
            return {'ok': False, 'error': 'Please enter a valid email'}
        if self.newsletter.maybe_single(email=email):
            return {'ok': True, 'already_subscribed': True}
        self.newsletter.insert({'email': email, 'name': name or None, 'source': source})
        return {'ok': True, 'already_subscribed': False}

    def list_subscribers(self) -> List[Dict[str, Any]]:
        return self.newsletter.select(order_by='created_at', desc=True)
