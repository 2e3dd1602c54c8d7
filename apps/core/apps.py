from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate authorization settings when Django initializes.

        A misconfigured TTL or retry policy would otherwise only show up
        as wrong authorization decisions at runtime.
        """
        self._validate_authz_timing()
        self._validate_retry_policy()
        self._validate_navigation_settings()
        self._validate_grant_store_configuration()

    def _validate_authz_timing(self):
        ttl = getattr(settings, 'AUTHZ_CACHE_TTL', 300)
        cooldown = getattr(settings, 'AUTHZ_REFETCH_COOLDOWN', 5)
        timeout = getattr(settings, 'AUTHZ_FETCH_TIMEOUT', 5)

        if ttl <= 0:
            raise ImproperlyConfigured(f"AUTHZ_CACHE_TTL must be positive, got {ttl}")
        if cooldown < 0:
            raise ImproperlyConfigured(f"AUTHZ_REFETCH_COOLDOWN must not be negative, got {cooldown}")
        if cooldown >= ttl:
            raise ImproperlyConfigured(
                f"AUTHZ_REFETCH_COOLDOWN ({cooldown}s) must be shorter than AUTHZ_CACHE_TTL ({ttl}s)"
            )
        if timeout <= 0:
            raise ImproperlyConfigured(f"AUTHZ_FETCH_TIMEOUT must be positive, got {timeout}")

        alias = getattr(settings, 'AUTHZ_SNAPSHOT_CACHE_ALIAS', 'authz')
        if alias not in settings.CACHES:
            raise ImproperlyConfigured(
                f"AUTHZ_SNAPSHOT_CACHE_ALIAS '{alias}' is not configured in CACHES"
            )

    def _validate_retry_policy(self):
        attempts = getattr(settings, 'AUTHZ_RETRY_MAX_ATTEMPTS', 3)
        base_delay = getattr(settings, 'AUTHZ_RETRY_BASE_DELAY', 0.25)
        max_delay = getattr(settings, 'AUTHZ_RETRY_MAX_DELAY', 2.0)

        if attempts < 1:
            raise ImproperlyConfigured(f"AUTHZ_RETRY_MAX_ATTEMPTS must be at least 1, got {attempts}")
        if base_delay < 0 or max_delay < base_delay:
            raise ImproperlyConfigured(
                f"AUTHZ_RETRY_BASE_DELAY ({base_delay}) must be between 0 and "
                f"AUTHZ_RETRY_MAX_DELAY ({max_delay})"
            )

    def _validate_navigation_settings(self):
        max_entries = getattr(settings, 'AUTHZ_NAVIGATION_MAX_ENTRIES', 5)
        if max_entries < 1:
            raise ImproperlyConfigured(
                f"AUTHZ_NAVIGATION_MAX_ENTRIES must be at least 1, got {max_entries}"
            )

        policy = getattr(settings, 'AUTHZ_OWNER_LEVEL_NAVIGATION', None) or {}
        if policy.get('ENABLED'):
            logger.warning(
                "⚠ AUTHZ_OWNER_LEVEL_NAVIGATION is enabled. Employees with broad grants "
                "will see the owner navigation table."
            )

    def _validate_grant_store_configuration(self):
        """GRANT_STORE_URL is optional in development, required otherwise."""
        url = getattr(settings, 'GRANT_STORE_URL', '')
        if url:
            if not url.startswith(('http://', 'https://')):
                raise ImproperlyConfigured(f"GRANT_STORE_URL must be an http(s) URL, got '{url}'")
            return
        if not getattr(settings, 'DEBUG', False):
            logger.warning(
                "⚠ GRANT_STORE_URL is not set. HttpGrantStoreClient cannot reach the Grant Store."
            )
