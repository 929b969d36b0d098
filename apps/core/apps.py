from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Runs for the test runner and long-lived processes only, so that
        migrations and shell sessions work with a partial configuration.
        """
        import sys
        if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
            if 'pytest' not in sys.argv[0]:
                return

        self._validate_security_settings()
        self._validate_cache_configuration()

        logger.debug("Startup configuration validated")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if not debug and secret_key == getattr(settings, 'DEVELOPMENT_SECRET_KEY', None):
            logger.warning(
                "SECRET_KEY is the built-in development value. "
                "Set SECRET_KEY in the environment before deploying."
            )

    def _validate_cache_configuration(self):
        """The decision cache must point at a configured cache alias."""
        alias = getattr(settings, 'RBAC_CACHE_ALIAS', 'default')
        caches = getattr(settings, 'CACHES', {})
        if alias not in caches:
            raise ImproperlyConfigured(
                f"RBAC_CACHE_ALIAS '{alias}' is not defined in CACHES. "
                f"Configured aliases: {sorted(caches)}"
            )

        ttl = getattr(settings, 'RBAC_DECISION_CACHE_TTL', 60)
        if ttl is None or int(ttl) < 0:
            raise ImproperlyConfigured(
                "RBAC_DECISION_CACHE_TTL must be a non-negative number of seconds."
            )
