"""
Django settings for the Salon Authorization engine.
"""
import os
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
    AUTHZ_CACHE_TTL=(int, 300),
    AUTHZ_REFETCH_COOLDOWN=(int, 5),
    AUTHZ_FETCH_TIMEOUT=(float, 5.0),
    AUTHZ_RETRY_MAX_ATTEMPTS=(int, 3),
    AUTHZ_RETRY_BASE_DELAY=(float, 0.25),
    AUTHZ_RETRY_MAX_DELAY=(float, 2.0),
    AUTHZ_NAVIGATION_MAX_ENTRIES=(int, 5),
    AUTHZ_OWNER_LEVEL_NAVIGATION_ENABLED=(bool, False),
    GRANT_STORE_REQUEST_TIMEOUT=(float, 10.0),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default='authz-development-only-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',

    # Third-party apps
    'rest_framework',

    # Authorization apps
    'apps.core',
    'apps.rbac',
    'apps.tenants',
    'apps.navigation',
]

DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Caches
# 'authz' holds persisted authorization snapshots and must survive restarts:
# Redis when REDIS_URL is set, otherwise files under var/authz.
REDIS_URL = env('REDIS_URL', default=None)

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'authz-default',
    },
}

if REDIS_URL:
    CACHES['authz'] = {
        'BACKEND': 'django_redis.cache.RedisCache',
        'LOCATION': REDIS_URL,
        'OPTIONS': {
            'CLIENT_CLASS': 'django_redis.client.DefaultClient',
            'SOCKET_CONNECT_TIMEOUT': 5,
            'SOCKET_TIMEOUT': 5,
            'CONNECTION_POOL_KWARGS': {
                'max_connections': 50,
                'retry_on_timeout': True,
            },
        },
        'KEY_PREFIX': 'authz',
        'TIMEOUT': None,
    }
else:
    CACHES['authz'] = {
        'BACKEND': 'django.core.cache.backends.filebased.FileBasedCache',
        'LOCATION': str(BASE_DIR / 'var' / 'authz'),
        'TIMEOUT': None,
    }

# Authorization engine
AUTHZ_SNAPSHOT_CACHE_ALIAS = env('AUTHZ_SNAPSHOT_CACHE_ALIAS', default='authz')
AUTHZ_CACHE_TTL = env('AUTHZ_CACHE_TTL')                    # seconds before a snapshot is stale
AUTHZ_REFETCH_COOLDOWN = env('AUTHZ_REFETCH_COOLDOWN')      # minimum seconds between refetches of one key
AUTHZ_FETCH_TIMEOUT = env('AUTHZ_FETCH_TIMEOUT')            # per-tenant bound during fan-out
AUTHZ_RETRY_MAX_ATTEMPTS = env('AUTHZ_RETRY_MAX_ATTEMPTS')
AUTHZ_RETRY_BASE_DELAY = env('AUTHZ_RETRY_BASE_DELAY')
AUTHZ_RETRY_MAX_DELAY = env('AUTHZ_RETRY_MAX_DELAY')
AUTHZ_NAVIGATION_MAX_ENTRIES = env('AUTHZ_NAVIGATION_MAX_ENTRIES')

# Offers the owner navigation table to employees with broad grants.
# Policy decision, off unless explicitly enabled.
AUTHZ_OWNER_LEVEL_NAVIGATION = {
    'ENABLED': env('AUTHZ_OWNER_LEVEL_NAVIGATION_ENABLED'),
    'MIN_PERMISSIONS': 5,
    'KEY_PERMISSIONS': [
        'MANAGE_SALON_PROFILE',
        'MANAGE_APPOINTMENTS',
        'MANAGE_SERVICES',
        'MANAGE_PRODUCTS',
        'PROCESS_PAYMENTS',
        'VIEW_SALES_REPORTS',
        'MANAGE_INVENTORY',
    ],
}

# Grant Store
GRANT_STORE_URL = env('GRANT_STORE_URL', default='')
GRANT_STORE_REQUEST_TIMEOUT = env('GRANT_STORE_REQUEST_TIMEOUT')

# Logging Configuration
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')

os.makedirs(BASE_DIR / 'logs', exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'filters': {
        'sanitize': {
            '()': 'apps.core.logging.SanitizingFilter',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['sanitize'],
        },
        'file': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': BASE_DIR / 'logs' / 'authz.log',
            'maxBytes': 1024 * 1024 * 10,  # 10 MB
            'backupCount': 5,
            'delay': True,
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['sanitize'],
        },
        'security': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': BASE_DIR / 'logs' / 'security.log',
            'maxBytes': 1024 * 1024 * 10,  # 10 MB
            'backupCount': 10,
            'delay': True,
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['sanitize'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console', 'file'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['security', 'console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Sentry Configuration
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        before_send=lambda event, hint: event if not DEBUG else None,
        # Attach stack traces to all messages
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
