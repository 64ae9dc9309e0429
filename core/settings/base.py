from pathlib import Path

from celery.schedules import crontab
from environs import Env

env = Env()
env.read_env(recurse=False)

BASE_DIR = Path(__file__).resolve().parent.parent.parent

SECRET_KEY = env.str('SECRET_KEY', 'django-insecure-7c!f0q6x@u$3r9lz^k2m#w8h1e5j_vb4n(a)ydt+gsp=oi')

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', [])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'inventory_sync',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.LimitOffsetPagination',
    'PAGE_SIZE': 100,
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'inventory_sync': {
            'handlers': ['console'],
            'level': env.str('LOG_LEVEL', 'INFO'),
        },
    },
}

# Celery
CELERY_BROKER_URL = env.str('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = CELERY_BROKER_URL
CELERY_BEAT_SCHEDULE = {
    'sync-critical-every-15-min': {
        'task': 'inventory_sync.tasks.sync_inventory',
        'schedule': 900,
        'kwargs': {'strategy': 'critical'},
    },
    'sync-inventory-hourly': {
        'task': 'inventory_sync.tasks.sync_inventory',
        'schedule': 3600,
        'kwargs': {'strategy': 'inventory'},
    },
    'sync-full-nightly': {
        'task': 'inventory_sync.tasks.sync_inventory',
        'schedule': crontab(hour=2, minute=0),
        'kwargs': {'strategy': 'full'},
    },
}

# Finale API
FINALE_API_BASE_URL = env.str('FINALE_API_BASE_URL', 'https://app.finaleinventory.com/{account}/api')
FINALE_API_KEY = env.str('FINALE_API_KEY', '')
FINALE_API_SECRET = env.str('FINALE_API_SECRET', '')
FINALE_ACCOUNT_PATH = env.str('FINALE_ACCOUNT_PATH', '')
FINALE_INVENTORY_REPORT_URL = env.str('FINALE_INVENTORY_REPORT_URL', '')
FINALE_API_RATE_LIMIT = env.int('FINALE_API_RATE_LIMIT', 2)
FINALE_API_MAX_RETRIES = env.int('FINALE_API_MAX_RETRIES', 3)
FINALE_API_RETRY_BASE_DELAY = env.float('FINALE_API_RETRY_BASE_DELAY', 1.0)
FINALE_API_TIMEOUT = env.float('FINALE_API_TIMEOUT', 30.0)
FINALE_PAGE_SIZE = env.int('FINALE_PAGE_SIZE', 100)

# Sync pipeline
SYNC_BATCH_SIZE = env.int('SYNC_BATCH_SIZE', 100)
SYNC_LOCK_TIMEOUT = env.int('SYNC_LOCK_TIMEOUT', 900)
SYNC_STALE_MINUTES = env.int('SYNC_STALE_MINUTES', 30)

# Alert emails go out through the transactional provider's SMTP relay
EMAIL_BACKEND = env.str('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = env.str('EMAIL_HOST', 'smtp.sendgrid.net')
EMAIL_PORT = env.int('EMAIL_PORT', 587)
EMAIL_USE_TLS = env.bool('EMAIL_USE_TLS', True)
EMAIL_HOST_USER = env.str('EMAIL_HOST_USER', 'apikey')
EMAIL_HOST_PASSWORD = env.str('SENDGRID_API_KEY', '')
EMAIL_TIMEOUT = env.int('EMAIL_TIMEOUT', 30)
ALERT_FROM_EMAIL = env.str('ALERT_FROM_EMAIL', 'noreply@inventory-manager.com')
ALERT_EMAILS = env.list('ALERT_EMAILS', [])
ALERT_MAX_RETRIES = env.int('ALERT_MAX_RETRIES', 3)
ALERT_RETRY_BASE_DELAY = env.float('ALERT_RETRY_BASE_DELAY', 1.0)
APP_BASE_URL = env.str('APP_BASE_URL', 'http://localhost:8000')
