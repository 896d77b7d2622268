"""
Production settings for Labo Planning.

Point DJANGO_SETTINGS_MODULE at labo_planning.settings_production and set
SECRET_KEY, ALLOWED_HOSTS and DATABASE_URL in the environment. REDIS_URL and
the EMAIL_* variables are optional.
"""

import os

import dj_database_url

from .settings import *

DEBUG = False

SECRET_KEY = os.environ.get('SECRET_KEY')
if not SECRET_KEY:
    raise ValueError("SECRET_KEY must be set in production.")

ALLOWED_HOSTS = [host for host in os.environ.get('ALLOWED_HOSTS', '').split(',') if host]
if not ALLOWED_HOSTS:
    raise ValueError("ALLOWED_HOSTS must be set in production (comma-separated domains).")

# Slot rows are locked with SELECT ... FOR UPDATE, which SQLite ignores
DATABASES = {
    'default': dj_database_url.config(conn_max_age=600, conn_health_checks=True),
}
if not DATABASES['default']:
    raise ValueError("DATABASE_URL must be set in production.")

if os.environ.get('REDIS_URL'):
    CACHES = {
        'default': {
            'BACKEND': 'django_redis.cache.RedisCache',
            'LOCATION': os.environ['REDIS_URL'],
            'OPTIONS': {
                'CLIENT_CLASS': 'django_redis.client.DefaultClient',
            },
            'KEY_PREFIX': 'labo_planning',
        }
    }

# Owner notifications
EMAIL_BACKEND = 'django.core.mail.backends.smtp.EmailBackend'
EMAIL_HOST = os.environ.get('EMAIL_HOST', 'localhost')
EMAIL_PORT = int(os.environ.get('EMAIL_PORT', '587'))
EMAIL_USE_TLS = os.environ.get('EMAIL_USE_TLS', 'True').lower() == 'true'
EMAIL_HOST_USER = os.environ.get('EMAIL_HOST_USER', '')
EMAIL_HOST_PASSWORD = os.environ.get('EMAIL_HOST_PASSWORD', '')

LOGS_DIR = os.environ.get('LOGS_DIR', os.path.join(BASE_DIR, 'logs'))
os.makedirs(LOGS_DIR, exist_ok=True)

LOGGING['formatters']['verbose'] = {
    'format': '{levelname} {asctime} {name} {process:d} {message}',
    'style': '{',
}
LOGGING['handlers']['scheduling_file'] = {
    'level': 'INFO',
    'class': 'logging.handlers.RotatingFileHandler',
    'filename': os.path.join(LOGS_DIR, 'scheduling.log'),
    'maxBytes': 1024*1024*15,  # 15MB
    'backupCount': 10,
    'formatter': 'verbose',
}
LOGGING['handlers']['console']['level'] = 'INFO'
LOGGING['loggers']['scheduling']['handlers'] = ['console', 'scheduling_file']
