"""
Django settings for the kvite HTTP API.

Every setting that matters in deployment can be overridden with an
environment variable.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('KVITE_API_SECRET_KEY', 'kvite-api-insecure-development-key')
DEBUG = os.environ.get('KVITE_API_DEBUG', '0') == '1'
ALLOWED_HOSTS = os.environ.get('KVITE_API_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
]

MIDDLEWARE = [
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'kvite_api.urls'

# Django itself keeps no state; the key-value data lives in KVITE_DATABASE_PATH.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

USE_TZ = True

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'DEFAULT_RENDERER_CLASSES': ['rest_framework.renderers.JSONRenderer'],
    'DEFAULT_PARSER_CLASSES': ['rest_framework.parsers.JSONParser'],
    'UNAUTHENTICATED_USER': None,
}

# kvite store configuration
KVITE_DATABASE_PATH = os.environ.get('KVITE_DATABASE_PATH', str(BASE_DIR / 'kvite.db'))
KVITE_NAMESPACE = os.environ.get('KVITE_NAMESPACE') or None
KVITE_SCHEMA = os.environ.get('KVITE_SCHEMA', 'shared')

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
        'kvite': {
            'handlers': ['console'],
            'level': os.environ.get('KVITE_LOG_LEVEL', 'INFO'),
        },
        'kvite_api': {
            'handlers': ['console'],
            'level': os.environ.get('KVITE_LOG_LEVEL', 'INFO'),
        },
    },
}
