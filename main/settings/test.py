import os

from .base import *

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

if os.getenv('DB_HOST'):
    DATABASES['default'] = {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('POSTGRES_DB', 'clubportal_test'),
        'USER': 'clubportal',
        'PASSWORD': 'clubportal',
        'HOST': os.getenv('DB_HOST'),
        'PORT': '5432',
    }

AUTO_BACKGROUND_TASKS = True

DEBUG = False
EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

PAYPAL_CLIENT_ID = 'test-client'
PAYPAL_CLIENT_SECRET = 'test-secret'
PAYPAL_WEBHOOK_ID = ''

CRON_SECRET = 'cron-test-secret'

FRONTEND_URL = 'https://club.example.com'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARN',
    },
}

ADMINS = [
    ('test', 'test@test.it')
]
