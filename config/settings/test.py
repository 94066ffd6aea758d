"""Test settings.

SQLite, fast password hashing, eager Celery and the sandbox
transfer gateway so tests never reach Paystack or a broker.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        # File-backed so threaded tests get real SQLite locking.
        'TEST': {'NAME': BASE_DIR / 'test_db.sqlite3'},
        'OPTIONS': {'transaction_mode': 'IMMEDIATE', 'timeout': 20},
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

ENCRYPTION_KEY = 'test-encryption-key'
PAYSTACK_SECRET_KEY = 'sk_test_webhook_secret'
PAYMENT_GATEWAY_BACKEND = 'sandbox'
SETTLEMENT_TASK_MAX_RETRIES = 0
