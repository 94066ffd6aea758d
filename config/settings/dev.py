"""Development settings.

Debug on, emails printed to the console and, unless a Paystack test key
is exported, payouts go through the in-process sandbox gateway. Set
``CELERY_TASK_ALWAYS_EAGER=1`` to settle inline without a worker.
"""

import os

from .base import *  # noqa: F401,F403
from .base import LOGGING

DEBUG = True

ALLOWED_HOSTS = ['*']

EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', '0') == '1'

# Short leases so an interrupted payout is resumed quickly while testing
SETTLEMENT_LEASE_SECONDS = int(os.environ.get('SETTLEMENT_LEASE_SECONDS', 30))

LOGGING['loggers']['apps.finances']['level'] = 'DEBUG'
