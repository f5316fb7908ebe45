"""
Django settings for the payment gateway service.

Values are read from environment variables so the same module serves
development, tests and production.
"""
import os
from datetime import timedelta
from pathlib import Path


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-development-key')

DEBUG = env_bool('DJANGO_DEBUG', False)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'payments',
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

ROOT_URLCONF = 'config.urls'

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

WSGI_APPLICATION = 'config.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Tehran'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

ADMINS = [
    tuple(entry.split(':', 1))
    for entry in os.environ.get('DJANGO_ADMINS', '').split(',')
    if ':' in entry
]
SERVER_EMAIL = os.environ.get('SERVER_EMAIL', 'payments@localhost')
EMAIL_BACKEND = os.environ.get('EMAIL_BACKEND', 'django.core.mail.backends.console.EmailBackend')

# Django REST Framework

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=int(os.environ.get('JWT_ACCESS_TOKEN_MINUTES', '60'))),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=int(os.environ.get('JWT_REFRESH_TOKEN_DAYS', '7'))),
}

# Celery

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'expire-abandoned-payments': {
        'task': 'payments.tasks.expire_abandoned_payments',
        'schedule': 300.0,
    },
}

# Payment gateways

PAYMENT_GATEWAYS = {
    'zarinpal': {
        'API_KEY': os.environ.get('ZARINPAL_MERCHANT_ID', ''),
        'SANDBOX': env_bool('ZARINPAL_SANDBOX', False),
        'UNIT': os.environ.get('ZARINPAL_CURRENCY', 'IRR'),
    },
    'payir': {
        'API_KEY': os.environ.get('PAYIR_API_KEY', ''),
        'SANDBOX': env_bool('PAYIR_SANDBOX', False),
    },
    'nextpay': {
        'API_KEY': os.environ.get('NEXTPAY_API_KEY', ''),
        'SANDBOX': env_bool('NEXTPAY_SANDBOX', False),
        'UNIT': os.environ.get('NEXTPAY_CURRENCY', 'IRT'),
    },
}

# Failover order, primary first
PAYMENT_GATEWAY_PRIORITY = [
    g.strip() for g in os.environ.get('PAYMENT_GATEWAY_PRIORITY', 'zarinpal,payir,nextpay').split(',') if g.strip()
]
PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get('PAYMENT_GATEWAY_TIMEOUT', 10))
PAYMENT_GATEWAY_COOLDOWN_SECONDS = float(os.environ.get('PAYMENT_GATEWAY_COOLDOWN_SECONDS', 60))
PAYMENT_GATEWAY_FAILURE_THRESHOLD = int(os.environ.get('PAYMENT_GATEWAY_FAILURE_THRESHOLD', 2))
PAYMENT_GATEWAY_FAILURE_WINDOW_SECONDS = float(os.environ.get('PAYMENT_GATEWAY_FAILURE_WINDOW_SECONDS', 30))

PAYMENT_VERIFY_MAX_ATTEMPTS = int(os.environ.get('PAYMENT_VERIFY_MAX_ATTEMPTS', 3))
PAYMENT_VERIFY_BACKOFF_SECONDS = float(os.environ.get('PAYMENT_VERIFY_BACKOFF_SECONDS', 0.5))

# Allowed difference in Rial between stored and reported amounts
PAYMENT_AMOUNT_TOLERANCE = int(os.environ.get('PAYMENT_AMOUNT_TOLERANCE', 0))

PAYMENT_INTENT_TTL_MINUTES = int(os.environ.get('PAYMENT_INTENT_TTL_MINUTES', 30))
PAYMENT_VERIFY_STALE_MINUTES = int(os.environ.get('PAYMENT_VERIFY_STALE_MINUTES', 10))

PAYMENT_CALLBACK_BASE_URL = os.environ.get('PAYMENT_CALLBACK_BASE_URL', 'http://localhost:8000')
PAYMENT_RESULT_URL = os.environ.get('PAYMENT_RESULT_URL', 'http://localhost:3000/payment/result')

# Logging

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'payments': {
            'handlers': ['console'],
            'level': os.environ.get('PAYMENTS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
