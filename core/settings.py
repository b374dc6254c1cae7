"""
Django Settings for Fanpay Project

Configuration file for the Fanpay application, a platform where fans pay
creators directly in SOL for tips, subscriptions and unlocks of gated
content.

Key Features Configured:
- MySQL database support with PyMySQL (SQLite when MySQL is not configured)
- Solana JSON-RPC endpoint and commitment level
- SOL/USD price feed with cached last-known-good quote
- Platform wallet pool and deposit sweep settings
- Logging for the payment reconciliation core

Environment Variables:
- DJANGO_SECRET_KEY: Django secret key for cryptographic signing
- MYSQL_* variables: Database connection parameters (optional)
- SOLANA_RPC_URL: Solana JSON-RPC endpoint
- FANPAY_* variables: Pricing, wallet pool and sweep configuration

For more information on Django settings:
https://docs.djangoproject.com/en/5.2/topics/settings/
"""

import os
import json
from pathlib import Path
from dotenv import load_dotenv
import pymysql

# Configure PyMySQL to work as MySQLdb replacement
pymysql.install_as_MySQLdb()

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv()

# Security Settings
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'fanpay-insecure-development-key')

# SECURITY WARNING: Don't run with debug turned on in production!
DEBUG = os.getenv("DJANGO_DEBUG", "False") == "True"

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '').split(',') if h]

# Application Definition
INSTALLED_APPS = [
    # Default Django applications
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Fanpay payment application
    'fanpay',
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


# Database
# https://docs.djangoproject.com/en/5.2/ref/settings/#databases
# MySQL in production; a local SQLite file when MYSQL_DATABASE is not set.

if os.environ.get('MYSQL_DATABASE'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.mysql',
            'NAME': os.environ.get('MYSQL_DATABASE'),
            'USER': os.environ.get('MYSQL_USER', 'fanpay'),
            'PASSWORD': os.environ.get('MYSQL_PASSWORD', ''),
            'HOST': os.environ.get('MYSQL_HOST', 'localhost'),
            'PORT': os.environ.get('MYSQL_PORT', '3306'),
            'OPTIONS': {
                'isolation_level': 'read committed',
            },
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Cache holds the last-known-good SOL price
CACHES = {
    'default': {
        'BACKEND': os.environ.get('DJANGO_CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': os.environ.get('DJANGO_CACHE_LOCATION', 'fanpay'),
    }
}

# Password validation
# https://docs.djangoproject.com/en/5.2/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


# Internationalization
# https://docs.djangoproject.com/en/5.2/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)
# https://docs.djangoproject.com/en/5.2/howto/static-files/

STATIC_URL = 'static/'

# Default primary key field type
# https://docs.djangoproject.com/en/5.2/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Solana ledger access
SOLANA_RPC_URL = os.environ.get('SOLANA_RPC_URL', 'https://api.devnet.solana.com')
SOLANA_COMMITMENT = os.environ.get('SOLANA_COMMITMENT', 'confirmed')
SOLANA_RPC_TIMEOUT = float(os.environ.get('SOLANA_RPC_TIMEOUT', '10'))

# Payments
FANPAY_SUPPORTED_CURRENCIES = json.loads(os.environ.get('FANPAY_SUPPORTED_CURRENCIES', '["SOL"]'))
FANPAY_PAYMENT_LABEL = os.environ.get('FANPAY_PAYMENT_LABEL', 'Fanpay')
FANPAY_REFERENCE_SCAN_LIMIT = int(os.environ.get('FANPAY_REFERENCE_SCAN_LIMIT', '10'))

# Pricing (SOL/USD)
FANPAY_PRICE_FEED_URL = os.environ.get(
    'FANPAY_PRICE_FEED_URL',
    'https://min-api.cryptocompare.com/data/price?fsym=SOL&tsyms=USD',
)
FANPAY_PRICE_CACHE_SECONDS = int(os.environ.get('FANPAY_PRICE_CACHE_SECONDS', '60'))
FANPAY_SOL_USD_PRICE = os.environ.get('FANPAY_SOL_USD_PRICE') or None
FANPAY_FALLBACK_SOL_USD = os.environ.get('FANPAY_FALLBACK_SOL_USD') or None

# Deposits
FANPAY_SWEEP_TOKEN = os.environ.get('FANPAY_SWEEP_TOKEN') or None
FANPAY_DEPOSIT_ACTIVITY_LIMIT = int(os.environ.get('FANPAY_DEPOSIT_ACTIVITY_LIMIT', '1'))


# Logging
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'fanpay': {
            'handlers': ['console'],
            'level': os.environ.get('FANPAY_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
