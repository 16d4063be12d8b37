from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

PHONEPE_MERCHANT_ID = 'PGTESTPAYUAT'
PHONEPE_SALT_KEY = 'test-salt-key'
PHONEPE_SALT_INDEX = '1'
PHONEPE_BASE_URL = 'https://gateway.test/apis/pg-sandbox'
PHONEPE_REDIRECT_URL = 'https://shop.test/redirect'
PHONEPE_CALLBACK_URL = 'https://shop.test/callback'
PHONEPE_REDIRECT_RECONCILES = False

FRONTEND_URL = 'https://frontend.test'
JWT_SECRET = 'test-jwt-secret-0123456789abcdef0123'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
