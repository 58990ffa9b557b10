import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes', 'on')


def env_optional_float(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return None if value.lower() in ('', 'none') else float(value)


# The development defaults here are only fit for running locally; set DJANGO_SECRET_KEY,
# DJANGO_DEBUG and DJANGO_ALLOWED_HOSTS in the environment anywhere else.
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'newsgraph-insecure-development-key')
DEBUG = env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')

INSTALLED_APPS = [
    'django.contrib.staticfiles',
    'graphene_django',
    'newsgraph',
    'users',
    'links',
]

# This is a JSON API authenticated by bearer tokens, with no sessions or cookies, so there is no
# CSRF middleware.
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'newsgraph.urls'

# The GraphiQL page is a graphene-django template with static assets.
TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {},
    },
]
STATIC_URL = 'static/'
ASGI_APPLICATION = 'newsgraph.asgi.application'
APPEND_SLASH = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('NEWSGRAPH_DATABASE', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'

GRAPHENE = {
    'SCHEMA': 'newsgraph.schema.schema',
    'GRAPHIQL_HEADER_EDITOR_ENABLED': True,
}

NEWSGRAPH = {
    'STORE_TIMEOUT': env_optional_float('NEWSGRAPH_STORE_TIMEOUT', 10.0),
    'STORE_ERROR_POLICY': os.environ.get('NEWSGRAPH_STORE_ERROR_POLICY', 'raise'),
    'LOADER_MAX_BATCH_SIZE': int(os.environ['NEWSGRAPH_LOADER_MAX_BATCH_SIZE'])
                             if os.environ.get('NEWSGRAPH_LOADER_MAX_BATCH_SIZE') else None,
}

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'console': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'console',
        },
    },
    'loggers': {
        'newsgraph': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'links': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'users': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
