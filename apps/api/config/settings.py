"""
Django settings for the dental procedure imaging core.
"""

import os
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Application version
VERSION = os.environ.get('APP_VERSION', '1.0.0')
COMMIT_HASH = os.environ.get('COMMIT_HASH', None)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',

    'apps.core',        # errors, observability, service wiring
    'apps.storage',     # record store tables, blob stores
    'apps.procedures',  # procedure definitions, procedure/step lifecycle
    'apps.imaging',     # image versions, renditions, annotations
    'apps.archival',    # cold-tier archival sweep
]

MIDDLEWARE = []

# Database
DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.postgresql'),
        'NAME': os.environ.get('DATABASE_NAME', 'dental_imaging_db'),
        'USER': os.environ.get('DATABASE_USER', 'dental_user'),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', 'dental_dev_pass'),
        'HOST': os.environ.get('DATABASE_HOST', 'postgres'),
        'PORT': os.environ.get('DATABASE_PORT', '5432'),
    }
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ==============================================================================
# STORAGE BACKENDS
# ==============================================================================
# django | memory
RECORD_STORE_BACKEND = os.environ.get('RECORD_STORE_BACKEND', 'django')
# minio | memory
BLOB_STORE_BACKEND = os.environ.get('BLOB_STORE_BACKEND', 'minio')

# ==============================================================================
# IMAGING
# ==============================================================================
IMAGE_MAX_UPLOAD_BYTES = int(os.environ.get('IMAGE_MAX_UPLOAD_BYTES', 10 * 1024 * 1024))
IMAGE_THUMBNAIL_SMALL = int(os.environ.get('IMAGE_THUMBNAIL_SMALL', 200))
IMAGE_THUMBNAIL_LARGE = int(os.environ.get('IMAGE_THUMBNAIL_LARGE', 800))
IMAGE_THUMBNAIL_QUALITY = int(os.environ.get('IMAGE_THUMBNAIL_QUALITY', 85))
IMAGE_COMPRESSION_QUALITY = int(os.environ.get('IMAGE_COMPRESSION_QUALITY', 70))
IMAGE_URL_TTL_SECONDS = int(os.environ.get('IMAGE_URL_TTL_SECONDS', 3600))

# ==============================================================================
# ARCHIVAL
# ==============================================================================
ARCHIVAL_RETENTION_DAYS = int(os.environ.get('ARCHIVAL_RETENTION_DAYS', 3 * 365))
ARCHIVAL_PAGE_SIZE = int(os.environ.get('ARCHIVAL_PAGE_SIZE', 100))
# Schedule: ARCHIVAL_ENABLED and ARCHIVAL_SCHEDULE_CRON are read by config.celery

# ==============================================================================
# CELERY
# ==============================================================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://redis:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 4 * 60 * 60  # archival sweeps can be long
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', 'False') == 'True'

# ==============================================================================
# MINIO / S3 STORAGE
# ==============================================================================
MINIO_ENDPOINT = os.environ.get('MINIO_ENDPOINT', 'minio:9000')
MINIO_ACCESS_KEY = os.environ.get('MINIO_ACCESS_KEY', 'minioadmin')
MINIO_SECRET_KEY = os.environ.get('MINIO_SECRET_KEY', 'minioadmin')
MINIO_USE_SSL = os.environ.get('MINIO_USE_SSL', 'False') == 'True'

# Buckets: active clinical images and cold archive
MINIO_CLINICAL_BUCKET = os.environ.get('MINIO_CLINICAL_BUCKET', 'dental-images')
MINIO_ARCHIVE_BUCKET = os.environ.get('MINIO_ARCHIVE_BUCKET', 'dental-archive')

# ==============================================================================
# LOGGING
# ==============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'correlation': {
            '()': 'apps.core.observability.logging.CorrelationFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {request_id} {message}',
            'style': '{',
        },
        'json': {
            '()': 'apps.core.observability.logging.SanitizedJSONFormatter',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json' if not DEBUG else 'verbose',
            'filters': ['correlation'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': 'DEBUG' if DEBUG else 'INFO',
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': os.environ.get('CELERY_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
