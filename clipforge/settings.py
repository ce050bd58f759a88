"""
Django settings for clipforge project.

Only the parts of Django a non-HTTP core needs are configured here: the app
registry, logging and the CLIPFORGE_* conversion settings. Every
CLIPFORGE_* value can be overridden from the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return int(value)


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-clipforge-dev-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'conversions',
]

# No models; tasks live in memory
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'conversions': {
            'handlers': ['console'],
            'level': os.environ.get('CLIPFORGE_LOG_LEVEL', 'INFO'),
        },
    },
}

# Conversion settings

# Where finished artifacts (and per-task logs) are written
CLIPFORGE_DOWNLOAD_DIR = Path(
    os.environ.get('CLIPFORGE_DOWNLOAD_DIR', BASE_DIR / 'downloads')
)

# External converter executable (installed with the yt-dlp package)
CLIPFORGE_CONVERTER_BINARY = os.environ.get('CLIPFORGE_CONVERTER_BINARY', 'yt-dlp')

# Extra yt-dlp arguments appended before the URL, e.g. '--proxy socks5://...'
CLIPFORGE_YTDLP_EXTRA_ARGS = os.environ.get('CLIPFORGE_YTDLP_EXTRA_ARGS', '')

CLIPFORGE_DEFAULT_QUALITY = os.environ.get('CLIPFORGE_DEFAULT_QUALITY', '720p')

# Hard wall-clock ceiling per conversion, in seconds
CLIPFORGE_CONVERSION_TIMEOUT = _env_int('CLIPFORGE_CONVERSION_TIMEOUT', 30 * 60)

# Seconds to wait after terminate() before a timed out process is killed
CLIPFORGE_KILL_GRACE = _env_int('CLIPFORGE_KILL_GRACE', 10)

# Bytes of converter stderr kept for diagnostics (tail)
CLIPFORGE_STDERR_LIMIT = _env_int('CLIPFORGE_STDERR_LIMIT', 64 * 1024)

# Task registry bounds
CLIPFORGE_MAX_TASKS = _env_int('CLIPFORGE_MAX_TASKS', 100)
CLIPFORGE_TASK_TTL = _env_int('CLIPFORGE_TASK_TTL', 24 * 60 * 60)
CLIPFORGE_SWEEP_INTERVAL = _env_int('CLIPFORGE_SWEEP_INTERVAL', 60 * 60)
CLIPFORGE_RECENT_LIMIT = _env_int('CLIPFORGE_RECENT_LIMIT', 20)

# Maximum simultaneous converter processes (0 = unbounded)
CLIPFORGE_MAX_CONCURRENT = _env_int('CLIPFORGE_MAX_CONCURRENT', 0)

# Artifacts older than this (seconds) are removed by cleanup_artifacts
CLIPFORGE_ARTIFACT_MAX_AGE = _env_int('CLIPFORGE_ARTIFACT_MAX_AGE', 24 * 60 * 60)
