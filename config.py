"""Environment-driven settings for the NRK downloader"""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_ALLOW_DOMAINS = 'nrk.no,tv.nrk.no,www.nrk.no,radio.nrk.no,nrkbeta.no'
LOG_LEVELS = {'debug': 'DEBUG', 'info': 'INFO', 'warn': 'WARNING', 'warning': 'WARNING', 'error': 'ERROR'}


def env_int(name, default, minimum=1, maximum=None, environ=None):
    """Read an integer variable, falling back to the default when invalid"""
    environ = os.environ if environ is None else environ
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.error('Invalid %s=%r, using default %s', name, raw, default)
        return default
    if value < minimum or (maximum is not None and value > maximum):
        logger.error('%s=%s out of range, using default %s', name, value, default)
        return default
    return value


def env_domains(name='ALLOW_DOMAINS', environ=None):
    environ = os.environ if environ is None else environ
    raw = environ.get(name) or DEFAULT_ALLOW_DOMAINS
    return [d.strip().lower() for d in raw.split(',') if d.strip()]


def env_choice(name, choices, default, environ=None):
    environ = os.environ if environ is None else environ
    raw = (environ.get(name) or '').strip().lower()
    if not raw:
        return default
    if raw not in choices:
        logger.error('Invalid %s=%r, using default %s', name, raw, default)
        return default
    return raw


def log_level(app_env, environ=None):
    """Resolve LOG_LEVEL, defaulting to DEBUG in development"""
    environ = os.environ if environ is None else environ
    default = 'debug' if app_env == 'development' else 'info'
    return LOG_LEVELS[env_choice('LOG_LEVEL', LOG_LEVELS, default, environ)]


class Config:
    APP_ENV = env_choice('APP_ENV', ('production', 'development'), 'production')
    HOST = os.environ.get('HOST', '127.0.0.1')
    PORT = env_int('PORT', 8000, maximum=65535)
    LOG_LEVEL = log_level(APP_ENV)

    ALLOW_DOMAINS = env_domains()

    # Rate limiting (Flask-Limiter reads the RATELIMIT_* keys)
    RATE_LIMIT_PER_MINUTE = env_int('RATE_LIMIT_PER_MINUTE', 30)
    DOWNLOAD_RATE_LIMIT_PER_MINUTE = env_int('DOWNLOAD_RATE_LIMIT_PER_MINUTE', 5)
    REDIS_URL = os.environ.get('REDIS_URL') or None
    RATELIMIT_STORAGE_URI = REDIS_URL or 'memory://'
    RATELIMIT_STRATEGY = 'moving-window'
    RATELIMIT_HEADERS_ENABLED = True

    # yt-dlp
    YTDLP_BIN = os.environ.get('YTDLP_BIN', 'yt-dlp')
    TMP_DIR = os.environ.get('TMP_DIR') or None
    TITLE_TIMEOUT = env_int('TITLE_TIMEOUT', 10)
    PROBE_TIMEOUT = env_int('PROBE_TIMEOUT', 15)
    STREAM_START_TIMEOUT = env_int('STREAM_START_TIMEOUT', 60)
    DOWNLOAD_TIMEOUT = env_int('DOWNLOAD_TIMEOUT', 3600)
