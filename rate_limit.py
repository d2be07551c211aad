"""Per-client sliding-window rate limits (in memory, or Redis via REDIS_URL)"""

from flask import current_app, request
from flask_limiter import Limiter


def client_ip():
    """First X-Forwarded-For hop, else the socket peer"""
    forwarded = request.headers.get('X-Forwarded-For', '')
    ip = forwarded.split(',')[0].strip()
    return ip or request.remote_addr or 'unknown'


# Storage and strategy come from the RATELIMIT_* keys in app.config
limiter = Limiter(client_ip)


def download_limit():
    return f"{current_app.config['DOWNLOAD_RATE_LIMIT_PER_MINUTE']} per minute"


def default_limit():
    return f"{current_app.config['RATE_LIMIT_PER_MINUTE']} per minute"


def retry_after_ms(exc):
    """Window length of the limit that was hit, in milliseconds"""
    return exc.limit.limit.get_expiry() * 1000
