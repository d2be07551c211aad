"""Allow-list checks for submitted video URLs"""

import re
from urllib.parse import urlparse

from errors import DomainNotAllowed, InvalidUrl, NotVideoPage, SeriesPage

IPV4_RE = re.compile(r'^\d{1,3}(\.\d{1,3}){3}$')
FIRST_URL_RE = re.compile(r'(https?://.+?)(?=\s*https?://|$)', re.DOTALL)

# Hosts where /serie/<name> is a series overview rather than an episode
SERIES_HOSTS = {'tv.nrk.no', 'radio.nrk.no'}

# Hosts serving articles as well as video; only these paths are accepted
ARTICLE_HOSTS = {'nrk.no'}
VIDEO_PATH_PREFIXES = (
    '/video/', '/serie/', '/program/', '/podkast/',
    '/radio/', '/tv/', '/super/', '/p3/',
)


def normalize_host(host):
    """Lower-case a hostname, drop a leading www. and IDNA-encode it"""
    h = host.strip().lower()
    if h.startswith('www.'):
        h = h[4:]
    try:
        h = h.encode('idna').decode('ascii')
    except UnicodeError:
        pass
    return h


def is_ip_like(host):
    if IPV4_RE.match(host):
        return True
    if host == 'localhost':
        return True
    # IPv6 literal
    return ':' in host


def clean_duplicated_url(url):
    """Cut a URL that was pasted twice down to its first complete copy"""
    if not url.lower().startswith(('http://', 'https://')):
        return url
    if url.lower().count('nrk.no') < 2:
        return url
    match = FIRST_URL_RE.match(url)
    if match:
        return match.group(1).strip()
    return url


def check_url(url, allow_list):
    """Raise an ApiError unless url points at a video page on an allowed host"""
    if any(ch.isspace() for ch in url):
        raise InvalidUrl()
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        raise InvalidUrl()
    if not parsed.scheme or not hostname:
        raise InvalidUrl()
    if parsed.scheme.lower() != 'https':
        raise InvalidUrl('Only https addresses are supported.')

    host = normalize_host(hostname)
    if is_ip_like(host):
        raise DomainNotAllowed()
    allowed = {normalize_host(d) for d in allow_list}
    if host not in allowed:
        raise DomainNotAllowed()

    path = parsed.path.lower()
    if host in SERIES_HOSTS and path.startswith('/serie/'):
        parts = [p for p in path.split('/') if p]
        if len(parts) == 2:
            raise SeriesPage()

    if host in ARTICLE_HOSTS:
        if path in ('', '/'):
            raise NotVideoPage()
        if not path.startswith(VIDEO_PATH_PREFIXES):
            raise NotVideoPage()


def is_allowed_url(url, allow_list):
    try:
        check_url(url, allow_list)
    except (InvalidUrl, DomainNotAllowed, SeriesPage, NotVideoPage):
        return False
    return True
