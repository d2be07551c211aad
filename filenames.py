"""Filename and header helpers for downloaded videos"""

import os
import re
from urllib.parse import quote

DEFAULT_TITLE = 'nrk-video'
MAX_FILENAME = 120

CONTENT_TYPES = {
    '.mp4': 'video/mp4',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
}


def clean_title(raw):
    """Drop control and other unprintable characters from a yt-dlp title"""
    return re.sub(r'[^\x20-\x7E\u00A0-\uFFFF]', '', raw).strip()


def sanitize_filename(name):
    """Replace path and reserved characters, collapse whitespace, cap length"""
    name = re.sub(r'[/\\:*?"<>|]', '_', name)
    name = re.sub(r'\s+', ' ', name).strip()
    return name[:MAX_FILENAME]


def download_name(title):
    return (sanitize_filename(title or '') or DEFAULT_TITLE) + '.mp4'


def content_type_for(path):
    ext = os.path.splitext(path)[1].lower()
    return CONTENT_TYPES.get(ext, 'video/mp4')


def content_disposition(filename):
    """Build an attachment header that survives non-ASCII titles"""
    ascii_name = filename.encode('ascii', 'replace').decode('ascii').replace('?', '_')
    ascii_name = ascii_name.replace('"', '_')
    header = f'attachment; filename="{ascii_name}"'
    if ascii_name != filename:
        header += f"; filename*=UTF-8''{quote(filename)}"
    return header
