"""Progress tracking for downloads that are currently running"""

import itertools
import re
import threading
import time

# Passed to yt-dlp with --progress-template; parsed back by parse_progress_line
PROGRESS_TEMPLATE = (
    'download:[progress] %(progress.downloaded_bytes)s/'
    '%(progress.total_bytes,progress.total_bytes_estimate)s %(progress.eta)s'
)
PROGRESS_RE = re.compile(r'\[progress\]\s+(\S+)/(\S+)\s+(\S+)')

# Finished entries are kept this long so a last poll still sees the result
FINISHED_TTL = 600


def _number(value):
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return 0


def parse_progress_line(line):
    """Return (downloaded, total, eta) from a progress line, or None"""
    match = PROGRESS_RE.search(line)
    if not match:
        return None
    downloaded, total, eta = (_number(v) for v in match.groups())
    return downloaded, total, eta


class ProgressRegistry:
    """Thread-safe map of URL -> progress of its latest download.

    start() hands out a token for the download it registers. Updates and
    finishes carrying any other token than the latest one for that URL are
    ignored.
    """

    def __init__(self, ttl=FINISHED_TTL, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)

    def start(self, url):
        with self._lock:
            self._prune()
            token = next(self._tokens)
            self._entries[url] = {
                'token': token,
                'status': 'downloading',
                'downloaded': 0,
                'total': 0,
                'eta': 0,
                'finished_at': None,
            }
            return token

    def update(self, url, token, downloaded, total, eta):
        with self._lock:
            entry = self._current(url, token)
            if entry is None:
                return
            entry['downloaded'] = downloaded
            if total:
                entry['total'] = total
            entry['eta'] = eta

    def finish(self, url, token, status):
        with self._lock:
            entry = self._current(url, token)
            if entry is None:
                return
            entry['status'] = status
            entry['finished_at'] = self.clock()
            if status == 'completed':
                if entry['total']:
                    entry['downloaded'] = entry['total']
                entry['eta'] = 0

    def get(self, url):
        """Snapshot of the entry for url, or None when nothing is tracked"""
        with self._lock:
            self._prune()
            entry = self._entries.get(url)
            if entry is None:
                return None
            return self._snapshot(entry)

    def _current(self, url, token):
        entry = self._entries.get(url)
        if entry is None or entry['token'] != token or entry['finished_at'] is not None:
            return None
        return entry

    def _prune(self):
        now = self.clock()
        expired = [
            url for url, entry in self._entries.items()
            if entry['finished_at'] is not None and now - entry['finished_at'] > self.ttl
        ]
        for url in expired:
            del self._entries[url]

    @staticmethod
    def _snapshot(entry):
        if entry['status'] == 'completed':
            progress = 100.0
        elif entry['total'] > 0:
            progress = round(entry['downloaded'] / entry['total'] * 100, 2)
        else:
            progress = 0.0
        return {
            'status': entry['status'],
            'progress': progress,
            'downloaded': entry['downloaded'],
            'total': entry['total'],
            'eta': entry['eta'],
        }
