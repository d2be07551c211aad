"""yt-dlp subprocess pipeline: titles, probes, stdout streaming and temp-file downloads"""

import json
import logging
import os
import queue
import shutil
import signal
import subprocess
import tempfile
import threading
from collections import deque

from errors import DownloadTimeout, EmptyDownload, ProbeFailed, YtDlpFailed, YtDlpStartTimeout
from filenames import DEFAULT_TITLE, clean_title
from progress import PROGRESS_TEMPLATE, parse_progress_line

logger = logging.getLogger(__name__)

YTDLP_BIN = 'yt-dlp'

CHUNK_SIZE = 64 * 1024
QUEUE_DEPTH = 32
KILL_GRACE = 2
REAP_TIMEOUT = 30
OUTPUT_LINES = 200
STDERR_LOG_LIMIT = 500
PROBE_DETAILS_LIMIT = 200

# HLS streams often lack a muxed "best", so prefer separate video+audio
STREAM_FORMAT = 'bv*+ba/b'
FILE_FORMAT = 'bv*+ba/best'


class StreamFailed(Exception):
    """yt-dlp could not stream to stdout; the caller should fall back to a temp file"""

    def __init__(self, message, returncode=None, stderr=''):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def stream_cmd(url, ytdlp_bin=YTDLP_BIN):
    return [
        ytdlp_bin,
        '--no-playlist',
        '--newline',
        '--progress-template', PROGRESS_TEMPLATE,
        '-f', STREAM_FORMAT,
        '--merge-output-format', 'mp4',
        '-o', '-',
        '--', url,
    ]


def file_cmd(url, out_template, ytdlp_bin=YTDLP_BIN):
    return [
        ytdlp_bin,
        '--no-playlist',
        '--newline',
        '--progress-template', PROGRESS_TEMPLATE,
        '-f', FILE_FORMAT,
        '--merge-output-format', 'mp4',
        '-o', out_template,
        '--', url,
    ]


class OutputCollector:
    """Keeps the tail of a yt-dlp output pipe and forwards progress lines"""

    def __init__(self, url, tracker=None, request_id='-', token=None):
        self.url = url
        self.tracker = tracker
        self.request_id = request_id
        self.token = token
        self.lines = deque(maxlen=OUTPUT_LINES)

    def feed(self, line):
        if isinstance(line, bytes):
            line = line.decode('utf-8', 'replace')
        line = line.rstrip()
        if not line:
            return
        parsed = parse_progress_line(line)
        if parsed is None:
            self.lines.append(line)
            return
        if self.tracker is not None:
            self.tracker.update(self.url, self.token, *parsed)
        logger.debug('yt-dlp progress %s/%s eta=%s', *parsed, extra={'request_id': self.request_id})

    def drain(self, pipe):
        """Feed every line of pipe from a background thread"""
        thread = threading.Thread(target=self._drain, args=(pipe,), daemon=True)
        thread.start()
        return thread

    def _drain(self, pipe):
        with pipe:
            for line in pipe:
                self.feed(line)

    def text(self):
        return '\n'.join(self.lines)


def get_video_title(url, ytdlp_bin=YTDLP_BIN, timeout=10):
    """Ask yt-dlp for the video title, falling back to a generic name"""
    env = dict(os.environ, PYTHONIOENCODING='utf-8')
    try:
        result = subprocess.run(
            [ytdlp_bin, '--no-warnings', '--print', '%(title)s', '--', url],
            capture_output=True,
            text=True,
            encoding='utf-8',
            errors='replace',
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        logger.warning('Timed out after %ss fetching title for %s', timeout, url)
        return DEFAULT_TITLE
    except OSError as exc:
        logger.warning('Failed to get video title for %s: %s', url, exc)
        return DEFAULT_TITLE

    if result.returncode == 0 and result.stdout.strip():
        title = clean_title(result.stdout.strip().splitlines()[0])
        if title:
            return title
    logger.warning('yt-dlp returned no title for %s (exit %s)', url, result.returncode)
    return DEFAULT_TITLE


def kill_process_group(proc):
    """SIGKILL yt-dlp together with the ffmpeg it spawned for merging"""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class StreamingDownload:
    """A running yt-dlp process writing the video to its stdout.

    A pump thread moves stdout into a bounded queue so the first bytes can be
    awaited with a timeout; stderr is drained by an OutputCollector. Iterating
    yields the video. Closing before EOF kills the process group, which is how
    a client disconnect reaches yt-dlp and the ffmpeg writing its stdout.
    """

    def __init__(self, proc, url, tracker=None, request_id='-', token=None):
        self.proc = proc
        self.url = url
        self.tracker = tracker
        self.request_id = request_id
        self.token = token
        self.stderr = OutputCollector(url, tracker, request_id, token)
        self._chunks = queue.Queue(maxsize=QUEUE_DEPTH)
        self._closed = threading.Event()
        self._eof = False
        self._first = None
        self._stderr_thread = self.stderr.drain(proc.stderr)
        self._pump_thread = threading.Thread(target=self._pump, daemon=True)
        self._pump_thread.start()

    def _extra(self):
        return {'request_id': self.request_id}

    def _pump(self):
        stdout = self.proc.stdout
        try:
            while not self._closed.is_set():
                chunk = stdout.read1(CHUNK_SIZE)
                if not chunk:
                    break
                self._offer(chunk)
        except (OSError, ValueError):
            # pipe closed underneath us after a kill
            pass
        finally:
            self._offer(None)

    def _offer(self, item):
        while not self._closed.is_set():
            try:
                self._chunks.put(item, timeout=0.2)
                return
            except queue.Full:
                continue

    def first_chunk(self, timeout):
        """Wait for the first bytes of video"""
        try:
            chunk = self._chunks.get(timeout=timeout)
        except queue.Empty:
            logger.warning('yt-dlp wrote nothing within %ss, killing it', timeout, extra=self._extra())
            self._closed.set()
            self.kill()
            self._reap()
            self._close_pipes()
            self._finish('timeout')
            raise YtDlpStartTimeout(details=self.stderr.text())

        if chunk is None:
            self._eof = True
            self._closed.set()
            returncode = self._reap()
            self._close_pipes()
            self._finish('error')
            raise StreamFailed(
                f'yt-dlp exited with code {returncode} before writing any data',
                returncode=returncode,
                stderr=self.stderr.text(),
            )
        self._first = chunk
        return chunk

    def __iter__(self):
        try:
            if self._first is not None:
                chunk, self._first = self._first, None
                yield chunk
            while True:
                chunk = self._chunks.get()
                if chunk is None:
                    self._eof = True
                    break
                yield chunk
        finally:
            self.close()

    def kill(self):
        kill_process_group(self.proc)

    def close(self):
        """Reap the process after EOF, or kill it if the client went away"""
        if self._closed.is_set():
            return
        self._closed.set()

        if self._eof:
            returncode = self._reap()
            self._close_pipes()
            if returncode == 0:
                self._finish('completed')
                return
            logger.error(
                'yt-dlp process failed url=%s exit_code=%s stderr=%s',
                self.url, returncode, self.stderr.text()[:STDERR_LOG_LIMIT], extra=self._extra(),
            )
            self._finish('error')
            return

        self.kill()
        returncode = self._reap()
        self._close_pipes()
        if returncode is not None and returncode < 0:
            logger.info('yt-dlp killed with signal %s url=%s', -returncode, self.url, extra=self._extra())
        else:
            logger.info('yt-dlp stopped after client disconnect url=%s', self.url, extra=self._extra())
        self._finish('aborted')

    def _reap(self):
        try:
            returncode = self.proc.wait(timeout=REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            self.kill()
            returncode = self.proc.wait()
        self._stderr_thread.join(KILL_GRACE)
        return returncode

    def _close_pipes(self):
        self._pump_thread.join(KILL_GRACE)
        for pipe, reader in ((self.proc.stdout, self._pump_thread), (self.proc.stderr, self._stderr_thread)):
            if reader.is_alive():
                # a writer outside the process group still holds the pipe open
                logger.warning('Pipe still open after yt-dlp exited url=%s', self.url, extra=self._extra())
                continue
            pipe.close()

    def _finish(self, status):
        _finish(self.tracker, self.url, self.token, status)


def start_stream(url, ytdlp_bin=YTDLP_BIN, tracker=None, request_id='-'):
    """Spawn yt-dlp writing the merged mp4 to stdout"""
    cmd = stream_cmd(url, ytdlp_bin)
    logger.debug('Attempting direct stream from yt-dlp')
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        raise StreamFailed(f'could not start yt-dlp: {exc}') from exc
    token = tracker.start(url) if tracker is not None else None
    return StreamingDownload(proc, url, tracker, request_id, token)


def _finish(tracker, url, token, status):
    if tracker is not None:
        tracker.finish(url, token, status)


def _find_output(tmpdir):
    files = sorted(f for f in os.listdir(tmpdir) if f.startswith('out.') and not f.endswith('.part'))
    # Prefer the merged file over leftover format fragments (out.f137.mp4)
    merged = [f for f in files if f.count('.') == 1]
    candidates = merged or files
    return os.path.join(tmpdir, candidates[0]) if candidates else None


def _run_file_download(cmd, url, tmpdir, timeout, tracker, request_id):
    extra = {'request_id': request_id}
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding='utf-8',
            errors='replace',
            start_new_session=True,
        )
    except OSError as exc:
        logger.error('Process error url=%s: %s', url, exc, extra=extra)
        raise YtDlpFailed('yt-dlp could not be started.', details=str(exc)) from exc

    token = tracker.start(url) if tracker is not None else None
    output = OutputCollector(url, tracker, request_id, token)

    timed_out = threading.Event()

    def expire():
        timed_out.set()
        kill_process_group(proc)

    timer = threading.Timer(timeout, expire)
    timer.daemon = True
    timer.start()
    try:
        for line in proc.stdout:
            output.feed(line)
        returncode = proc.wait()
    finally:
        timer.cancel()
        proc.stdout.close()

    if timed_out.is_set():
        logger.error('yt-dlp exceeded %ss, killed url=%s', timeout, url, extra=extra)
        _finish(tracker, url, token, 'timeout')
        raise DownloadTimeout(details=output.text())

    if returncode != 0:
        logger.error(
            'yt-dlp process failed url=%s exit_code=%s stderr=%s',
            url, returncode, output.text()[:STDERR_LOG_LIMIT], extra=extra,
        )
        _finish(tracker, url, token, 'error')
        raise YtDlpFailed(details=output.text())

    path = _find_output(tmpdir)
    if path is None:
        logger.error('No output file found after download tmpdir=%s files=%s', tmpdir, os.listdir(tmpdir), extra=extra)
        _finish(tracker, url, token, 'error')
        raise YtDlpFailed('yt-dlp finished without producing a file.', details=output.text())

    if os.path.getsize(path) == 0:
        logger.error('yt-dlp produced an empty file %s', path, extra=extra)
        _finish(tracker, url, token, 'error')
        raise EmptyDownload()

    _finish(tracker, url, token, 'completed')
    return path


def download_to_tempdir(url, ytdlp_bin=YTDLP_BIN, tmp_root=None, timeout=3600, tracker=None, request_id='-'):
    """Download into a fresh temp directory and return (tmpdir, path).

    The directory is removed here on failure; on success the caller owns it
    and must pass it to cleanup_tempdir once the file has been sent.
    """
    tmpdir = tempfile.mkdtemp(prefix='nrk-', dir=tmp_root)
    cmd = file_cmd(url, os.path.join(tmpdir, 'out.%(ext)s'), ytdlp_bin)
    logger.debug('Downloading to temp file tmpdir=%s url=%s', tmpdir, url, extra={'request_id': request_id})
    try:
        path = _run_file_download(cmd, url, tmpdir, timeout, tracker, request_id)
    except Exception:
        cleanup_tempdir(tmpdir)
        raise
    return tmpdir, path


def cleanup_tempdir(tmpdir):
    logger.debug('Removing temp dir %s', tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


def iter_tempfile(tmpdir, path):
    """Yield the downloaded file in chunks, removing tmpdir once done or closed"""
    try:
        with open(path, 'rb') as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
    finally:
        cleanup_tempdir(tmpdir)


def probe(url, ytdlp_bin=YTDLP_BIN, timeout=15):
    """Run yt-dlp --dump-single-json and return the parsed metadata"""
    cmd = [ytdlp_bin, '--dump-single-json', '--no-warnings', '--', url]
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding='utf-8',
            errors='replace',
        )
    except OSError as exc:
        logger.error('Probe spawn error: %s', exc)
        raise ProbeFailed(details=str(exc)) from exc

    try:
        out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.terminate()
        try:
            out, err = proc.communicate(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            out, err = proc.communicate()
        logger.warning('Probe timed out after %ss url=%s', timeout, url)
        raise ProbeFailed('Probe timed out.', details=(err or '')[:PROBE_DETAILS_LIMIT])

    if proc.returncode != 0:
        logger.warning('Probe failed url=%s exit_code=%s', url, proc.returncode)
        raise ProbeFailed(details=(err or '')[:PROBE_DETAILS_LIMIT])

    try:
        return json.loads(out)
    except ValueError as exc:
        raise ProbeFailed('Invalid probe JSON', details=str(exc))


def _format_entry(f):
    height = f.get('height')
    acodec = f.get('acodec')
    return {
        'format_id': f.get('format_id'),
        'height': height,
        'width': f.get('width'),
        'fps': f.get('fps'),
        'vcodec': f.get('vcodec'),
        'acodec': acodec,
        'hasAudio': bool(acodec and acodec != 'none'),
        'filesize': f.get('filesize'),
        'quality': f'{height}p' if height else (f.get('quality') or 'unknown'),
        'format_note': f.get('format_note'),
    }


def summarize_probe(data):
    """Reduce yt-dlp metadata to what a client needs to pick a download"""
    formats = [
        _format_entry(f) for f in data.get('formats') or []
        if f.get('vcodec') and f.get('vcodec') != 'none'
    ]
    formats.sort(key=lambda f: f['height'] or 0, reverse=True)

    thumbnail = data.get('thumbnail')
    if not thumbnail and data.get('thumbnails'):
        thumbnail = data['thumbnails'][0].get('url')

    return {
        'title': data.get('title') or 'Unknown',
        'description': data.get('description') or '',
        'duration': data.get('duration'),
        'thumbnail': thumbnail,
        'formats': formats,
        'uploader': data.get('uploader') or data.get('channel') or '',
        'upload_date': data.get('upload_date'),
    }


def ytdlp_version(ytdlp_bin=YTDLP_BIN, timeout=10):
    result = subprocess.run(
        [ytdlp_bin, '--version'],
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return {
        'success': result.returncode == 0,
        'version': result.stdout,
        'error': result.stderr,
        'status': result.returncode,
    }
